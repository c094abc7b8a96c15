from __future__ import annotations

from threading import Event
from typing import Any, Iterable

from docker.errors import DockerException

from .docker_ops import ContainerLifecycleController, ImageResolver
from .errors import CircularDependencyError, UnknownServiceError, WardenError
from .events import log_event
from .health import HealthGate
from .models import BootMode, ServiceDescriptor, merge_env
from .registry import REQUIRED_SERVICES, ServiceRegistry
from .runtime import ServiceHistory


class BootSequencer:
    """Brings descriptors up one at a time: image, container, health gate.

    A descriptor is never started before the previous one has passed its
    gate; later services may need earlier ones to be reachable.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        images: ImageResolver,
        containers: ContainerLifecycleController,
        health: HealthGate,
        network_name: str,
        history: ServiceHistory | None = None,
        cancel: Event | None = None,
    ):
        self.registry = registry
        self.images = images
        self.containers = containers
        self.health = health
        self.network_name = network_name
        self.history = history or ServiceHistory()
        self.cancel = cancel or health.cancel

    def boot(self, mode: BootMode | str) -> list[str]:
        mode = BootMode(mode)
        descriptors = self.registry.for_mode(mode)
        if not descriptors:
            log_event("INFO", f"Nothing to boot for mode '{mode.value}'.")
            return []

        log_event("INFO", f"Booting {len(descriptors)} services ({mode.value} mode)", mode=mode.value)
        for d in descriptors:
            self.start_service(d)
        return [d.name for d in descriptors]

    def start_service(self, d: ServiceDescriptor) -> bool:
        """Returns True when a new container was created for ``d``."""
        name = d.name
        try:
            created = False
            if not self.containers.exists(name):
                self.history.status(name, "pulling", f"Ensuring image {d.image}")
                self.images.ensure_image(
                    d.image,
                    on_progress=lambda event: self._on_progress(name, event),
                    cancel=self.cancel,
                    service_name=name,
                )
                self.history.status(name, "starting", "Creating container")
                created = self.containers.start(
                    d,
                    self.network_name,
                    on_log=lambda line: self._on_log(name, line),
                ) is not None
            else:
                log_event("INFO", f"{name} already running.", name)

            if d.health_url:
                self.history.status(name, "waiting", f"Waiting for {d.health_url}")
                self.health.wait_healthy(name, d.health_url)
        except WardenError as e:
            self.history.error(name, str(e))
            log_event("ERROR", str(e), name)
            raise

        url = self.registry.host_service_url(d)
        self.history.status(name, "ready", detail=url)
        if url:
            log_event("INFO", f"[{name}] Ready (host_service_url: {url})", name, host_service_url=url)
        else:
            log_event("INFO", f"[{name}] Ready.", name)
        return created

    def _on_progress(self, name: str, event: dict[str, Any]) -> None:
        self.history.progress(name, event)
        log_event("DEBUG", f"{event.get('status')} {event.get('progress') or ''}".strip(), name)

    def _on_log(self, name: str, line: str) -> None:
        self.history.log_line(name, line)
        log_event("INFO", line, name, source="container")

    # Explicit installs requested by the control-plane API.

    def resolve_install_order(self, names: Iterable[str]) -> list[str]:
        """Depth-first order with dependencies first; raises on cycles."""
        order: list[str] = []
        visited: set[str] = set()
        visiting: list[str] = []

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                chain = " -> ".join(visiting + [name])
                raise CircularDependencyError(f"Circular dependency detected: {chain}")
            visiting.append(name)
            deps = self.registry.get(name).depends_on if name in self.registry else []
            for dep in deps:
                visit(dep)
            visiting.pop()
            visited.add(name)
            order.append(name)

        for name in names:
            visit(name)
        return order

    def _install_one(self, name: str, env_overrides: dict[str, str] | None = None) -> dict[str, Any]:
        d = self.registry.get(name)
        if env_overrides:
            d = d.model_copy(update={"env": merge_env(d.env, env_overrides)})
        self.start_service(d)
        return {
            "name": d.name,
            "category": d.category,
            "status": "installed",
            "hostServiceUrl": self.registry.host_service_url(d),
            "image": d.image,
            "port": d.host_port or d.internal_port,
        }

    def install_service(self, name: str, env_overrides: dict[str, str] | None = None) -> dict[str, Any]:
        if not isinstance(name, str) or not name.strip():
            raise UnknownServiceError("Service name must be a non-empty string.")
        target = name.strip()
        self.registry.get(target)

        result: dict[str, Any] | None = None
        for service in self.resolve_install_order(REQUIRED_SERVICES + [target]):
            overrides = env_overrides if service == target else None
            outcome = self._install_one(service, overrides)
            if service == target:
                result = outcome
        if result is None:
            raise UnknownServiceError(f"Service {target} is not registered with Warden.")
        return result

    def install_services(self, entries: Iterable[Any]) -> list[dict[str, Any]]:
        """Install several services; failures are reported per entry, not raised.

        Entries are service names or ``{"name": ..., "env": {...}}`` mappings.
        """
        invalid: list[dict[str, Any]] = []
        requested: list[str] = list(REQUIRED_SERVICES)
        overrides: dict[str, dict[str, str]] = {}

        for entry in entries:
            if isinstance(entry, str):
                if not entry.strip():
                    invalid.append({"name": entry, "status": "error", "error": "Invalid service name provided."})
                    continue
                name = entry.strip()
            elif isinstance(entry, dict):
                name = entry.get("name").strip() if isinstance(entry.get("name"), str) else ""
                if not name:
                    invalid.append({"name": entry.get("name"), "status": "error",
                                    "error": 'Service descriptor is missing a valid "name" field.'})
                    continue
                env = entry.get("env")
                if env is not None and not isinstance(env, dict):
                    invalid.append({"name": name, "status": "error",
                                    "error": "Environment overrides must be provided as an object map."})
                    continue
                if env:
                    overrides.setdefault(name, {}).update({str(k).strip(): "" if v is None else str(v)
                                                           for k, v in env.items() if str(k).strip()})
            else:
                invalid.append({"name": entry, "status": "error",
                                "error": "Service entry must be a string name or object descriptor."})
                continue
            if name not in requested:
                requested.append(name)

        try:
            order = self.resolve_install_order(requested)
        except CircularDependencyError as e:
            return invalid + [{"name": "installation", "status": "error", "error": str(e)}]

        results: list[dict[str, Any]] = []
        for name in order:
            try:
                results.append(self._install_one(name, overrides.get(name)))
            except WardenError as e:
                results.append({"name": name, "status": "error", "error": str(e)})
        return results + invalid

    def list_services(self, include_installed: bool = True) -> list[dict[str, Any]]:
        rows = []
        for row in self.registry.catalog():
            try:
                installed = self.containers.exists(row["name"])
            except DockerException as e:
                log_event("WARN", f"Failed to determine install status for {row['name']}: {e}", row["name"])
                installed = False
            rows.append({**row, "installed": installed})
        if include_installed:
            return rows
        return [r for r in rows if not r["installed"]]
