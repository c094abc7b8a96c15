from __future__ import annotations

import sys
from threading import Event
from typing import Any, Callable, Iterator, Mapping

import docker
from docker.errors import DockerException

from .boot import BootSequencer
from .credentials import CredentialProvisioner
from .discovery import detect_docker_sockets, detect_kavita_data_mount, is_socket, is_windows_pipe_path
from .docker_ops import ContainerLifecycleController, ImageResolver, NetworkFabricManager, make_client
from .errors import InvalidConfigError
from .events import log_event
from .health import HealthGate
from .models import BootMode
from .registry import ServiceRegistry, build_default_descriptors
from .runtime import ServiceHistory, TrackedContainerSet
from .settings import Settings
from .shutdown import ShutdownCoordinator


class Warden:
    """Everything one supervising run owns.

    The tracked set, token cache, history and cancel event live here rather
    than in module globals, and die with the run.
    """

    def __init__(
        self,
        settings: Settings,
        client: docker.DockerClient | None = None,
        env: Mapping[str, str] | None = None,
        token_generator: Callable[[str], str] | None = None,
        health_gate: HealthGate | None = None,
        exit_fn: Callable[[int], Any] = sys.exit,
        host_sockets: list[str] | None = None,
    ):
        try:
            self.mode = BootMode(settings.resolved_boot_mode)
        except ValueError:
            raise InvalidConfigError(
                f"Invalid WARDEN_BOOT_MODE '{settings.boot_mode}'; expected 'minimal' or 'full'"
            ) from None
        self.settings = settings
        self.env = env
        self.client = client or make_client(settings.docker_host)
        self.cancel = Event()
        self.tracked = TrackedContainerSet()
        self.history = ServiceHistory(limit=settings.history_limit)
        self.credentials = CredentialProvisioner(env=env, generator=token_generator)
        self.host_sockets = host_sockets

        self.network = NetworkFabricManager(self.client)
        self.images = ImageResolver(self.client)
        self.containers = ContainerLifecycleController(self.client, self.tracked, debug=settings.debug_enabled)
        self.health = health_gate or HealthGate(
            max_attempts=settings.health_attempts,
            delay_s=settings.health_delay_s,
            timeout_s=settings.health_timeout_s,
            cancel=self.cancel,
        )
        self.health.cancel = self.cancel
        self.shutdown = ShutdownCoordinator(
            self.containers,
            self.tracked,
            cancel=self.cancel,
            stop_timeout_s=settings.stop_timeout_s,
            exit_fn=exit_fn,
        )

        # Registry without credentials until init() resolves them.
        self.registry = ServiceRegistry(build_default_descriptors(settings), settings.host_service_url)
        self.sequencer = self._make_sequencer()

    def _make_sequencer(self) -> BootSequencer:
        return BootSequencer(
            self.registry,
            self.images,
            self.containers,
            self.health,
            self.settings.network_name,
            history=self.history,
            cancel=self.cancel,
        )

    def _docker_contexts(self, opened: list) -> Iterator[tuple[str, Any]]:
        """Default client first, then one client per extra host socket.

        Clients created here are appended to ``opened`` so the caller can close them.
        """
        yield "default Docker instance", self.client
        sockets = self.host_sockets
        if sockets is None:
            sockets = detect_docker_sockets(self.env)
        primary = self.settings.docker_host
        for path in sockets:
            if primary and primary.endswith(path):
                continue
            if is_windows_pipe_path(path):
                base_url = f"npipe://{path}"
            elif is_socket(path):
                base_url = f"unix://{path}"
            else:
                continue
            try:
                extra = docker.DockerClient(base_url=base_url)
            except DockerException as e:
                log_event("WARN", f"Failed to initialize Docker client for socket {path}: {e}")
                continue
            opened.append(extra)
            yield f"socket {path}", extra

    def prepare_registry(self) -> ServiceRegistry:
        """Resolve credentials and host mounts, then rebuild the registry with them."""
        tokens = self.credentials.build_all(self.registry.names())
        opened: list = []
        try:
            kavita_mount = detect_kavita_data_mount(self._docker_contexts(opened))
        finally:
            for extra in opened:
                extra.close()
        self.registry = ServiceRegistry(
            build_default_descriptors(self.settings, tokens=tokens, kavita_mount=kavita_mount),
            self.settings.host_service_url,
        )
        self.sequencer = self._make_sequencer()
        return self.registry

    def init(self) -> BootMode:
        network = self.settings.network_name
        self.network.ensure_network(network)
        self.network.attach_self(network, self.settings.hostname)
        self.prepare_registry()

        mode = self.mode
        if mode is BootMode.FULL:
            log_event("INFO", "[Warden] Full mode: launching the whole stack in boot order...", mode=mode.value)
        else:
            log_event("INFO", "[Warden] Minimal mode: launching redis, sage, moon only", mode=mode.value)
        self.sequencer.boot(mode)
        log_event("INFO", "Warden is ready.", mode=mode.value)
        return mode

    def run_forever(self) -> None:
        log_event("INFO", "Warden staying online...")
        while not self.cancel.wait(self.settings.heartbeat_s):
            log_event("DEBUG", "heartbeat", tracked=len(self.tracked))

    def get_service_history(self, name: str) -> dict[str, Any]:
        return self.history.get(name)
