"""Declarative catalogue of the services warden can run."""
from __future__ import annotations

from typing import Iterable, Mapping

from .credentials import stringify_token_map
from .errors import DuplicateServiceError, UnknownServiceError
from .models import BootMode, EnvField, ServiceDescriptor, merge_env
from .settings import Settings

VAULT_SERVICE = "noona-vault"

# Minimal boot: cache, setup gateway, web frontend.
MINIMAL_ORDER = ["noona-redis", "noona-sage", "noona-moon"]
FULL_ORDER = ["noona-redis", "noona-mongo", "noona-sage", "noona-moon", "noona-vault", "noona-raven"]

REQUIRED_SERVICES = [VAULT_SERVICE]

KAVITA_CONTAINER_PATH = "/kavita-data"

_CORE_SERVICES: list[dict] = [
    {"name": "noona-sage", "port": 3004, "health": "http://noona-sage:3004/health", "group": "minimal",
     "description": "Setup gateway and wizard state."},
    {"name": "noona-moon", "port": 3000, "health": "http://noona-moon:3000/", "group": "minimal",
     "description": "Web frontend."},
    {"name": "noona-oracle", "port": 3001, "description": "Insights service."},
    {"name": "noona-raven", "port": 3002, "description": "Library downloader."},
    {"name": "noona-portal", "port": 3003, "description": "Discord and Kavita bridge."},
    {"name": "noona-vault", "port": 3005, "health": "http://noona-vault:3005/v1/vault/health",
     "depends_on": ["noona-mongo", "noona-redis"], "description": "Storage gateway."},
]


def _addon_descriptors() -> list[ServiceDescriptor]:
    return [
        ServiceDescriptor(
            name="noona-redis",
            image="redis/redis-stack:latest",
            internal_port=8001,
            host_port=8001,
            extra_ports={6379: 6379},
            env=["SERVICE_NAME=noona-redis"],
            volumes=["/noona-redis-data:/data"],
            health_url="http://noona-redis:8001/",
            group="minimal",
            category="addon",
            description="Cache and message bus.",
            env_config=[
                EnvField(key="SERVICE_NAME", label="Service Name", default_value="noona-redis", read_only=True,
                         description="Identifier used when naming the Redis container."),
            ],
            stream_logs=False,
        ),
        ServiceDescriptor(
            name="noona-mongo",
            image="mongo:8",
            internal_port=27017,
            host_port=27017,
            env=[
                "MONGO_INITDB_ROOT_USERNAME=root",
                "MONGO_INITDB_ROOT_PASSWORD=example",
                "SERVICE_NAME=noona-mongo",
            ],
            volumes=["/noona-mongo-data:/data/db"],
            # Mongo has no HTTP endpoint to poll.
            health_url=None,
            category="addon",
            host_service_url="mongodb://localhost:27017",
            description="Document database.",
            env_config=[
                EnvField(key="MONGO_INITDB_ROOT_USERNAME", label="Mongo Root Username", default_value="root",
                         warning="Changing the username requires updating every consumer that connects to Mongo."),
                EnvField(key="MONGO_INITDB_ROOT_PASSWORD", label="Mongo Root Password", default_value="example",
                         warning="Use a strong password and store it securely. Changing it requires updating dependent services."),
                EnvField(key="SERVICE_NAME", label="Service Name", default_value="noona-mongo", read_only=True,
                         description="Identifier used when naming the Mongo container."),
            ],
        ),
    ]


def _core_descriptors(settings: Settings) -> list[ServiceDescriptor]:
    out: list[ServiceDescriptor] = []
    for raw in _CORE_SERVICES:
        name = raw["name"]
        out.append(
            ServiceDescriptor(
                name=name,
                image=f"captainpax/{name}:latest",
                internal_port=raw["port"],
                host_port=raw["port"],
                env=[f"DEBUG={settings.debug}", f"SERVICE_NAME={name}"],
                health_url=raw.get("health"),
                group=raw.get("group", "full"),
                category="core",
                description=raw.get("description"),
                depends_on=list(raw.get("depends_on", [])),
            )
        )
    return out


def build_default_descriptors(
    settings: Settings,
    tokens: Mapping[str, str] | None = None,
    kavita_mount: str | None = None,
) -> list[ServiceDescriptor]:
    """Static descriptors with per-service extras resolved up front.

    ``tokens`` puts ``VAULT_API_TOKEN`` into every peer and the serialized map
    into the vault itself. ``kavita_mount`` hands the library directory of an
    existing Kavita container to raven.
    """
    descriptors = _addon_descriptors() + _core_descriptors(settings)
    if not tokens and not kavita_mount:
        return descriptors

    out: list[ServiceDescriptor] = []
    for d in descriptors:
        overrides: dict[str, str] = {}
        volumes = list(d.volumes)

        if tokens:
            if d.name == VAULT_SERVICE:
                overrides["VAULT_TOKEN_MAP"] = stringify_token_map(tokens)
            elif tokens.get(d.name):
                overrides["VAULT_API_TOKEN"] = tokens[d.name]

        if kavita_mount and d.name == "noona-raven":
            volumes.append(f"{kavita_mount}:{KAVITA_CONTAINER_PATH}")
            overrides["APPDATA"] = KAVITA_CONTAINER_PATH
            overrides["KAVITA_DATA_MOUNT"] = KAVITA_CONTAINER_PATH

        out.append(d.model_copy(update={"env": merge_env(d.env, overrides), "volumes": volumes}))
    return out


class ServiceRegistry:
    """Ordered, name-unique collection of descriptors. No side effects."""

    def __init__(self, descriptors: Iterable[ServiceDescriptor], host_service_url: str = "http://localhost"):
        self._by_name: dict[str, ServiceDescriptor] = {}
        for d in descriptors:
            if d.name in self._by_name:
                raise DuplicateServiceError(f"Service '{d.name}' is registered twice.")
            self._by_name[d.name] = d
        self.host_prefix = host_service_url.rstrip("/")

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def names(self) -> list[str]:
        return list(self._by_name)

    def get(self, name: str) -> ServiceDescriptor:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownServiceError(f"Service {name} is not registered with Warden.") from None

    def for_group(self, group: str) -> list[ServiceDescriptor]:
        """Descriptors tagged with ``group``; ``all`` returns everything.

        Minimal members are part of the full stack too. Unknown groups give an
        empty list.
        """
        if group == "all":
            return list(self._by_name.values())
        if group == BootMode.FULL.value:
            return [d for d in self._by_name.values() if d.group in {BootMode.MINIMAL.value, BootMode.FULL.value}]
        return [d for d in self._by_name.values() if d.group == group]

    def for_mode(self, mode: BootMode | str) -> list[ServiceDescriptor]:
        mode = BootMode(mode)
        minimal = self._ordered(MINIMAL_ORDER, self.for_group(BootMode.MINIMAL.value))
        if mode is BootMode.MINIMAL:
            return minimal

        seen = {d.name for d in minimal}
        rest = self._ordered(FULL_ORDER, [d for d in self.for_group(BootMode.FULL.value) if d.name not in seen])
        return minimal + rest

    def _ordered(self, preferred: list[str], members: list[ServiceDescriptor]) -> list[ServiceDescriptor]:
        # Preferred names first in their listed order, then the rest in registration order.
        by_name = {d.name: d for d in members}
        out = [by_name[n] for n in preferred if n in by_name]
        out.extend(d for d in members if d.name not in preferred)
        return out

    def host_service_url(self, d: ServiceDescriptor) -> str | None:
        if d.host_service_url:
            return d.host_service_url
        port = d.host_port or d.internal_port
        if port:
            return f"{self.host_prefix}:{port}"
        return None

    def catalog(self) -> list[dict]:
        rows = []
        for d in sorted(self._by_name.values(), key=lambda x: x.name):
            rows.append(
                {
                    "name": d.name,
                    "category": d.category,
                    "image": d.image,
                    "port": d.host_port or d.internal_port,
                    "hostServiceUrl": self.host_service_url(d),
                    "description": d.description,
                    "health": d.health_url,
                    "envConfig": [f.model_dump() for f in d.env_config],
                }
            )
        return rows
