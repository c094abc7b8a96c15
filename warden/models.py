from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

SERVICE_NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")


class BootMode(str, Enum):
    MINIMAL = "minimal"
    FULL = "full"


class EnvField(BaseModel):
    """Editable environment entry shown by the setup UI."""

    key: str
    label: str | None = None
    default_value: str = ""
    description: str | None = None
    warning: str | None = None
    required: bool = True
    read_only: bool = False


class ServiceDescriptor(BaseModel):
    model_config = {"frozen": True}

    name: str = Field(..., description="Container name and network alias (dns-safe)")
    image: str = Field(..., description="Docker image (repository:tag)")
    internal_port: int | None = Field(None, ge=1, le=65535, description="Port the service listens on")
    host_port: int | None = Field(None, ge=1, le=65535, description="Published host port")
    extra_ports: dict[int, int] = Field(default_factory=dict, description="Additional internal -> host ports")
    env: list[str] = Field(default_factory=list, description="KEY=value assignments, in order")
    volumes: list[str] = Field(default_factory=list, description="host:container[:mode] binds")
    health_url: str | None = Field(None, description="HTTP endpoint polled after start")
    group: str = Field("full", description="minimal|full")
    category: str = Field("core", description="core|addon")
    host_service_url: str | None = None
    description: str | None = None
    env_config: list[EnvField] = Field(default_factory=list)
    stream_logs: bool = True
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        if not SERVICE_NAME_RE.match(v):
            raise ValueError(
                "Invalid service name. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
            )
        return v

    @field_validator("env")
    @classmethod
    def _unique_env_keys(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        for entry in v:
            key = entry.split("=", 1)[0].strip()
            if not key:
                raise ValueError(f"Invalid env entry {entry!r}.")
            if key in seen:
                raise ValueError(f"Duplicate env key {key!r}.")
            seen.add(key)
        return v

    def published_ports(self) -> dict[str, int]:
        """docker-py ``ports`` mapping, e.g. {"3000/tcp": 3000}."""
        ports: dict[str, int] = {}
        if self.internal_port:
            host = self.host_port or self.internal_port
            ports[f"{self.internal_port}/tcp"] = host
        for internal, host in self.extra_ports.items():
            ports[f"{int(internal)}/tcp"] = int(host)
        return ports

    def env_keys(self) -> list[str]:
        return [e.split("=", 1)[0].strip() for e in self.env]


def merge_env(env: list[str], overrides: dict[str, str] | None) -> list[str]:
    """Apply overrides to a KEY=value list.

    Existing keys keep their position and take the new value; new keys are
    appended in the order given. Keys never appear twice in the result.
    """
    if not overrides:
        return list(env)

    order: list[str] = []
    values: dict[str, str] = {}
    for entry in env:
        key, _, value = entry.partition("=")
        key = key.strip()
        if not key:
            continue
        if key not in values:
            order.append(key)
        values[key] = value

    for raw_key, raw_value in overrides.items():
        if not isinstance(raw_key, str) or not raw_key.strip():
            continue
        key = raw_key.strip()
        if key not in values:
            order.append(key)
        values[key] = "" if raw_value is None else str(raw_value)

    return [f"{k}={values[k]}" for k in order]
