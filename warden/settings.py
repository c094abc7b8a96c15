from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on", "super"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    debug: str = "false"
    boot_mode: str | None = None
    network_name: str = "noona-network"
    host_service_url: str = "http://localhost"
    hostname: str | None = None
    docker_host: str | None = None

    # Health gate
    health_attempts: int = 20
    health_delay_s: float = 1.0
    health_timeout_s: float = 2.0

    # Lifecycle
    stop_timeout_s: int = 10
    heartbeat_s: int = 60
    history_limit: int = 200

    # Logging
    log_format: str = "json"
    log_level: str = "INFO"

    @property
    def debug_enabled(self) -> bool:
        return self.debug.strip().lower() in {"1", "true", "yes", "y", "on", "super"}

    @property
    def super_mode(self) -> bool:
        return self.debug.strip().lower() == "super"

    @property
    def resolved_boot_mode(self) -> str:
        """Explicit WARDEN_BOOT_MODE wins; DEBUG=super implies the full stack."""
        if self.boot_mode:
            return self.boot_mode.strip().lower()
        return "full" if self.super_mode else "minimal"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            debug=env.get("DEBUG", "false"),
            boot_mode=env.get("WARDEN_BOOT_MODE") or None,
            network_name=env.get("WARDEN_NETWORK", "noona-network"),
            host_service_url=env.get("HOST_SERVICE_URL", "http://localhost"),
            hostname=env.get("HOSTNAME") or None,
            docker_host=env.get("DOCKER_HOST") or None,
            health_attempts=max(1, _env_int(env, "WARDEN_HEALTH_ATTEMPTS", 20)),
            health_delay_s=max(0.0, _env_float(env, "WARDEN_HEALTH_DELAY_S", 1.0)),
            health_timeout_s=_env_float(env, "WARDEN_HEALTH_TIMEOUT_S", 2.0),
            stop_timeout_s=_env_int(env, "WARDEN_STOP_TIMEOUT_S", 10),
            heartbeat_s=max(1, _env_int(env, "WARDEN_HEARTBEAT_S", 60)),
            history_limit=max(1, _env_int(env, "WARDEN_HISTORY_LIMIT", 200)),
            log_format=env.get("WARDEN_LOG_FORMAT", "json").strip().lower(),
            log_level=env.get("WARDEN_LOG_LEVEL", "DEBUG" if _env_bool(env, "DEBUG") else "INFO").upper(),
        )
