"""Docker socket discovery.

Order: explicit ``NOONA_HOST_DOCKER_SOCKETS`` / ``HOST_DOCKER_SOCKETS`` lists,
then ``DOCKER_HOST``, then well-known default paths, then a scan of the usual
runtime directories for docker/podman socket files.
"""
from __future__ import annotations

import os
import re
import stat
from typing import Any, Callable, Iterable, Mapping

from docker.errors import DockerException

from .events import log_event

WINDOWS_PIPE_PREFIX = "//./pipe/"
_WINDOWS_PIPE_RE = re.compile(r"^(?:\\\\\.\\pipe\\|//\./pipe/)", re.IGNORECASE)
_RUNTIME_NAME_RE = re.compile(r"(docker|podman)", re.IGNORECASE)

DEFAULT_SOCKETS = [
    "/var/run/docker.sock",
    "/var/run/docker/docker.sock",
    "/run/docker.sock",
    "/run/docker/docker.sock",
    "/var/run/podman/podman.sock",
    "/run/podman/podman.sock",
]

SCAN_DIRECTORIES = [
    "/var/run",
    "/run",
    "/var/run/docker",
    "/run/docker",
    "/var/run/podman",
    "/run/podman",
]


def _normalize_pipe(value: str) -> str | None:
    segments = [p.strip() for p in value.replace("\\", "/").split("/")]
    segments = [p for p in segments if p]
    if not segments:
        return None
    if segments[0] == ".":
        segments.pop(0)
    if segments and segments[0].startswith("."):
        segments[0] = segments[0].lstrip(".")
    if not segments or segments[0].lower() != "pipe":
        segments.insert(0, "pipe")
    return WINDOWS_PIPE_PREFIX + "/".join(segments[1:])


def normalize_docker_socket(candidate: Any) -> str | None:
    """Socket path for ``candidate``; None for blank or TCP endpoints."""
    if not isinstance(candidate, str):
        return None
    value = candidate.strip()
    if not value:
        return None
    if value.startswith("unix://"):
        return value[len("unix://"):]
    if value.startswith("tcp://"):
        return None
    if value.startswith("npipe://"):
        return _normalize_pipe(value[len("npipe://"):])
    if _WINDOWS_PIPE_RE.match(value):
        return _normalize_pipe(value)
    return value


def is_windows_pipe_path(candidate: Any) -> bool:
    if not isinstance(candidate, str):
        return False
    return candidate.replace("\\", "/").lower().startswith(WINDOWS_PIPE_PREFIX)


def _scan_directory(directory: str, listdir: Callable[[str], Iterable[str]]) -> list[str]:
    found = []
    try:
        entries = list(listdir(directory))
    except OSError:
        return found
    for entry in entries:
        lowered = entry.lower()
        if "sock" in lowered and _RUNTIME_NAME_RE.search(entry):
            found.append(f"{directory.rstrip('/')}/{entry}")
    return found


def detect_docker_sockets(
    env: Mapping[str, str] | None = None,
    listdir: Callable[[str], Iterable[str]] | None = os.listdir,
) -> list[str]:
    env = os.environ if env is None else env
    sockets: dict[str, None] = {}

    def _add(candidate: Any) -> None:
        normalized = normalize_docker_socket(candidate)
        if normalized:
            sockets[normalized] = None

    for key in ("NOONA_HOST_DOCKER_SOCKETS", "HOST_DOCKER_SOCKETS"):
        raw = env.get(key)
        if raw and raw.strip():
            for entry in raw.split(","):
                _add(entry)

    _add(env.get("DOCKER_HOST"))

    for path in DEFAULT_SOCKETS:
        _add(path)

    if listdir is not None:
        for directory in SCAN_DIRECTORIES:
            for path in _scan_directory(directory, listdir):
                _add(path)

    return list(sockets)


def is_socket(path: str) -> bool:
    try:
        return stat.S_ISSOCK(os.stat(path).st_mode)
    except OSError:
        return False


def detect_kavita_data_mount(clients: Iterable[tuple[str, Any]]) -> str | None:
    """Return the host path mounted at ``/data`` of a running Kavita container.

    ``clients`` yields (label, docker client) pairs; the first hit wins.
    """
    found_container = False
    for label, client in clients:
        try:
            containers = client.containers.list(all=True)
        except DockerException as e:
            log_event("WARN", f"Failed to query Docker on {label}: {e}")
            continue

        for container in containers:
            image = str((container.attrs.get("Config") or {}).get("Image") or "").lower()
            if "kavita" not in image and "kavita" not in (container.name or "").lower():
                continue
            found_container = True
            mounts = container.attrs.get("Mounts") or []
            source = next((m.get("Source") for m in mounts if m.get("Destination") == "/data"), None)
            if source:
                log_event("INFO", f"Kavita data mount detected at {source} ({label}, container {container.name}).")
                return source
            log_event("WARN", f"Kavita container found on {label} but /data mount was not detected.")

    if not found_container:
        log_event("WARN", "Kavita container not found while detecting data mount.")
    return None
