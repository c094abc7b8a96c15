from __future__ import annotations

from dataclasses import dataclass
from threading import Event, Thread
from typing import Any, Callable, Iterator

import docker
from docker.errors import DockerException, NotFound
from docker.utils import parse_repository_tag

from .errors import BootCancelled, ContainerStartError, ImagePullError
from .events import log_event
from .models import ServiceDescriptor, merge_env
from .runtime import TrackedContainerSet

ProgressSink = Callable[[dict[str, Any]], None]
LogSink = Callable[[str], None]

LOG_TAIL = 10


def make_client(docker_host: str | None = None) -> docker.DockerClient:
    if docker_host:
        return docker.DockerClient(base_url=docker_host)
    return docker.from_env()


def normalize_reference(reference: str) -> str:
    repo, tag = parse_repository_tag(reference)
    return f"{repo}:{tag or 'latest'}"


class NetworkFabricManager:
    """Shared bridge network plus warden's own membership in it."""

    def __init__(self, client: docker.DockerClient):
        self.client = client

    def ensure_network(self, name: str) -> bool:
        """Create ``name`` if absent. Returns True when it was created."""
        existing = [n for n in self.client.networks.list(names=[name]) if n.name == name]
        if existing:
            log_event("INFO", f"Docker network '{name}' already exists.", network=name)
            return False
        self.client.networks.create(name, driver="bridge")
        log_event("INFO", f"Created docker network '{name}'.", network=name)
        return True

    def attach_self(self, name: str, hostname: str | None) -> bool:
        """Connect warden's own container to ``name``. Returns True when connected now."""
        if not hostname:
            log_event("INFO", "HOSTNAME not set; skipping self attach.", network=name)
            return False
        try:
            me = self.client.containers.get(hostname)
        except NotFound:
            log_event("INFO", f"Not running inside a container ({hostname}); skipping self attach.", network=name)
            return False

        networks = (me.attrs.get("NetworkSettings") or {}).get("Networks") or {}
        if name in networks:
            log_event("INFO", f"Warden already attached to '{name}'.", network=name)
            return False

        self.client.networks.get(name).connect(me)
        log_event("INFO", f"Attached warden to docker network '{name}'.", network=name)
        return True


class ImageResolver:
    def __init__(self, client: docker.DockerClient):
        self.client = client

    def is_present(self, reference: str) -> bool:
        wanted = normalize_reference(reference)
        for image in self.client.images.list():
            for tag in image.tags or []:
                if tag == reference or tag == wanted:
                    return True
        return False

    def ensure_image(
        self,
        reference: str,
        on_progress: ProgressSink | None = None,
        cancel: Event | None = None,
        service_name: str | None = None,
    ) -> bool:
        """Pull ``reference`` unless cached locally. Returns True when pulled."""
        if self.is_present(reference):
            log_event("DEBUG", f"Image already present: {reference}", service_name, image=reference)
            return False

        repo, tag = parse_repository_tag(reference)
        log_event("INFO", f"Pulling image: {reference}", service_name, image=reference)
        try:
            for event in self.client.api.pull(repo, tag=tag or "latest", stream=True, decode=True):
                if cancel is not None and cancel.is_set():
                    raise BootCancelled(f"Pull of {reference} cancelled", service_name)
                if event.get("error"):
                    raise ImagePullError(f"Pull failed for {reference}: {event['error']}", service_name)
                if on_progress and event.get("status"):
                    on_progress(event)
        except DockerException as e:
            raise ImagePullError(f"Pull failed for {reference}: {e}", service_name) from e

        log_event("INFO", f"Pull complete for {reference}", service_name, image=reference)
        return True


class LogStream:
    """Iterator of decoded output lines from a followed container.

    Ends when the container stops or ``close()`` is called.
    """

    def __init__(self, container: Any, tail: int = LOG_TAIL):
        self._raw = container.logs(stream=True, follow=True, stdout=True, stderr=True, tail=tail)
        self.closed = False

    def __iter__(self) -> Iterator[str]:
        try:
            for chunk in self._raw:
                if self.closed:
                    break
                text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else str(chunk)
                for line in text.splitlines():
                    line = line.strip()
                    if line:
                        yield line
        finally:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        close = getattr(self._raw, "close", None)
        if callable(close):
            close()


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


class ContainerLifecycleController:
    def __init__(self, client: docker.DockerClient, tracked: TrackedContainerSet, debug: bool = False):
        self.client = client
        self.tracked = tracked
        self.debug = debug
        self.streams: dict[str, LogStream] = {}

    def exists(self, name: str) -> bool:
        containers = self.client.containers.list(all=True, filters={"name": name})
        return any(c.name == name for c in containers)

    def start(
        self,
        descriptor: ServiceDescriptor,
        network_name: str,
        stream_logs: bool | None = None,
        on_log: LogSink | None = None,
    ) -> ContainerRef | None:
        """Create and start the container. None when one with that name already exists."""
        name = descriptor.name
        if self.exists(name):
            log_event("INFO", f"{name} already present.", name, container=name)
            return None

        env = descriptor.env
        if "SERVICE_NAME" not in descriptor.env_keys():
            env = merge_env(env, {"SERVICE_NAME": name})

        try:
            container = self.client.containers.create(
                descriptor.image,
                name=name,
                environment=env,
                ports=descriptor.published_ports() or None,
                volumes=list(descriptor.volumes) or None,
                network=network_name,
                # Lifecycle is owned by warden; keep Docker restart policy off.
                restart_policy={"Name": "no"},
            )
        except DockerException as e:
            raise ContainerStartError(f"Failed to create {name}: {e}", name) from e

        # Track before starting so a failed start is still cleaned up on shutdown.
        self.tracked.add(name)
        try:
            container.start()
        except DockerException as e:
            raise ContainerStartError(f"Failed to start {name}: {e}", name) from e

        if stream_logs is None:
            stream_logs = descriptor.stream_logs or self.debug
        if stream_logs:
            try:
                self.attach_logs(name, container, on_log)
            except DockerException as e:
                log_event("WARN", f"Could not attach logs for {name}: {e}", name)

        log_event("INFO", f"{name} is now running.", name, container=name, image=descriptor.image)
        return ContainerRef(id=container.id, name=name)

    def attach_logs(self, name: str, container: Any, sink: LogSink | None = None) -> LogStream:
        stream = LogStream(container)
        self.streams[name] = stream
        sink = sink or (lambda line: log_event("INFO", line, name, source="container"))

        def _pump() -> None:
            try:
                for line in stream:
                    sink(line)
            except (DockerException, OSError) as e:
                log_event("DEBUG", f"Log stream for {name} ended: {e}", name)

        Thread(target=_pump, name=f"logs-{name}", daemon=True).start()
        return stream

    def stop_and_remove(self, name: str, timeout: int = 10) -> None:
        stream = self.streams.pop(name, None)
        if stream is not None:
            stream.close()
        container = self.client.containers.get(name)
        container.stop(timeout=timeout)
        container.remove()
