import itertools
import logging

import pytest
from docker.errors import APIError, NotFound

from warden.models import ServiceDescriptor
from warden.runtime import TrackedContainerSet

_ids = itertools.count(1)


class FakeContainer:
    def __init__(self, client, name, image, **kwargs):
        self.client = client
        self.id = f"c{next(_ids):04d}"
        self.name = name
        self.image_ref = image
        self.kwargs = kwargs
        self.status = "created"
        self.attrs = {"Config": {"Image": image}, "Mounts": [], "NetworkSettings": {"Networks": {}}}
        self.log_lines = [b"booting\n", b"listening on 3000\n"]
        self.fail_start = False
        self.fail_stop = False

    def start(self):
        self.client.calls.append(("start", self.name))
        if self.fail_start:
            raise APIError(f"cannot start {self.name}")
        self.status = "running"

    def stop(self, timeout=10):
        self.client.calls.append(("stop", self.name))
        if self.fail_stop:
            raise APIError(f"cannot stop {self.name}")
        self.status = "exited"

    def remove(self, force=False):
        self.client.calls.append(("remove", self.name))
        self.client.containers.items.pop(self.name, None)

    def logs(self, **kwargs):
        return iter(self.log_lines)


class FakeContainers:
    def __init__(self, client):
        self.client = client
        self.items = {}
        self.fail_create = False

    def list(self, all=False, filters=None):
        items = list(self.items.values())
        if not all:
            items = [c for c in items if c.status == "running"]
        if filters and filters.get("name"):
            items = [c for c in items if filters["name"] in c.name]
        return items

    def get(self, name):
        try:
            return self.items[name]
        except KeyError:
            raise NotFound(f"No such container: {name}") from None

    def create(self, image, name=None, **kwargs):
        self.client.calls.append(("create", name))
        if self.fail_create:
            raise APIError(f"cannot create {name}")
        container = FakeContainer(self.client, name, image, **kwargs)
        self.items[name] = container
        return container

    def add_existing(self, name, image="busybox:latest", status="running"):
        container = FakeContainer(self.client, name, image)
        container.status = status
        self.items[name] = container
        return container


class FakeNetwork:
    def __init__(self, name):
        self.name = name
        self.connected = []

    def connect(self, container):
        self.connected.append(container.name)
        container.attrs["NetworkSettings"]["Networks"][self.name] = {}


class FakeNetworks:
    def __init__(self, client):
        self.client = client
        self.items = {}

    def list(self, names=None):
        nets = list(self.items.values())
        if names:
            # Docker matches network names by substring.
            nets = [n for n in nets if any(x in n.name for x in names)]
        return nets

    def create(self, name, driver=None):
        self.client.calls.append(("network_create", name))
        self.items[name] = FakeNetwork(name)
        return self.items[name]

    def get(self, name):
        try:
            return self.items[name]
        except KeyError:
            raise NotFound(f"network {name} not found") from None


class FakeImage:
    def __init__(self, tags):
        self.tags = tags


class FakeImages:
    def __init__(self):
        self.items = []

    def list(self):
        return list(self.items)


class FakeAPI:
    def __init__(self, client):
        self.client = client
        self.pull_events = [
            {"status": "Pulling from library/x", "id": "latest"},
            {"status": "Downloading", "progress": "[==>   ]", "id": "layer-1"},
            {"status": "Download complete", "id": "layer-1"},
        ]

    def pull(self, repository, tag=None, stream=False, decode=False):
        ref = f"{repository}:{tag}"
        self.client.calls.append(("pull", ref))
        for event in self.pull_events:
            yield event
        self.client.images.items.append(FakeImage([ref]))


class FakeDockerClient:
    def __init__(self):
        self.calls = []
        self.containers = FakeContainers(self)
        self.networks = FakeNetworks(self)
        self.images = FakeImages()
        self.api = FakeAPI(self)

    def ping(self):
        return True

    def lifecycle_calls(self):
        return [c for c in self.calls if c[0] in {"pull", "create", "start"}]


@pytest.fixture
def docker_client():
    return FakeDockerClient()


@pytest.fixture
def tracked():
    return TrackedContainerSet()


def make_descriptor(name, **kwargs):
    kwargs.setdefault("image", f"example/{name}:latest")
    kwargs.setdefault("group", "minimal")
    return ServiceDescriptor(name=name, **kwargs)


@pytest.fixture
def descriptor():
    return make_descriptor


@pytest.fixture(autouse=True)
def _reset_warden_logging():
    yield
    root = logging.getLogger("warden")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True
