import pytest
from docker.errors import APIError

from warden.discovery import (
    DEFAULT_SOCKETS,
    detect_docker_sockets,
    detect_kavita_data_mount,
    is_windows_pipe_path,
    normalize_docker_socket,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("unix:///var/run/docker.sock", "/var/run/docker.sock"),
        ("/run/podman/podman.sock", "/run/podman/podman.sock"),
        ("tcp://10.0.0.1:2375", None),
        ("   ", None),
        (None, None),
        ("npipe:////./pipe/docker_engine", "//./pipe/docker_engine"),
        ("npipe://docker_engine", "//./pipe/docker_engine"),
        ("\\\\.\\pipe\\docker_engine", "//./pipe/docker_engine"),
        ("//./pipe/docker_engine", "//./pipe/docker_engine"),
    ],
)
def test_normalize_docker_socket(raw, expected):
    assert normalize_docker_socket(raw) == expected


def test_is_windows_pipe_path():
    assert is_windows_pipe_path("\\\\.\\pipe\\docker_engine")
    assert not is_windows_pipe_path("/var/run/docker.sock")


def test_detection_order_and_dedup():
    env = {
        "NOONA_HOST_DOCKER_SOCKETS": "/custom/a.sock, unix:///custom/b.sock",
        "HOST_DOCKER_SOCKETS": "/custom/a.sock",
        "DOCKER_HOST": "unix:///var/run/docker.sock",
    }
    listing = {"/run": ["docker-desktop.sock", "podman", "random.sock", "dockerd.pid"], "/var/run": ["docker.sock"]}

    def listdir(path):
        if path not in listing:
            raise FileNotFoundError(path)
        return listing[path]

    sockets = detect_docker_sockets(env, listdir)

    assert sockets[:3] == ["/custom/a.sock", "/custom/b.sock", "/var/run/docker.sock"]
    assert sockets[3:3 + len(DEFAULT_SOCKETS) - 1] == [s for s in DEFAULT_SOCKETS if s != "/var/run/docker.sock"]
    assert sockets[-1] == "/run/docker-desktop.sock"
    assert len(sockets) == len(set(sockets))


def test_kavita_mount_detection(docker_client):
    kavita = docker_client.containers.add_existing("kavita")
    kavita.attrs["Config"]["Image"] = "jvmilazz0/kavita:latest"
    kavita.attrs["Mounts"] = [{"Destination": "/config", "Source": "/x"}, {"Destination": "/data", "Source": "/srv/manga"}]

    assert detect_kavita_data_mount([("default", docker_client)]) == "/srv/manga"


def test_kavita_mount_missing_or_unreachable(docker_client):
    class Broken:
        class containers:
            @staticmethod
            def list(all=False):
                raise APIError("daemon down")

    docker_client.containers.add_existing("kavita")
    assert detect_kavita_data_mount([("broken", Broken()), ("default", docker_client)]) is None
