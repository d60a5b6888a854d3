import pytest

from ctlptl.docker import (
    is_local_docker_desktop,
    is_local_docker_engine_host,
    is_local_host,
)


@pytest.mark.parametrize(
    "host, local_daemon, docker_desktop",
    [
        ("", True, True),
        ("tcp://localhost:2375", True, True),
        ("tcp://127.0.0.1:2375", True, True),
        ("npipe:////./pipe/docker_engine", True, True),
        ("unix:///var/run/docker.sock", True, True),
        ("tcp://cluster:2375", False, False),
        ("http://cluster:2375", False, False),
        ("unix:///Users/USER/.colima/docker.sock", True, False),
        ("unix:///Users/USER/.docker/desktop/docker.sock", True, True),
        ("unix:///Users/USER/.docker/run/docker.sock", True, True),
    ],
)
def test_is_local_docker_host(host, local_daemon, docker_desktop):
    assert is_local_host(host) == local_daemon
    assert is_local_docker_engine_host(host) == docker_desktop


@pytest.mark.parametrize(
    "host, os_name, expected",
    [
        ("", "linux", False),
        ("tcp://localhost:2375", "linux", False),
        ("tcp://127.0.0.1:2375", "linux", False),
        ("npipe:////./pipe/docker_engine", "windows", True),
        ("unix:///var/run/docker.sock", "darwin", True),
        ("unix:///var/run/docker.sock", "linux", False),
        ("tcp://cluster:2375", "linux", False),
        ("http://cluster:2375", "linux", False),
        ("unix:///Users/USER/.colima/docker.sock", "linux", False),
        ("unix:///Users/USER/.docker/desktop/docker.sock", "linux", True),
    ],
)
def test_is_local_docker_desktop(host, os_name, expected):
    assert is_local_docker_desktop(host, os_name) == expected