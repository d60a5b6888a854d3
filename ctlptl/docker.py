"""Classify Docker daemon hosts as local, local engine or Docker Desktop."""

CONTAINER_LABEL_ROLE = "dev.tilt.ctlptl.role"

_LOCAL_HOST_PREFIXES = (
    "tcp://localhost:",
    "tcp://127.0.0.1:",
    "npipe:",
    "unix:",
)

_ENGINE_SOCKET_SUFFIXES = (
    # Docker Desktop for Linux keeps its socket in ~/.docker/desktop.
    "/.docker/desktop/docker.sock",
    # Docker Desktop for Mac 4.13+ keeps its socket in ~/.docker/run.
    "/.docker/run/docker.sock",
)


def is_local_host(docker_host: str) -> bool:
    """Return True if the Docker daemon runs on this machine."""
    return docker_host == "" or docker_host.startswith(_LOCAL_HOST_PREFIXES)


def is_local_docker_engine_host(docker_host: str) -> bool:
    """Return True if the host looks like a local Docker Engine."""
    if docker_host.startswith("unix:"):
        # Several tools masquerade as Docker Desktop on a different socket.
        return "/var/run/docker.sock" in docker_host or docker_host.endswith(
            _ENGINE_SOCKET_SUFFIXES
        )
    return is_local_host(docker_host)


def is_local_docker_desktop(docker_host: str, os_name: str) -> bool:
    """Return True if the host looks like a local Docker Desktop on ``os_name``."""
    if os_name in ("darwin", "windows"):
        return is_local_docker_engine_host(docker_host)
    return docker_host.startswith("unix:") and docker_host.endswith(
        "/.docker/desktop/docker.sock"
    )