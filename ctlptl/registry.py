"""Manage local image registries that run as Docker containers."""

from __future__ import annotations

import copy
import re
import socket
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Callable, Optional, Protocol

from .docker import CONTAINER_LABEL_ROLE, is_local_host
from .resources import (
    GROUP,
    NotFoundError,
    Registry,
    RegistryFields,
    RegistryList,
    RegistryStatus,
    parse_field_selector,
)

DEFAULT_REGISTRY_IMAGE_REF = "docker.io/library/registry:2"
DEFAULT_REGISTRY_NAME = "ctlptl-registry"
CONTAINER_STATE_RUNNING = "running"
REGISTRY_CONTAINER_PORT = 5000

# Applied to registry containers on create; not considered for equality,
# so registries managed by other tools are not needlessly re-created.
CTLPTL_LABELS = {CONTAINER_LABEL_ROLE: "registry"}

_RESOURCE = "registries"


@dataclass(frozen=True)
class Port:
    """A port published by a container."""

    ip: str = ""
    private_port: int = 0
    public_port: int = 0
    type: str = "tcp"


@dataclass
class Container:
    """Summary of a Docker container, as returned by a container listing."""

    id: str
    names: list[str] = field(default_factory=list)
    image: str = ""
    created: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    ports: list[Port] = field(default_factory=list)
    state: str = ""
    networks: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerConfig:
    """Everything needed to create and start a registry container."""

    hostname: str
    image: str
    exposed_ports: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    env: list[str] = field(default_factory=list)
    port_bindings: dict[str, list[tuple[str, str]]] = field(default_factory=dict)
    restart_policy: str = "always"


class DockerClient(Protocol):
    """The Docker operations the registry controller relies on."""

    def daemon_host(self) -> str:
        """Address of the Docker daemon; empty for the default local one."""

    def container_list(self, filters: dict[str, str]) -> list[Container]:
        """List all containers, running or not, matching every filter."""

    def container_remove(self, container_id: str, force: bool = True) -> None:
        """Remove a container."""

    def remove_if_necessary(self, name: str) -> None:
        """Remove the container with this name, if there is one."""

    def run(self, name: str, config: ContainerConfig) -> None:
        """Create and start a container with this name."""


def fill_defaults(registry: Registry) -> None:
    """Fill in the default name and image of a registry."""
    if not registry.name:
        registry.name = DEFAULT_REGISTRY_NAME
    if not registry.image:
        registry.image = DEFAULT_REGISTRY_IMAGE_REF


_ALNUM = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]*)"
_COMPONENT = rf"{_ALNUM}(?:{_SEPARATOR}{_ALNUM})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_REFERENCE_RE = re.compile(
    rf"((?:{_DOMAIN}/)?{_COMPONENT}(?:/{_COMPONENT})*)(?::({_TAG}))?(?:@({_DIGEST}))?",
    re.ASCII,
)
_IDENTIFIER_RE = re.compile(r"[a-f0-9]{64}")
_DEFAULT_DOMAIN = "docker.io"
_LEGACY_DOMAIN = "index.docker.io"
_NAME_MAX_LENGTH = 255


def _split_docker_domain(ref: str) -> tuple[str, str]:
    slash = ref.find("/")
    head = ref[:slash]
    if slash == -1 or (
        not any(c in head for c in ".:") and head != "localhost"
    ):
        domain, remainder = _DEFAULT_DOMAIN, ref
    else:
        domain, remainder = head, ref[slash + 1 :]
    if domain == _LEGACY_DOMAIN:
        domain = _DEFAULT_DOMAIN
    if domain == _DEFAULT_DOMAIN and "/" not in remainder:
        remainder = "library/" + remainder
    return domain, remainder


def normalize_image_ref(ref: str) -> str:
    """Return the fully qualified form of an image reference.

    Raises ValueError if the reference is invalid.
    """
    if _IDENTIFIER_RE.fullmatch(ref):
        raise ValueError(
            f"invalid repository name ({ref}), cannot specify 64-byte hexadecimal strings"
        )
    domain, remainder = _split_docker_domain(ref)
    remainder_name = remainder.split(":", 1)[0]
    if remainder_name.lower() != remainder_name:
        raise ValueError("invalid reference format: repository name must be lowercase")

    match = _REFERENCE_RE.fullmatch(f"{domain}/{remainder}")
    if match is None:
        raise ValueError("invalid reference format")
    name, tag, digest = match.groups()
    if len(name) > _NAME_MAX_LENGTH:
        raise ValueError("repository name must not be more than 255 characters")

    result = name
    if tag:
        result += f":{tag}"
    if digest:
        result += f"@{digest}"
    return result


def images_refs_equal(a: str, b: str) -> bool:
    """True if both references are valid and normalise to the same name."""
    try:
        return normalize_image_ref(a) == normalize_image_ref(b)
    except ValueError:
        return False


def free_port() -> int:
    """Ask the operating system for a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]


class RegistryController:
    """Reads and reconciles registry containers."""

    def __init__(
        self,
        docker_client: DockerClient,
        err_out: Optional[IO[str]] = None,
        forwarder: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.docker_client = docker_client
        self._err_out = err_out
        self._forwarder = forwarder

    @property
    def err_out(self) -> IO[str]:
        return self._err_out if self._err_out is not None else sys.stderr

    def get(self, name: str) -> Registry:
        """Return the registry with this name, or raise NotFoundError."""
        items = self.list(f"name={name}").items
        if not items:
            raise NotFoundError(GROUP, _RESOURCE, name)
        return items[0]

    def list(self, field_selector: str = "") -> RegistryList:
        """List registries whose fields match the selector."""
        selector = parse_field_selector(field_selector)
        result = []
        for container in self._registry_containers():
            if not container.names:
                continue
            name = container.names[0].removeprefix("/")
            listen_address, host_port, container_port = _ip_and_ports(container.ports)
            registry = Registry(
                name=name,
                port=host_port,
                status=RegistryStatus(
                    creation_timestamp=datetime.fromtimestamp(
                        container.created, timezone.utc
                    ),
                    container_id=container.id,
                    ip_address=container.networks.get("bridge") or "",
                    host_port=host_port,
                    listen_address=listen_address,
                    container_port=container_port,
                    networks=sorted(container.networks),
                    state=container.state,
                    labels=dict(container.labels or {}),
                    image=container.image,
                ),
            )
            if selector.matches(RegistryFields(registry)):
                result.append(registry)
        return RegistryList(items=result)

    def apply(self, desired: Registry) -> Registry:
        """Make the running registry match ``desired`` and return it."""
        fill_defaults(desired)
        try:
            existing = self.get(desired.name)
        except NotFoundError:
            existing = Registry()

        needs_delete = (
            (existing.port != 0 and desired.port != 0 and existing.port != desired.port)
            or not images_refs_equal(existing.status.image, desired.image)
            # A registry that died has to be re-created.
            or existing.status.state != CONTAINER_STATE_RUNNING
            # A missing label can only be added by re-creating the container.
            or any(
                existing.status.labels.get(key, "") != value
                for key, value in desired.labels.items()
            )
        )
        if needs_delete and existing.name:
            self.delete(existing.name)
            existing = copy.deepcopy(existing)
            existing.status.container_id = ""

        if existing.status.container_id:
            return existing

        self.err_out.write(f'Creating registry "{desired.name}"...\n')

        self.docker_client.remove_if_necessary(desired.name)
        exposed_ports, port_bindings, host_port = self._port_configs(existing, desired)
        self.docker_client.run(
            desired.name,
            ContainerConfig(
                hostname=desired.name,
                image=desired.image,
                exposed_ports=exposed_ports,
                labels=self._label_configs(existing, desired),
                env=["REGISTRY_STORAGE_DELETE_ENABLED=true"],
                port_bindings=port_bindings,
                restart_policy="always",
            ),
        )
        self._maybe_create_forwarder(host_port)
        return self.get(desired.name)

    def delete(self, name: str) -> None:
        """Remove the container running the named registry."""
        registry = self.get(name)
        container_id = registry.status.container_id
        if not container_id:
            raise RuntimeError(f"container not running registry: {name}")
        self.docker_client.container_remove(container_id, force=True)

    def _port_configs(
        self, existing: Registry, desired: Registry
    ) -> tuple[list[str], dict[str, list[tuple[str, str]]], int]:
        host_port = desired.port or existing.status.host_port
        listen_address = desired.listen_address or existing.status.listen_address
        if host_port == 0:
            try:
                host_port = free_port()
            except OSError as err:
                raise RuntimeError(f"creating registry: {err}") from err
        if not listen_address:
            # Bind to IPv4 explicitly; IPv6-enabled networks break the forward.
            listen_address = "127.0.0.1"
        port = f"{REGISTRY_CONTAINER_PORT}/tcp"
        return [port], {port: [(listen_address, str(host_port))]}, host_port

    def _label_configs(self, existing: Registry, desired: Registry) -> dict[str, str]:
        return {**existing.status.labels, **desired.labels, **CTLPTL_LABELS}

    def _maybe_create_forwarder(self, port: int) -> None:
        if is_local_host(self.docker_client.daemon_host()):
            return
        self.err_out.write(
            " 🎮 Env DOCKER_HOST set. Assuming remote Docker and forwarding "
            f"registry to localhost:{port}\n"
        )
        if self._forwarder is None:
            raise RuntimeError(f"no port forwarder available for localhost:{port}")
        self._forwarder(port)

    def _registry_containers(self) -> list[Container]:
        containers: dict[str, Container] = {}
        for filters in (
            {"label": f"{CONTAINER_LABEL_ROLE}=registry"},
            {"ancestor": DEFAULT_REGISTRY_IMAGE_REF},
        ):
            for container in self.docker_client.container_list(filters):
                containers[container.id] = container
        return sorted(containers.values(), key=lambda c: c.id)


def _ip_and_ports(ports: list[Port]) -> tuple[str, int, int]:
    for port in ports:
        if port.private_port == REGISTRY_CONTAINER_PORT:
            return port.ip, port.public_port, port.private_port
    return "unknown", 0, 0