"""Cluster and registry resources, their serialised form and field selectors."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional

API_VERSION = "ctlptl.dev/v1alpha1"
GROUP = "ctlptl.dev"


def _key(name: str, *, omitempty: bool = True, **kwargs: Any) -> Any:
    """Declare a dataclass field with its serialised key."""
    return field(metadata={"key": name, "omitempty": omitempty}, **kwargs)


class NotFoundError(LookupError):
    """A named resource does not exist."""

    def __init__(self, group: str, resource: str, name: str) -> None:
        qualified = f"{resource}.{group}" if group else resource
        super().__init__(f'{qualified} "{name}" not found')
        self.group = group
        self.resource = resource
        self.name = name


@dataclass(frozen=True)
class TypeMeta:
    """The kind and API version of a resource."""

    kind: str = ""
    api_version: str = ""

    def __str__(self) -> str:
        return f"{{{self.kind} {self.api_version}}}"


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, (str, int, float, bool, list, dict)) and not value


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _to_dict(value)
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def _to_dict(obj: Any) -> dict:
    result = {}
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        if f.metadata.get("omitempty", True) and _is_empty(value):
            continue
        result[f.metadata["key"]] = _plain(value)
    return result


@dataclass
class MinikubeCluster:
    """Extra settings for a minikube cluster."""

    start_flags: list[str] = _key("startFlags", default_factory=list)
    extra_configs: list[str] = _key("extraConfigs", default_factory=list)
    container_runtime: str = _key("containerRuntime", default="")


@dataclass
class ClusterStatus:
    """Observed state of a cluster."""

    creation_timestamp: Optional[datetime] = _key(
        "creationTimestamp", omitempty=False, default=None
    )
    current: bool = _key("current", default=False)
    cpus: int = _key("cpus", default=0)
    local_registry_hosting: Optional[dict[str, str]] = _key(
        "localRegistryHosting", default=None
    )


@dataclass
class Cluster:
    """A local Kubernetes cluster."""

    api_version: str = _key("apiVersion", default=API_VERSION)
    kind: str = _key("kind", default="Cluster")
    name: str = _key("name", default="")
    product: str = _key("product", default="")
    kubernetes_version: str = _key("kubernetesVersion", default="")
    min_cpus: int = _key("minCPUs", default=0)
    registry: str = _key("registry", default="")
    minikube: Optional[MinikubeCluster] = _key("minikube", default=None)
    status: ClusterStatus = _key(
        "status", omitempty=False, default_factory=ClusterStatus
    )

    @property
    def type_meta(self) -> TypeMeta:
        return TypeMeta(kind=self.kind, api_version=self.api_version)

    def to_dict(self) -> dict:
        """Serialisable form, with empty fields left out."""
        return _to_dict(self)


@dataclass
class ClusterList:
    """A list of clusters."""

    api_version: str = _key("apiVersion", default=API_VERSION)
    kind: str = _key("kind", default="ClusterList")
    items: list[Cluster] = _key("items", omitempty=False, default_factory=list)

    @property
    def type_meta(self) -> TypeMeta:
        return TypeMeta(kind=self.kind, api_version=self.api_version)

    def to_dict(self) -> dict:
        """Serialisable form, with empty fields left out."""
        return _to_dict(self)


@dataclass
class RegistryStatus:
    """Observed state of a registry container."""

    creation_timestamp: Optional[datetime] = _key(
        "creationTimestamp", omitempty=False, default=None
    )
    container_id: str = _key("containerId", default="")
    ip_address: str = _key("ipAddress", default="")
    host_port: int = _key("hostPort", default=0)
    listen_address: str = _key("listenAddress", default="")
    container_port: int = _key("containerPort", default=0)
    networks: list[str] = _key("networks", default_factory=list)
    state: str = _key("state", default="")
    labels: dict[str, str] = _key("labels", default_factory=dict)
    image: str = _key("image", default="")


@dataclass
class Registry:
    """A local image registry."""

    api_version: str = _key("apiVersion", default=API_VERSION)
    kind: str = _key("kind", default="Registry")
    name: str = _key("name", default="")
    port: int = _key("port", default=0)
    listen_address: str = _key("listenAddress", default="")
    image: str = _key("image", default="")
    labels: dict[str, str] = _key("labels", default_factory=dict)
    status: RegistryStatus = _key(
        "status", omitempty=False, default_factory=RegistryStatus
    )

    @property
    def type_meta(self) -> TypeMeta:
        return TypeMeta(kind=self.kind, api_version=self.api_version)

    def to_dict(self) -> dict:
        """Serialisable form, with empty fields left out."""
        return _to_dict(self)


@dataclass
class RegistryList:
    """A list of registries."""

    api_version: str = _key("apiVersion", default=API_VERSION)
    kind: str = _key("kind", default="RegistryList")
    items: list[Registry] = _key("items", omitempty=False, default_factory=list)

    @property
    def type_meta(self) -> TypeMeta:
        return TypeMeta(kind=self.kind, api_version=self.api_version)

    def to_dict(self) -> dict:
        """Serialisable form, with empty fields left out."""
        return _to_dict(self)


@dataclass(frozen=True)
class ClusterFields:
    """Selectable fields of a cluster."""

    cluster: Cluster

    def has(self, field: str) -> bool:
        return field in ("name", "product")

    def get(self, field: str) -> str:
        if field == "name":
            return self.cluster.name
        if field == "product":
            return self.cluster.product
        return ""


@dataclass(frozen=True)
class RegistryFields:
    """Selectable fields of a registry."""

    registry: Registry

    def has(self, field: str) -> bool:
        return field == "name"

    def get(self, field: str) -> str:
        if field == "name":
            return self.registry.name
        if field == "port":
            return str(self.registry.port)
        return ""


class _Term(NamedTuple):
    field: str
    value: str
    negate: bool


@dataclass(frozen=True)
class FieldSelector:
    """A conjunction of field equality and inequality terms."""

    terms: tuple[_Term, ...] = ()

    def matches(self, fields: Any) -> bool:
        """Return True if every term holds for ``fields``."""
        return all(
            (fields.get(term.field) != term.value)
            if term.negate
            else (fields.get(term.field) == term.value)
            for term in self.terms
        )


_TERM_RE = re.compile(r"(.*?)(!=|==|=)(.*)", re.DOTALL)


def _split_terms(text: str) -> list[str]:
    if not text:
        return []
    terms = []
    current: list[str] = []
    in_slash = False
    for char in text:
        if in_slash:
            in_slash = False
        elif char == "\\":
            in_slash = True
        elif char == ",":
            terms.append("".join(current))
            current = []
            continue
        current.append(char)
    terms.append("".join(current))
    return terms


def _unescape(value: str) -> str:
    if not any(c in value for c in "\\,="):
        return value
    out = []
    in_slash = False
    for char in value:
        if in_slash:
            if char not in "\\,=":
                raise ValueError(
                    f"invalid field selector: invalid escape sequence: \\{char}"
                )
            out.append(char)
            in_slash = False
        elif char == "\\":
            in_slash = True
        elif char in ",=":
            raise ValueError(
                f"invalid field selector: unescaped character in value: {char}"
            )
        else:
            out.append(char)
    if in_slash:
        raise ValueError("invalid field selector: invalid escape sequence: \\")
    return "".join(out)


def parse_field_selector(text: str) -> FieldSelector:
    """Parse a selector such as ``name=foo,product!=kind``."""
    terms = []
    for part in sorted(_split_terms(text)):
        if not part:
            continue
        match = _TERM_RE.match(part)
        if match is None:
            raise ValueError(f"invalid selector: '{text}'; can't understand '{part}'")
        lhs, op, rhs = match.groups()
        terms.append(_Term(lhs, _unescape(rhs), op == "!="))
    return FieldSelector(tuple(terms))