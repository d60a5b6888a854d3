"""Local Kubernetes products and lookup of clusters by product name."""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from .resources import Cluster, NotFoundError


class Product(str, Enum):
    """A local Kubernetes product."""

    UNKNOWN = "unknown"
    GKE = "gke"
    MINIKUBE = "minikube"
    DOCKER_DESKTOP = "docker-desktop"
    MICROK8S = "microk8s"
    CRC = "crc"
    KRUCIBLE = "krucible"
    KIND = "kind"
    K3D = "k3d"
    RANCHER_DESKTOP = "rancher-desktop"

    def default_cluster_name(self) -> str:
        """Name the product gives a cluster when none is requested."""
        if self is Product.KIND:
            return "kind-kind"
        if self is Product.K3D:
            return "k3d-k3s-default"
        return self.value


class ClusterGetter(Protocol):
    def get(self, name: str) -> Cluster:
        """Return the named cluster or raise NotFoundError."""


def fill_cluster_defaults(cluster: Cluster) -> None:
    """Give an unnamed cluster the default name of its product."""
    if cluster.name or not cluster.product:
        return
    try:
        cluster.name = Product(cluster.product).default_cluster_name()
    except ValueError:
        cluster.name = cluster.product


def normalized_get(controller: ClusterGetter, name: str) -> Cluster:
    """Get a cluster by name, falling back to the product's default cluster name.

    This lets ``kind`` refer to the ``kind-kind`` cluster. If the fallback
    fails too, the original NotFoundError is raised.
    """
    try:
        return controller.get(name)
    except NotFoundError as original:
        if name == Product.KIND.value:
            retry_name = Product.KIND.default_cluster_name()
        elif name == Product.K3D.value:
            retry_name = Product.K3D.default_cluster_name()
        else:
            raise
        try:
            return controller.get(retry_name)
        except Exception:
            raise original from None