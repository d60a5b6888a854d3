"""Create a cluster or a registry, refusing if it already exists."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import IO, Optional, Protocol

from .get import to_printer
from .normalize import Product, fill_cluster_defaults
from .registry import DEFAULT_REGISTRY_IMAGE_REF
from .registry import fill_defaults as fill_registry_defaults
from .resources import Cluster, MinikubeCluster, NotFoundError, Registry


class ClusterCreator(Protocol):
    def apply(self, cluster: Cluster) -> Cluster:
        """Create or update a cluster and return it."""

    def get(self, name: str) -> Cluster:
        """Return the named cluster or raise NotFoundError."""


class RegistryCreator(Protocol):
    def apply(self, registry: Registry) -> Registry:
        """Create or update a registry and return it."""

    def get(self, name: str) -> Registry:
        """Return the named registry or raise NotFoundError."""


@dataclass
class CreateClusterOptions:
    """Options for creating a cluster of a local Kubernetes product."""

    out: IO[str] = field(default_factory=lambda: sys.stdout)
    err_out: IO[str] = field(default_factory=lambda: sys.stderr)
    output: Optional[str] = None
    cluster: Cluster = field(
        default_factory=lambda: Cluster(minikube=MinikubeCluster())
    )

    def run(self, controller: ClusterCreator, product: str) -> None:
        """Create the cluster with ``controller`` and print it."""
        self.cluster.product = product
        # Drop the minikube settings when they do not apply or are empty.
        if product != Product.MINIKUBE.value or self.cluster.minikube == MinikubeCluster():
            self.cluster.minikube = None
        fill_cluster_defaults(self.cluster)

        try:
            controller.get(self.cluster.name)
        except NotFoundError:
            pass
        except Exception as err:
            raise RuntimeError(f"Cannot check cluster: {err}") from err
        else:
            raise RuntimeError("Cannot create cluster: already exists")

        applied = controller.apply(self.cluster)
        to_printer(self.output, "created").print_obj(applied, self.out)


@dataclass
class CreateRegistryOptions:
    """Options for creating a named registry."""

    out: IO[str] = field(default_factory=lambda: sys.stdout)
    err_out: IO[str] = field(default_factory=lambda: sys.stderr)
    output: Optional[str] = None
    registry: Registry = field(
        default_factory=lambda: Registry(image=DEFAULT_REGISTRY_IMAGE_REF)
    )

    def run(self, controller: RegistryCreator, name: str) -> None:
        """Create the registry with ``controller`` and print it."""
        self.registry.name = name
        fill_registry_defaults(self.registry)

        try:
            controller.get(self.registry.name)
        except NotFoundError:
            pass
        except Exception as err:
            raise RuntimeError(f"Cannot check registry: {err}") from err
        else:
            raise RuntimeError("Cannot create registry: already exists")

        applied = controller.apply(self.registry)
        to_printer(self.output, "created").print_obj(applied, self.out)