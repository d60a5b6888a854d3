"""Local Kubernetes cluster and registry resources, registry control, and Docker Desktop settings."""

__version__ = "0.1.0"