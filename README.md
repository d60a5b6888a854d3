# ctlptl

A Python library for working with local Kubernetes clusters, the image
registries that serve them, and Docker Desktop settings.

## Install

```
pip install .
```

## Modules

- `ctlptl.docker` classifies a Docker daemon address:
  `is_local_host`, `is_local_docker_engine_host` and
  `is_local_docker_desktop(docker_host, os_name)`.
- `ctlptl.resources` holds the `Cluster`, `ClusterList`, `Registry` and
  `RegistryList` objects (each with `to_dict()`), `NotFoundError`, and
  field selectors: `parse_field_selector("name=foo,product!=kind")` returns a
  `FieldSelector` whose `matches()` takes a `ClusterFields` or
  `RegistryFields`.
- `ctlptl.normalize` has the `Product` enum with `default_cluster_name()`,
  `fill_cluster_defaults(cluster)` and `normalized_get(controller, name)`,
  which lets `kind` find the `kind-kind` cluster and `k3d` find
  `k3d-k3s-default`.
- `ctlptl.registry` has `RegistryController`, which lists, gets, applies and
  deletes registry containers through an object that implements the
  `DockerClient` protocol, plus `fill_defaults`, `normalize_image_ref`,
  `images_refs_equal` and `free_port`.
- `ctlptl.docker_desktop` has `DockerDesktopClient` and
  `new_docker_desktop_client()`, which talk to Docker Desktop over its local
  sockets: read settings (`settings`, `settings_values`), change one setting
  (`set_setting_value("vm.resources.cpus", "4")`), enable Kubernetes, raise
  the CPU count, reset the Kubernetes cluster, and open or quit the
  application.
- `ctlptl.get` prints resources: `GetOptions` renders tables by default or
  uses `to_printer` for `name`, `yaml` or `json` output;
  `short_human_duration` formats ages such as `3y`.
- `ctlptl.create` has `CreateClusterOptions` and `CreateRegistryOptions`,
  whose `run` refuses to create something that already exists and prints
  what the controller applied.

## Example

```python
from ctlptl.docker import is_local_docker_desktop
from ctlptl.get import GetOptions
from ctlptl.resources import Cluster, ClusterList

print(is_local_docker_desktop("unix:///var/run/docker.sock", "darwin"))  # True

clusters = ClusterList(items=[Cluster(name="kind-kind", product="kind")])
GetOptions(output="yaml").print(clusters)
```

## What this package does not do

- It has no command-line program; everything is used from Python.
- It does not read cluster or registry config files.
- It ships no Docker Engine client: `RegistryController` needs a
  `DockerClient` object supplied by the caller, and `CreateClusterOptions`
  and `CreateRegistryOptions` need a controller supplied by the caller.
- It does not create, restart or delete Kubernetes clusters itself.

## Tests

```
pip install .[test]
pytest
```