import io
from datetime import datetime, timezone

import pytest

from ctlptl.registry import (
    Container,
    ContainerConfig,
    Port,
    RegistryController,
    fill_defaults,
    free_port,
    images_refs_equal,
    normalize_image_ref,
)
from ctlptl.resources import NotFoundError, Registry, RegistryStatus


def _networks():
    return {"bridge": "172.0.1.2", "kind": "172.0.1.3"}


def kind_registry():
    return Container(
        id="a815c0ec15f1f7430bd402e3fffe65026dd692a1a99861a52b3e30ad6e253a08",
        names=["/kind-registry"],
        image="registry:2",
        created=1603483645,
        labels={"dev.tilt.ctlptl.role": "registry"},
        ports=[Port(ip="127.0.0.1", private_port=5000, public_port=5001)],
        state="running",
        networks=_networks(),
    )


def kind_registry_loopback():
    return Container(
        id="d62f2587ff7b03858f144d3cf83c789578a6d6403f8b82a459ab4e317917cd42",
        names=["/kind-registry-loopback"],
        image="registry:2",
        created=1603483646,
        labels={"dev.tilt.ctlptl.role": "registry"},
        ports=[Port(ip="127.0.0.1", private_port=5000, public_port=5001)],
        state="running",
        networks=_networks(),
    )


def kind_registry_custom_image():
    return Container(
        id="c7f123e65474f951c3bc4232c888616c0f9b1052c7ae706a3b6d4701bea6e90d",
        names=["/kind-registry-custom-image"],
        image="fake.tilt.dev/my-registry-image:latest",
        created=1603483647,
        labels={"dev.tilt.ctlptl.role": "registry"},
        ports=[Port(ip="127.0.0.1", private_port=5000, public_port=5001)],
        state="running",
        networks=_networks(),
    )


class FakeDocker:
    def __init__(self, host=""):
        self.host = host
        self.containers = []
        self.last_removed_container = ""
        self.last_create_config = None
        self.removed_names = []
        self.on_create = None

    def daemon_host(self):
        return self.host

    def container_list(self, filters):
        result = []
        for c in self.containers:
            if "ancestor" in filters:
                try:
                    img = normalize_image_ref(c.image)
                except ValueError:
                    continue
                if img != filters["ancestor"]:
                    continue
            if "label" in filters:
                key, _, value = filters["label"].partition("=")
                if (c.labels or {}).get(key) != value:
                    continue
            result.append(c)
        return result

    def container_remove(self, container_id, force=True):
        self.last_removed_container = container_id

    def remove_if_necessary(self, name):
        self.removed_names.append(name)

    def run(self, name, config):
        self.last_create_config = config
        if self.on_create is not None:
            self.on_create()


@pytest.fixture
def docker():
    return FakeDocker()


@pytest.fixture
def err_out():
    return io.StringIO()


@pytest.fixture
def controller(docker, err_out):
    return RegistryController(docker, err_out=err_out)


def _ts(seconds):
    return datetime.fromtimestamp(seconds, timezone.utc)


def test_list_registries(docker, controller):
    without_labels = kind_registry_loopback()
    without_labels.labels = {}
    docker.containers = [kind_registry(), without_labels, kind_registry_custom_image()]

    items = controller.list().items

    assert len(items) == 3
    assert items[0] == Registry(
        name="kind-registry",
        port=5001,
        status=RegistryStatus(
            creation_timestamp=_ts(1603483645),
            host_port=5001,
            container_port=5000,
            ip_address="172.0.1.2",
            listen_address="127.0.0.1",
            networks=["bridge", "kind"],
            container_id="a815c0ec15f1f7430bd402e3fffe65026dd692a1a99861a52b3e30ad6e253a08",
            state="running",
            labels={"dev.tilt.ctlptl.role": "registry"},
            image="registry:2",
        ),
    )
    assert items[1] == Registry(
        name="kind-registry-custom-image",
        port=5001,
        status=RegistryStatus(
            creation_timestamp=_ts(1603483647),
            host_port=5001,
            container_port=5000,
            ip_address="172.0.1.2",
            listen_address="127.0.0.1",
            networks=["bridge", "kind"],
            container_id="c7f123e65474f951c3bc4232c888616c0f9b1052c7ae706a3b6d4701bea6e90d",
            state="running",
            labels={"dev.tilt.ctlptl.role": "registry"},
            image="fake.tilt.dev/my-registry-image:latest",
        ),
    )
    assert items[2] == Registry(
        name="kind-registry-loopback",
        port=5001,
        status=RegistryStatus(
            creation_timestamp=_ts(1603483646),
            host_port=5001,
            container_port=5000,
            ip_address="172.0.1.2",
            listen_address="127.0.0.1",
            networks=["bridge", "kind"],
            container_id="d62f2587ff7b03858f144d3cf83c789578a6d6403f8b82a459ab4e317917cd42",
            state="running",
            image="registry:2",
        ),
    )


def test_get_registry(docker, controller):
    docker.containers = [kind_registry()]

    registry = controller.get("kind-registry")

    assert registry == Registry(
        name="kind-registry",
        port=5001,
        status=RegistryStatus(
            creation_timestamp=_ts(1603483645),
            host_port=5001,
            container_port=5000,
            ip_address="172.0.1.2",
            listen_address="127.0.0.1",
            networks=["bridge", "kind"],
            container_id="a815c0ec15f1f7430bd402e3fffe65026dd692a1a99861a52b3e30ad6e253a08",
            state="running",
            labels={"dev.tilt.ctlptl.role": "registry"},
            image="registry:2",
        ),
    )


def test_get_missing_registry_raises_not_found(docker, controller):
    docker.containers = [kind_registry()]
    with pytest.raises(NotFoundError) as info:
        controller.get("nope")
    assert str(info.value) == 'registries.ctlptl.dev "nope" not found'


def test_list_with_field_selector(docker, controller):
    docker.containers = [kind_registry(), kind_registry_loopback()]
    items = controller.list("name=kind-registry-loopback").items
    assert [r.name for r in items] == ["kind-registry-loopback"]


def test_apply_dead_registry(docker, controller, err_out):
    dead = kind_registry()
    dead.state = "dead"
    docker.containers = [dead]

    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    registry = controller.apply(Registry(name="kind-registry", port=5001))

    assert registry.status.state == "running"
    assert docker.last_removed_container == dead.id
    assert err_out.getvalue() == 'Creating registry "kind-registry"...\n'


def test_apply_labels(docker, controller):
    docker.containers = [kind_registry()]

    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    registry = controller.apply(
        Registry(name="kind-registry", labels={"managed-by": "ctlptl"})
    )

    assert registry.status.state == "running"
    config = docker.last_create_config
    assert isinstance(config, ContainerConfig)
    assert config.labels == {
        "managed-by": "ctlptl",
        "dev.tilt.ctlptl.role": "registry",
    }
    assert config.hostname == "kind-registry"
    assert config.image == "docker.io/library/registry:2"
    assert config.env == ["REGISTRY_STORAGE_DELETE_ENABLED=true"]
    assert config.restart_policy == "always"


def test_preserve_port(docker, controller):
    existing = kind_registry()
    existing.state = "dead"
    existing.ports = [Port(ip="127.0.0.1", private_port=5000, public_port=5010)]
    docker.containers = [existing]

    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    registry = controller.apply(Registry(name="kind-registry"))

    assert registry.status.state == "running"
    config = docker.last_create_config
    assert config.labels == {"dev.tilt.ctlptl.role": "registry"}
    assert config.hostname == "kind-registry"
    assert config.image == "docker.io/library/registry:2"
    assert config.exposed_ports == ["5000/tcp"]
    assert config.port_bindings == {"5000/tcp": [("127.0.0.1", "5010")]}


def test_custom_image(docker, controller):
    docker.containers = [kind_registry()]

    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    registry = controller.apply(Registry(name="kind-registry", image="registry:2"))
    assert docker.last_create_config is None
    assert registry.name == "kind-registry"

    registry = controller.apply(
        Registry(
            name="kind-registry",
            image="fake.tilt.dev/different-registry-image:latest",
        )
    )
    assert registry.status.state == "running"
    config = docker.last_create_config
    assert config.labels == {"dev.tilt.ctlptl.role": "registry"}
    assert config.hostname == "kind-registry"
    assert config.image == "fake.tilt.dev/different-registry-image:latest"


def test_apply_new_registry_uses_listen_address(docker, controller):
    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    registry = controller.apply(
        Registry(name="kind-registry", port=5005, listen_address="0.0.0.0")
    )

    assert registry.name == "kind-registry"
    assert docker.removed_names == ["kind-registry"]
    assert docker.last_create_config.port_bindings == {
        "5000/tcp": [("0.0.0.0", "5005")]
    }
    assert docker.last_removed_container == ""


def test_apply_remote_docker_forwards_port(err_out):
    docker = FakeDocker(host="tcp://remote.example.com:2375")
    forwarded = []
    controller = RegistryController(docker, err_out=err_out, forwarder=forwarded.append)

    def on_create():
        docker.containers = [kind_registry()]

    docker.on_create = on_create

    controller.apply(Registry(name="kind-registry", port=5001))

    assert forwarded == [5001]
    assert "forwarding registry to localhost:5001" in err_out.getvalue()


def test_delete_removes_container(docker, controller):
    docker.containers = [kind_registry()]
    controller.delete("kind-registry")
    assert docker.last_removed_container == kind_registry().id


def test_delete_missing_raises(docker, controller):
    with pytest.raises(NotFoundError):
        controller.delete("kind-registry")


def test_fill_defaults():
    registry = Registry()
    fill_defaults(registry)
    assert registry.name == "ctlptl-registry"
    assert registry.image == "docker.io/library/registry:2"


def test_fill_defaults_keeps_values():
    registry = Registry(name="mine", image="localhost:5000/reg:1")
    fill_defaults(registry)
    assert (registry.name, registry.image) == ("mine", "localhost:5000/reg:1")


@pytest.mark.parametrize(
    "ref,expected",
    [
        ("registry:2", "docker.io/library/registry:2"),
        ("docker.io/library/registry:2", "docker.io/library/registry:2"),
        ("index.docker.io/library/registry:2", "docker.io/library/registry:2"),
        ("user/repo", "docker.io/user/repo"),
        ("localhost:5000/foo", "localhost:5000/foo"),
        (
            "fake.tilt.dev/my-registry-image:latest",
            "fake.tilt.dev/my-registry-image:latest",
        ),
    ],
)
def test_normalize_image_ref(ref, expected):
    assert normalize_image_ref(ref) == expected


@pytest.mark.parametrize("ref", ["", "Registry:2", "a" * 64, "foo:bar:baz"])
def test_normalize_image_ref_invalid(ref):
    with pytest.raises(ValueError):
        normalize_image_ref(ref)


def test_images_refs_equal():
    assert images_refs_equal("registry:2", "docker.io/library/registry:2")
    assert not images_refs_equal("registry:2", "registry:3")
    assert not images_refs_equal("", "")


def test_free_port_in_range():
    port = free_port()
    assert 0 < port < 65536