from containerdeck.model import (
    Container, ContainerImage, ContainerNetwork, ContainerStatus, DNSDomain, Snapshot, SystemInfo,
    SystemServiceStatus,
)


def make_container(**overrides):
    fields = dict(
        container_id="0123456789abcdef", name="web1", image="nginx", image_reference="nginx:latest",
        image_digest="", hostname="web1", status=ContainerStatus.RUNNING, os="linux", arch="arm64",
    )
    fields.update(overrides)
    return Container(**fields)


def test_display_name_prefers_hostname():
    assert make_container().display_name == "web1"
    c = make_container(hostname="0123456789abcdef")
    assert c.display_name == "0123456789ab"


def test_primary_address():
    assert make_container().primary_address is None
    c = make_container(networks=[ContainerNetwork("10.0.0.2/24"), ContainerNetwork("10.0.1.2/24")])
    assert c.primary_address == "10.0.0.2/24"
    c = make_container(networks=[ContainerNetwork(""), ContainerNetwork("10.0.1.2/24")])
    assert c.primary_address == "10.0.1.2/24"


def test_memory_display():
    assert make_container(memory_in_bytes=1073741824).memory_display == "1.0 GB"


def test_with_pending_status_leaves_original():
    c = make_container(status=ContainerStatus.STOPPED)
    pending = c.with_pending_status(ContainerStatus.STARTING)
    assert pending.pending and pending.status.is_transient
    assert not c.pending and c.status == ContainerStatus.STOPPED


def test_image_display_name_is_derived():
    img = ContainerImage(reference="docker.io/library/redis:7", name="redis", tag="7", size=3 * 1024 * 1024)
    assert img.display_name == "redis:7"
    assert img.size_mb == 3.0


def test_default_domain():
    info = SystemInfo(SystemServiceStatus.RUNNING, [DNSDomain("a.local"), DNSDomain("b.local", True)])
    assert info.default_domain == "b.local"
    assert SystemInfo(SystemServiceStatus.STOPPED).default_domain is None


def test_snapshot_find_container():
    snap = Snapshot(containers=[make_container()])
    assert snap.find_container("0123456789abcdef").name == "web1"
    assert snap.find_container("missing") is None
