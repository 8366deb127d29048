import threading
import time
from unittest.mock import MagicMock

from containerdeck.model import (
    Container, ContainerImage, ContainerStatus, DNSDomain, SystemInfo, SystemServiceStatus,
)
from containerdeck.state import RefreshWorker, StateManager


def make_container(cid, status=ContainerStatus.RUNNING):
    return Container(
        container_id=cid, name=f"c-{cid}", image="nginx", image_reference="nginx:latest",
        image_digest="", hostname=f"c-{cid}", status=status, os="linux", arch="arm64",
    )


def test_update_replaces_wholesale():
    sm = StateManager()
    sm.update_containers([make_container("1"), make_container("2")])
    sm.update_containers([make_container("3")])
    assert [c.container_id for c in sm.get_snapshot().containers] == ["3"]


def test_version_increments_on_every_mutation():
    sm = StateManager()
    v0 = sm.get_version()
    sm.update_images([ContainerImage(reference="nginx:latest", name="nginx", tag="latest")])
    sm.set_loading(True)
    sm.set_error("x")
    assert sm.get_version() == v0 + 3
    assert sm.get_snapshot().version == sm.get_version()


def test_snapshot_is_a_copy():
    sm = StateManager()
    sm.update_containers([make_container("1")])
    snap = sm.get_snapshot()
    snap.containers[0].status = ContainerStatus.EXITED
    snap.containers.clear()
    assert sm.get_snapshot().containers[0].status == ContainerStatus.RUNNING


def test_mark_pending():
    sm = StateManager()
    sm.update_containers([make_container("1", ContainerStatus.STOPPED)])
    assert sm.mark_container_pending("1", ContainerStatus.STARTING)
    c = sm.find_container("1")
    assert c.status == ContainerStatus.STARTING
    assert c.pending


def test_mark_pending_unknown_id():
    sm = StateManager()
    version = sm.get_version()
    assert not sm.mark_container_pending("missing", ContainerStatus.STARTING)
    assert sm.get_version() == version


def test_refresh_supersedes_pending():
    sm = StateManager()
    sm.update_containers([make_container("1", ContainerStatus.STOPPED)])
    sm.mark_container_pending("1", ContainerStatus.STARTING)
    sm.update_containers([make_container("1", ContainerStatus.STOPPED)])
    c = sm.find_container("1")
    assert c.status == ContainerStatus.STOPPED
    assert not c.pending


def test_remove_container():
    sm = StateManager()
    sm.update_containers([make_container("1"), make_container("2")])
    assert sm.remove_container("1")
    assert not sm.remove_container("1")
    assert sm.find_container("1") is None


def test_service_status_keeps_dns():
    sm = StateManager()
    sm.set_system_info(SystemInfo(SystemServiceStatus.RUNNING, [DNSDomain("test.local", True)]))
    sm.set_service_status(SystemServiceStatus.STOPPED)
    info = sm.get_snapshot().system_info
    assert info.service_status == SystemServiceStatus.STOPPED
    assert info.default_domain == "test.local"


def test_service_status_without_info():
    sm = StateManager()
    sm.set_service_status(SystemServiceStatus.STARTING)
    assert sm.get_snapshot().system_info.service_status == SystemServiceStatus.STARTING


def test_error_lifecycle():
    sm = StateManager()
    sm.set_error("boom")
    assert sm.get_snapshot().error_message == "boom"
    sm.clear_error()
    assert sm.get_snapshot().error_message == ""


def test_clear_error_respects_owner():
    sm = StateManager()
    sm.set_error("Failed to load images: x")
    version = sm.get_version()
    assert not sm.clear_error(("Failed to load containers: ",))
    assert sm.get_snapshot().error_message == "Failed to load images: x"
    assert sm.get_version() == version
    assert sm.clear_error(("Failed to load images: ",))
    assert sm.get_snapshot().error_message == ""


def test_concurrent_writers_never_tear():
    sm = StateManager()
    lists = [[make_container(f"{n}-{i}") for i in range(5)] for n in range(4)]

    def writer(containers):
        for _ in range(200):
            sm.update_containers(containers)

    threads = [threading.Thread(target=writer, args=(lst,)) for lst in lists]
    for t in threads:
        t.start()
    for _ in range(200):
        ids = [c.container_id for c in sm.get_snapshot().containers]
        if ids:
            prefix = ids[0].split("-")[0]
            assert all(i.startswith(prefix + "-") for i in ids)
    for t in threads:
        t.join()


class TestRefreshWorker:
    def test_first_pass_refreshes_everything(self):
        service = MagicMock()
        worker = RefreshWorker(service, containers_interval=10, others_interval=10)
        worker.start()
        try:
            deadline = time.time() + 5
            while not service.refresh_system_info.called and time.time() < deadline:
                time.sleep(0.01)
        finally:
            worker.stop()
            worker.join(timeout=5)
        service.refresh_containers.assert_called()
        service.refresh_images.assert_called()
        service.refresh_system_info.assert_called()
        assert not worker.is_alive()

    def test_force_refresh_and_errors_do_not_stop_the_loop(self):
        service = MagicMock()
        service.refresh_containers.side_effect = RuntimeError("boom")
        worker = RefreshWorker(service, containers_interval=60, others_interval=60)
        worker.start()
        try:
            deadline = time.time() + 5
            while service.refresh_containers.call_count < 1 and time.time() < deadline:
                time.sleep(0.01)
            worker.force_refresh()
            while service.refresh_containers.call_count < 2 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            worker.stop()
            worker.join(timeout=5)
        assert service.refresh_containers.call_count >= 2
        assert service.refresh_images.call_count >= 1
