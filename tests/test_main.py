import logging
import logging.handlers
import subprocess
import time

import pytest
import yaml

from containerdeck.client import LocalTransport, SocketTransport
from containerdeck.config import ConfigManager
from containerdeck.main import (
    build_client, build_service, cmd_watch, main, parse_args, setup_logging, start_refresh_worker,
)

LISTING = (
    '[{"status":"running","networks":[{"address":"192.168.64.3/24","gateway":"192.168.64.1",'
    '"network":"default"}],"configuration":{"id":"abc123","hostname":"web1",'
    '"image":{"reference":"docker.io/library/nginx:alpine","descriptor":{"digest":"sha256:1","size":1}},'
    '"platform":{"architecture":"arm64","os":"linux"},"resources":{"cpus":2,"memoryInBytes":1024},'
    '"rosetta":false}}]'
)


@pytest.fixture
def manager(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "tool": {"candidate_paths": [str(tmp_path / "nowhere" / "container")]},
        "helper": {"socket_path": str(tmp_path / "h.sock"), "authkey": "k"},
        "logging": {"file_path": str(tmp_path / "containerdeck.log")},
    }))
    return ConfigManager(path)


@pytest.fixture
def fake_tool(mocker):
    outputs = {}

    def run(cmd, **kwargs):
        script = cmd[-1]
        for key, (code, out, err) in outputs.items():
            if key in script:
                return subprocess.CompletedProcess(cmd, code, out, err)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    mocker.patch("containerdeck.executor.subprocess.run", side_effect=run)
    mocker.patch("containerdeck.main.setup_logging")
    return outputs


def test_parse_args():
    assert parse_args(["ls"]).command == "ls"
    assert parse_args(["watch"]).command == "watch"
    with pytest.raises(SystemExit):
        parse_args([])


def test_build_client_picks_transport(manager):
    client = build_client(manager)
    assert isinstance(client.transport, LocalTransport)
    client.close()

    manager.get_config().helper.enabled = True
    client = build_client(manager)
    assert isinstance(client.transport, SocketTransport)
    assert client.transport.authkey == b"k"


def test_status_running(manager, fake_tool, capsys):
    fake_tool["ls -a"] = (0, "[]", "")
    assert main(["status"], manager) == 0
    assert capsys.readouterr().out.strip() == "running"


def test_status_stopped(manager, fake_tool, capsys):
    fake_tool["ls -a"] = (1, "", "Error: XPC connection error: Connection invalid")
    assert main(["status"], manager) == 0
    assert capsys.readouterr().out.strip() == "stopped"


def test_ls_prints_containers(manager, fake_tool, capsys):
    fake_tool["ls -a"] = (0, LISTING, "")
    fake_tool["image ls"] = (0, "[]", "")
    assert main(["ls"], manager) == 0
    out = capsys.readouterr().out
    assert "web1" in out
    assert "nginx" in out
    assert "192.168.64.3/24" in out


def test_ls_reports_stopped_system(manager, fake_tool, capsys):
    fake_tool["ls -a"] = (1, "", "XPC connection interrupted")
    fake_tool["image ls"] = (1, "", "XPC connection interrupted")
    assert main(["ls"], manager) == 1
    assert "not running" in capsys.readouterr().err


def test_setup_logging_uses_rotating_file(manager, tmp_path):
    root = logging.getLogger()
    saved = list(root.handlers)
    try:
        setup_logging(manager.get_config())
        handlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].maxBytes == 10 * 1024 * 1024
        assert handlers[0].backupCount == 5
        assert (tmp_path / "containerdeck.log").exists()
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            if h not in saved:
                h.close()
        for h in saved:
            root.addHandler(h)


def test_refresh_worker_auto_starts_system(mocker, manager):
    service = mocker.MagicMock()
    manager.get_config().refresh.auto_start_system = True
    worker = start_refresh_worker(service, manager.get_config())
    worker.stop()
    worker.join(timeout=5)
    service.ensure_system_started.assert_called_once()


def test_watch_prints_refreshed_state(manager, fake_tool, capsys):
    fake_tool["ls -a"] = (0, LISTING, "")
    fake_tool["image ls"] = (0, "[]", "")
    service = build_service(manager)
    deadline = time.monotonic() + 5
    seen = {"ready": False}

    def should_stop():
        # one more pass after the first full refresh so it gets printed
        if seen["ready"] or time.monotonic() > deadline:
            return True
        snap = service.snapshot
        seen["ready"] = snap.system_info is not None and bool(snap.containers)
        return False

    try:
        assert cmd_watch(service, manager.get_config(), should_stop=should_stop, poll_interval=0.01) == 0
    finally:
        service.close()
    out = capsys.readouterr().out
    assert "system running: 1/1 containers running, 0 images" in out
