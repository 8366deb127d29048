"""
Entry point and wiring for containerdeck.

This module builds the bridge from configuration and exposes a small
command line:

  python -m containerdeck helper   Run the helper server in the foreground
  python -m containerdeck status   Infer and print the system status
  python -m containerdeck ls       Print containers and images
  python -m containerdeck watch    Refresh in the background, print changes

Wiring:
  1. Load config (config.py) and set up logging (rotating file handler)
  2. Locate the `container` tool and build a CommandExecutor
  3. helper.enabled: talk to a running helper over its Unix socket,
     otherwise run HelperService in-process through LocalTransport
  4. Wrap the client in a ContainerService for callers

Exit codes: 0 on success, 1 when a bridge call fails.
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import time
from typing import Callable, List, Optional

from . import __version__, get_log_path
from .client import HelperClient, LocalTransport, SocketTransport
from .config import AppConfig, ConfigManager, config_manager
from .errors import BridgeError
from .executor import CommandExecutor
from .helper import HelperServer, HelperService
from .locator import locate_tool
from .model import ContainerStatus
from .service import ContainerService
from .state import RefreshWorker

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(config: AppConfig) -> None:
    log_path = config.logging.file_path or get_log_path()
    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=int(config.logging.max_size_mb) * 1024 * 1024,
        backupCount=int(config.logging.backup_count),
    )
    level = getattr(logging, str(config.logging.level).upper(), logging.INFO)
    logging.basicConfig(handlers=[handler], level=level, format=LOG_FORMAT, force=True)
    logger.info(f"containerdeck {__version__} logging to {log_path}")


def build_executor(config: AppConfig) -> CommandExecutor:
    binary = locate_tool(config.tool.candidate_paths)
    if binary is None:
        logger.info("container tool not in known locations, resolving via PATH")
    else:
        logger.info(f"Using container tool at {binary}")
    return CommandExecutor(binary, config.tool.search_paths, config.tool.command_timeout)


def build_helper_service(config: AppConfig) -> HelperService:
    return HelperService(
        build_executor(config),
        terminal_command=config.terminal.command,
        shell=config.terminal.shell,
        follow_window=config.tool.follow_window,
    )


def build_client(manager: ConfigManager) -> HelperClient:
    config = manager.get_config()
    if config.helper.enabled:
        transport = SocketTransport(manager.get_socket_path(), manager.get_authkey(),
                                    config.helper.connect_timeout)
    else:
        transport = LocalTransport(build_helper_service(config), config.helper.max_workers)
    return HelperClient(
        transport,
        listing_timeout=config.helper.listing_timeout,
        action_timeout=config.helper.action_timeout,
    )


def build_service(manager: ConfigManager) -> ContainerService:
    config = manager.get_config()
    return ContainerService(
        build_client(manager),
        max_workers=config.helper.max_workers,
        system_start_grace=config.refresh.system_start_grace,
    )


def start_refresh_worker(service: ContainerService, config: AppConfig) -> RefreshWorker:
    """Background refresh for long-running callers. Auto-starts the system first if configured."""
    if config.refresh.auto_start_system:
        service.ensure_system_started()
    worker = RefreshWorker(service, config.refresh.containers_interval, config.refresh.others_interval)
    worker.start()
    return worker


def run_helper(manager: ConfigManager) -> int:
    config = manager.get_config()
    server = HelperServer(
        build_helper_service(config),
        manager.get_socket_path(),
        manager.get_authkey(),
        max_workers=config.helper.max_workers,
    )
    server.bind()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping helper")
        server.running = False
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _stop)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
    return 0


def cmd_status(service: ContainerService) -> int:
    status = service.get_system_status()
    print(status.value)
    return 0


def cmd_ls(service: ContainerService) -> int:
    service.refresh_containers()
    service.refresh_images()
    snapshot = service.snapshot
    if snapshot.error_message:
        print(snapshot.error_message, file=sys.stderr)
        return 1

    print(f"{'NAME':<24} {'IMAGE':<24} {'STATUS':<10} ADDRESS")
    for c in snapshot.containers:
        print(f"{c.display_name:<24} {c.image:<24} {c.status.value:<10} {c.primary_address or ''}")
    print()
    print(f"{'IMAGE':<40} {'SIZE':>10}")
    for img in snapshot.images:
        print(f"{img.display_name:<40} {img.size_mb:>8.1f}MB")
    return 0


def summarize(snapshot) -> str:
    info = snapshot.system_info
    status = info.service_status.value if info is not None else "unknown"
    running = sum(1 for c in snapshot.containers if c.status == ContainerStatus.RUNNING)
    line = (f"system {status}: {running}/{len(snapshot.containers)} containers running, "
            f"{len(snapshot.images)} images")
    if snapshot.error_message:
        line += f" ({snapshot.error_message})"
    return line


def cmd_watch(service: ContainerService, config: AppConfig,
              should_stop: Optional[Callable[[], bool]] = None, poll_interval: float = 0.2) -> int:
    """Keep the snapshot fresh in the background and print a line whenever it changes."""
    worker = start_refresh_worker(service, config)
    last_version = -1
    last_line = None
    try:
        while should_stop is None or not should_stop():
            version = service.state_manager.get_version()
            if version != last_version:
                last_version = version
                line = summarize(service.snapshot)
                if line != last_line:
                    print(line, flush=True)
                    last_line = line
            time.sleep(poll_interval)
    except KeyboardInterrupt:
        pass
    finally:
        worker.stop()
        worker.join(timeout=5)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="containerdeck",
        description="Control bridge for Apple's container tool",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("helper", help="Run the helper process in the foreground")
    sub.add_parser("status", help="Print whether the container system is running")
    sub.add_parser("ls", help="List containers and images")
    sub.add_parser("watch", help="Refresh in the background and print changes until interrupted")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, manager: Optional[ConfigManager] = None) -> int:
    args = parse_args(argv)
    manager = manager or config_manager
    setup_logging(manager.get_config())

    if args.command == "helper":
        return run_helper(manager)

    service = build_service(manager)
    try:
        if args.command == "status":
            return cmd_status(service)
        if args.command == "watch":
            return cmd_watch(service, manager.get_config())
        return cmd_ls(service)
    except BridgeError as e:
        logger.error(f"{args.command} failed: {e.kind}: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.close()
