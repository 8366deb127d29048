"""
The helper side of the IPC boundary.

The helper is a separate, unsandboxed process that owns the only code path
allowed to spawn the `container` tool. The controlling process talks to it
through a Unix socket (see protocol.py / client.py).

Key Classes:
  - HelperService: Maps one request to one tool invocation and never raises;
    every failure becomes an `error` response with a kind from errors.py
  - HelperServer: Accept loop; each connection is read by its own thread and
    requests run on a shared thread pool, so a slow `logs -f` does not hold
    up a listing issued after it

Cancellation:
  - A caller that gives up waiting does not stop the work here. The tool
    process keeps running until it exits or hits the executor's own
    command_timeout, and its response is dropped by the caller.
"""

import logging
import os
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from multiprocessing.connection import AuthenticationError, Connection, Listener
from typing import Any, Callable, Dict, List, Optional, Set

from . import commands, protocol
from .errors import BridgeError, InvalidRequest, classify
from .executor import CommandExecutor

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_COMMAND = ["open", "-a", "Terminal", "--args"]


class HelperService:
    def __init__(self, executor: CommandExecutor,
                 terminal_command: Optional[List[str]] = None,
                 shell: str = "sh",
                 follow_window: float = 5.0):
        self.executor = executor
        self.terminal_command = list(terminal_command or DEFAULT_TERMINAL_COMMAND)
        self.shell = shell
        self.follow_window = follow_window
        self._handlers: Dict[str, Callable[..., str]] = {
            protocol.LIST_CONTAINERS: self.list_containers,
            protocol.LIST_IMAGES: self.list_images,
            protocol.START_CONTAINER: self.start_container,
            protocol.STOP_CONTAINER: self.stop_container,
            protocol.DELETE_CONTAINER: self.delete_container,
            protocol.DELETE_IMAGE: self.delete_image,
            protocol.CREATE_AND_RUN_CONTAINER: self.create_and_run_container,
            protocol.CONTAINER_LOGS: self.container_logs,
            protocol.CONTAINER_BOOT_LOGS: self.container_boot_logs,
            protocol.SYSTEM_LOGS: self.system_logs,
            protocol.SYSTEM_STATUS: self.system_status,
            protocol.START_SYSTEM: self.start_system,
            protocol.STOP_SYSTEM: self.stop_system,
            protocol.RESTART_SYSTEM: self.restart_system,
            protocol.LIST_DNS_DOMAINS: self.list_dns_domains,
            protocol.CREATE_DNS_DOMAIN: self.create_dns_domain,
            protocol.DELETE_DNS_DOMAIN: self.delete_dns_domain,
            protocol.SET_DEFAULT_DNS_DOMAIN: self.set_default_dns_domain,
            protocol.OPEN_TERMINAL: self.open_terminal,
        }

    @property
    def operations(self) -> List[str]:
        return sorted(self._handlers)

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Run one request and build its response. Never raises."""
        request_id = request.get("id") if isinstance(request, dict) else None
        try:
            if not isinstance(request, dict):
                raise InvalidRequest("request is not an object")
            op = request.get("op")
            params = request.get("params") or {}
            if not isinstance(params, dict):
                raise InvalidRequest("params must be an object")
            handler = self._handlers.get(op) if isinstance(op, str) else None
            if handler is None:
                raise InvalidRequest(f"unknown operation {op!r}")
            try:
                result = handler(**params)
            except TypeError as e:
                raise InvalidRequest(f"bad parameters for {op}: {e}") from e
            return protocol.make_result(request_id, result or "")
        except BridgeError as e:
            logger.info(f"Request {request_id} failed: {e.kind}: {e}")
            return protocol.make_error(request_id, e)
        except Exception as e:
            logger.error(f"Unexpected error handling request {request_id}: {e}", exc_info=True)
            return protocol.make_error(request_id, classify(e))

    # Containers

    def list_containers(self) -> str:
        return self.executor.run(commands.list_containers())

    def start_container(self, container_id: str) -> str:
        return self.executor.run(commands.start_container(container_id))

    def stop_container(self, container_id: str) -> str:
        return self.executor.run(commands.stop_container(container_id))

    def delete_container(self, container_id: str) -> str:
        return self.executor.run(commands.delete_container(container_id))

    def create_and_run_container(self, image: str, name: Optional[str] = None) -> str:
        return self.executor.run(commands.create_and_run_container(image, name))

    # Images

    def list_images(self) -> str:
        return self.executor.run(commands.list_images())

    def delete_image(self, reference: str) -> str:
        return self.executor.run(commands.delete_image(reference))

    # Logs

    def _run_maybe_following(self, argv: List[str], follow: bool) -> str:
        if follow:
            return self.executor.run(argv, timeout=self.follow_window, partial_on_timeout=True)
        return self.executor.run(argv)

    def container_logs(self, container_id: str, lines: Optional[int] = None,
                       follow: bool = False) -> str:
        return self._run_maybe_following(commands.container_logs(container_id, lines, follow), follow)

    def container_boot_logs(self, container_id: str) -> str:
        return self.executor.run(commands.container_boot_logs(container_id))

    def system_logs(self, time_window: Optional[str] = None, follow: bool = False) -> str:
        return self._run_maybe_following(commands.system_logs(time_window, follow), follow)

    # System

    def system_status(self) -> str:
        return self.executor.run(commands.system_status())

    def start_system(self) -> str:
        return self.executor.run(commands.start_system())

    def stop_system(self) -> str:
        return self.executor.run(commands.stop_system())

    def restart_system(self) -> str:
        return self.executor.run(commands.restart_system())

    # DNS

    def list_dns_domains(self) -> str:
        return self.executor.run(commands.list_dns_domains())

    def create_dns_domain(self, domain: str) -> str:
        return self.executor.run(commands.create_dns_domain(domain))

    def delete_dns_domain(self, domain: str) -> str:
        return self.executor.run(commands.delete_dns_domain(domain))

    def set_default_dns_domain(self, domain: str) -> str:
        return self.executor.run(commands.set_default_dns_domain(domain))

    # Terminal

    def open_terminal(self, container_id: str) -> str:
        cmd = commands.terminal_session(
            self.terminal_command, self.executor.tool_command, container_id, self.shell
        )
        self.executor.launch(cmd)
        return ""


class HelperServer:
    def __init__(self, service: HelperService, address: str, authkey: bytes,
                 max_workers: int = 4):
        self.service = service
        self.address = address
        self.authkey = authkey
        self.running = False
        self._closed = False
        self._listener: Optional[Listener] = None
        self._connections: Set[Connection] = set()
        self._connections_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="helper")

    def bind(self) -> None:
        parent = os.path.dirname(self.address)
        if parent:
            os.makedirs(parent, mode=0o700, exist_ok=True)
        if os.path.exists(self.address):
            logger.info(f"Removing stale helper socket {self.address}")
            os.unlink(self.address)
        self._listener = Listener(self.address, family="AF_UNIX", authkey=self.authkey)
        os.chmod(self.address, 0o600)
        logger.info(f"Helper listening on {self.address}")

    def serve_forever(self) -> None:
        if self._closed:
            return
        if self._listener is None:
            self.bind()
        listener = self._listener
        self.running = True
        while self.running and not self._closed:
            try:
                conn = listener.accept()
            except (AuthenticationError, EOFError, ConnectionError) as e:
                if not self.running or self._closed:
                    break
                logger.warning(f"Rejected helper connection: {e}")
                continue
            except OSError as e:
                if not self.running or self._closed:
                    break
                logger.error(f"Helper accept failed: {e}")
                continue
            if not self.running or self._closed:
                conn.close()
                break
            logger.info("Helper connection accepted")
            with self._connections_lock:
                self._connections.add(conn)
            threading.Thread(target=self._serve_connection, args=(conn,), daemon=True).start()
        self.running = False
        logger.info("Helper stopped")

    def _serve_connection(self, conn: Connection) -> None:
        send_lock = threading.Lock()
        try:
            while self.running:
                try:
                    data = conn.recv_bytes()
                except (EOFError, OSError):
                    logger.info("Helper connection closed")
                    break
                try:
                    self._pool.submit(self._process, conn, send_lock, data)
                except RuntimeError:
                    # pool already shut down
                    break
        finally:
            with self._connections_lock:
                self._connections.discard(conn)
            conn.close()

    def _process(self, conn: Connection, send_lock: threading.Lock, data: bytes) -> None:
        try:
            request = protocol.decode(data)
        except InvalidRequest as e:
            response = protocol.make_error(None, e)
        else:
            response = self.service.handle(request)
        try:
            with send_lock:
                conn.send_bytes(protocol.encode(response))
        except (OSError, ValueError) as e:
            logger.warning(f"Dropping response {response.get('id')}: client went away ({e})")

    def close(self) -> None:
        self._closed = True
        self.running = False
        if self._listener is not None:
            # Wake a blocked accept(); the failed handshake ends the loop
            try:
                with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                    sock.connect(self.address)
            except OSError:
                pass
            self._listener.close()
            self._listener = None
        with self._connections_lock:
            connections = list(self._connections)
            self._connections.clear()
        for conn in connections:
            protocol.shutdown_connection(conn)
        self._pool.shutdown(wait=False)
