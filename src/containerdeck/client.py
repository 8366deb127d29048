"""
The caller side of the IPC boundary.

HelperClient turns each bridge operation into one request, waits for the
response with a per-call deadline and converts it into model objects or an
exception from errors.py.

Transports:
  - SocketTransport: Talks to a HelperServer over its Unix socket. One
    reader thread resolves a Future per request id. Connecting, the authkey
    handshake and sending run on a single sender thread, so a hung helper
    is bounded by the call deadline like any other wait. Broken or refused
    connections fail every pending call with ConnectionLost and the next call
    reconnects.
  - LocalTransport: Runs HelperService.handle on a thread pool in this
    process. Used when the controlling process may spawn the tool itself,
    and in tests.

Deadlines:
  - Listing calls (containers, images, DNS, status): listing_timeout (5s)
  - Everything else: action_timeout
  - On expiry the call raises BridgeTimeout and the request is abandoned.
    The helper is not told; its eventual response is dropped.
"""

import itertools
import logging
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from multiprocessing.connection import AuthenticationError, Client, Connection, answer_challenge, deliver_challenge
from typing import Any, Dict, List, Optional

from . import protocol
from .errors import (
    BridgeError, BridgeTimeout, ConnectionLost, InvalidOutput, InvalidRequest, classify, from_payload,
)
from .helper import HelperService
from .model import Container, ContainerImage, DNSDomain, SystemServiceStatus
from .parsers import parse_containers, parse_dns_domains, parse_images, parse_system_status

logger = logging.getLogger(__name__)

DEFAULT_LISTING_TIMEOUT = 5.0
DEFAULT_ACTION_TIMEOUT = 120.0
DEFAULT_CONNECT_TIMEOUT = 5.0


class LocalTransport:
    def __init__(self, service: HelperService, max_workers: int = 4):
        self.service = service
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bridge")

    def submit(self, request: Dict[str, Any]) -> Future:
        return self._pool.submit(self.service.handle, request)

    def abandon(self, request_id: int) -> None:
        # The worker thread finishes on its own; nothing to release.
        pass

    def close(self) -> None:
        self._pool.shutdown(wait=False)


class SocketTransport:
    def __init__(self, address: str, authkey: bytes,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.address = address
        self.authkey = authkey
        self.connect_timeout = connect_timeout
        self._conn: Optional[Connection] = None
        self._pending: Dict[int, Future] = {}
        self._state_lock = threading.Lock()
        # Connecting and sending happen here so callers only ever wait on a Future
        self._sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix="helper-send")

    @property
    def connected(self) -> bool:
        with self._state_lock:
            return self._conn is not None

    def _handshake(self, conn: Connection) -> None:
        if not conn.poll(self.connect_timeout):
            raise BridgeTimeout(f"helper at {self.address} did not answer within {self.connect_timeout}s")
        answer_challenge(conn, self.authkey)
        deliver_challenge(conn, self.authkey)

    def _ensure_connected(self) -> Connection:
        with self._state_lock:
            if self._conn is not None:
                return self._conn
        try:
            conn = Client(self.address, family="AF_UNIX")
        except OSError as e:
            logger.warning(f"Cannot reach helper at {self.address}: {e}")
            raise ConnectionLost(f"helper connection invalid: {e}") from e
        try:
            self._handshake(conn)
        except BridgeTimeout:
            logger.warning(f"Helper at {self.address} accepted but never authenticated")
            conn.close()
            raise
        except (OSError, EOFError, AuthenticationError) as e:
            logger.warning(f"Helper handshake failed at {self.address}: {e}")
            conn.close()
            raise ConnectionLost(f"helper connection invalid: {e}") from e
        with self._state_lock:
            self._conn = conn
        threading.Thread(target=self._read_loop, args=(conn,), daemon=True,
                         name="helper-reader").start()
        logger.info(f"Connected to helper at {self.address}")
        return conn

    def submit(self, request: Dict[str, Any]) -> Future:
        future: Future = Future()
        try:
            self._sender.submit(self._send, request, future)
        except RuntimeError:
            future.set_exception(ConnectionLost("helper transport closed"))
        return future

    def _send(self, request: Dict[str, Any], future: Future) -> None:
        if future.done():
            # caller already gave up
            return
        try:
            conn = self._ensure_connected()
        except BridgeError as e:
            try:
                future.set_exception(e)
            except InvalidStateError:
                pass
            return
        with self._state_lock:
            if future.done():
                return
            self._pending[request["id"]] = future
        try:
            conn.send_bytes(protocol.encode(request))
        except (OSError, ValueError) as e:
            logger.warning(f"Helper connection broke while sending: {e}")
            self._connection_lost(conn)

    def abandon(self, request_id: int) -> None:
        with self._state_lock:
            self._pending.pop(request_id, None)

    def _read_loop(self, conn: Connection) -> None:
        while True:
            try:
                data = conn.recv_bytes()
            except (EOFError, OSError):
                break
            try:
                message = protocol.decode(data)
            except InvalidRequest as e:
                logger.error(f"Undecodable helper response: {e}")
                continue
            with self._state_lock:
                future = self._pending.pop(message.get("id"), None)
            if future is None:
                logger.debug(f"Dropping response for abandoned request {message.get('id')}")
                continue
            try:
                future.set_result(message)
            except InvalidStateError:
                pass
        self._connection_lost(conn)

    def _connection_lost(self, conn: Connection) -> None:
        with self._state_lock:
            if self._conn is not conn:
                return
            self._conn = None
            pending = list(self._pending.values())
            self._pending.clear()
        if pending:
            logger.warning(f"Helper connection interrupted with {len(pending)} call(s) in flight")
        for future in pending:
            try:
                future.set_exception(ConnectionLost("helper connection interrupted"))
            except InvalidStateError:
                pass
        protocol.shutdown_connection(conn)

    def close(self) -> None:
        self._sender.shutdown(wait=False)
        with self._state_lock:
            conn = self._conn
        if conn is not None:
            self._connection_lost(conn)


class HelperClient:
    def __init__(self, transport, listing_timeout: float = DEFAULT_LISTING_TIMEOUT,
                 action_timeout: Optional[float] = DEFAULT_ACTION_TIMEOUT):
        self.transport = transport
        self.listing_timeout = listing_timeout
        self.action_timeout = action_timeout
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._ids_lock:
            return next(self._ids)

    def deadline_for(self, op: str) -> Optional[float]:
        return self.listing_timeout if op in protocol.LISTING_OPS else self.action_timeout

    def call(self, op: str, timeout: Optional[float] = None, **params) -> str:
        """Send one request and wait for its raw result within the deadline."""
        if timeout is None:
            timeout = self.deadline_for(op)
        request = protocol.make_request(self._next_id(), op, params)
        future = self.transport.submit(request)
        try:
            response = future.result(timeout=timeout)
        except FutureTimeoutError:
            self.transport.abandon(request["id"])
            future.cancel()
            logger.warning(f"{op} got no response within {timeout}s, abandoning")
            raise BridgeTimeout(f"{op} timed out after {timeout}s")
        except BridgeError as e:
            raise classify(e)
        except Exception as e:
            logger.error(f"{op} failed at the boundary: {e}")
            raise classify(e) from e
        return self._unwrap(op, response)

    def _unwrap(self, op: str, response: Any) -> str:
        if not isinstance(response, dict):
            raise InvalidOutput(f"{op}: malformed helper response")
        if "error" in response:
            payload = response["error"]
            if not isinstance(payload, dict):
                raise InvalidOutput(f"{op}: malformed error payload")
            raise from_payload(payload)
        result = response.get("result")
        if not isinstance(result, str):
            raise InvalidOutput(f"{op}: missing result")
        return result

    def close(self) -> None:
        self.transport.close()

    # Listing calls

    def list_containers(self) -> List[Container]:
        return parse_containers(self.call(protocol.LIST_CONTAINERS))

    def list_images(self) -> List[ContainerImage]:
        return parse_images(self.call(protocol.LIST_IMAGES))

    def list_dns_domains(self) -> List[DNSDomain]:
        return parse_dns_domains(self.call(protocol.LIST_DNS_DOMAINS))

    def system_status(self) -> SystemServiceStatus:
        return parse_system_status(self.call(protocol.SYSTEM_STATUS))

    # Actions

    def start_container(self, container_id: str) -> None:
        self.call(protocol.START_CONTAINER, container_id=container_id)

    def stop_container(self, container_id: str) -> None:
        self.call(protocol.STOP_CONTAINER, container_id=container_id)

    def delete_container(self, container_id: str) -> None:
        self.call(protocol.DELETE_CONTAINER, container_id=container_id)

    def delete_image(self, reference: str) -> None:
        self.call(protocol.DELETE_IMAGE, reference=reference)

    def create_and_run_container(self, image: str, name: Optional[str] = None) -> None:
        self.call(protocol.CREATE_AND_RUN_CONTAINER, image=image, name=name)

    def container_logs(self, container_id: str, lines: Optional[int] = None,
                       follow: bool = False) -> str:
        return self.call(protocol.CONTAINER_LOGS, container_id=container_id, lines=lines, follow=follow)

    def container_boot_logs(self, container_id: str) -> str:
        return self.call(protocol.CONTAINER_BOOT_LOGS, container_id=container_id)

    def system_logs(self, time_window: Optional[str] = None, follow: bool = False) -> str:
        return self.call(protocol.SYSTEM_LOGS, time_window=time_window, follow=follow)

    def start_system(self) -> None:
        self.call(protocol.START_SYSTEM)

    def stop_system(self) -> None:
        self.call(protocol.STOP_SYSTEM)

    def restart_system(self) -> None:
        self.call(protocol.RESTART_SYSTEM)

    def create_dns_domain(self, domain: str) -> None:
        self.call(protocol.CREATE_DNS_DOMAIN, domain=domain)

    def delete_dns_domain(self, domain: str) -> None:
        self.call(protocol.DELETE_DNS_DOMAIN, domain=domain)

    def set_default_dns_domain(self, domain: str) -> None:
        self.call(protocol.SET_DEFAULT_DNS_DOMAIN, domain=domain)

    def open_terminal(self, container_id: str) -> None:
        self.call(protocol.OPEN_TERMINAL, container_id=container_id)
