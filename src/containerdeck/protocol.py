"""
Wire format between the controlling process and the helper.

Messages are JSON documents carried by multiprocessing.connection
(`send_bytes` / `recv_bytes`) over an AF_UNIX socket with an authkey
handshake. Objects are never pickled across the boundary.

  request:  {"id": 7, "op": "start_container", "params": {"container_id": "abc"}}
  success:  {"id": 7, "result": "<raw tool stdout>"}
  failure:  {"id": 7, "error": {"kind": "command_failed", "message": "..."}}
"""

import json
import socket
from multiprocessing.connection import Connection
from typing import Any, Dict, Optional

from .errors import BridgeError, InvalidRequest, to_payload

LIST_CONTAINERS = "list_containers"
LIST_IMAGES = "list_images"
START_CONTAINER = "start_container"
STOP_CONTAINER = "stop_container"
DELETE_CONTAINER = "delete_container"
DELETE_IMAGE = "delete_image"
CREATE_AND_RUN_CONTAINER = "create_and_run_container"
CONTAINER_LOGS = "container_logs"
CONTAINER_BOOT_LOGS = "container_boot_logs"
SYSTEM_LOGS = "system_logs"
SYSTEM_STATUS = "system_status"
START_SYSTEM = "start_system"
STOP_SYSTEM = "stop_system"
RESTART_SYSTEM = "restart_system"
LIST_DNS_DOMAINS = "list_dns_domains"
CREATE_DNS_DOMAIN = "create_dns_domain"
DELETE_DNS_DOMAIN = "delete_dns_domain"
SET_DEFAULT_DNS_DOMAIN = "set_default_dns_domain"
OPEN_TERMINAL = "open_terminal"

# Calls bounded by the short listing deadline
LISTING_OPS = frozenset({LIST_CONTAINERS, LIST_IMAGES, LIST_DNS_DOMAINS, SYSTEM_STATUS})


def make_request(request_id: int, op: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"id": request_id, "op": op, "params": params or {}}


def make_result(request_id: Any, result: str) -> Dict[str, Any]:
    return {"id": request_id, "result": result}


def make_error(request_id: Any, err: BridgeError) -> Dict[str, Any]:
    return {"id": request_id, "error": to_payload(err)}


def encode(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def decode(data: bytes) -> Dict[str, Any]:
    try:
        message = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidRequest(f"undecodable message: {e}") from e
    if not isinstance(message, dict):
        raise InvalidRequest("message is not an object")
    return message


def shutdown_connection(conn: Connection) -> None:
    """Close `conn` and wake any thread blocked reading from it."""
    try:
        with socket.fromfd(conn.fileno(), socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.shutdown(socket.SHUT_RDWR)
    except (OSError, ValueError):
        pass
    conn.close()
