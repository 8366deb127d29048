"""
Argument vectors for every external-tool invocation.

Each helper operation maps 1:1 onto one of these builders. Identifiers are
validated before anything is spawned so that a bad value never reaches the
tool (or a shell).
"""

from typing import List, Optional

from .errors import CommandFailed
from .locator import TOOL_NAME

VALID_ID_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")
VALID_IMAGE_REF_CHARS = VALID_ID_CHARS | set("/:@")
VALID_DOMAIN_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-.")
VALID_WINDOW_CHARS = set("0123456789smhd")


def _check(value: str, allowed: set, what: str) -> str:
    if not isinstance(value, str) or not value or value.startswith("-") \
            or not all(c in allowed for c in value):
        raise CommandFailed(f"Invalid {what}: {value!r}")
    return value


def list_containers() -> List[str]:
    return [TOOL_NAME, "ls", "-a", "--format", "json"]


def list_images() -> List[str]:
    return [TOOL_NAME, "image", "ls", "--format", "json"]


def start_container(container_id: str) -> List[str]:
    return [TOOL_NAME, "start", _check(container_id, VALID_ID_CHARS, "container id")]


def stop_container(container_id: str) -> List[str]:
    return [TOOL_NAME, "stop", _check(container_id, VALID_ID_CHARS, "container id")]


def delete_container(container_id: str) -> List[str]:
    return [TOOL_NAME, "delete", _check(container_id, VALID_ID_CHARS, "container id")]


def delete_image(reference: str) -> List[str]:
    return [TOOL_NAME, "image", "delete", _check(reference, VALID_IMAGE_REF_CHARS, "image reference")]


def create_and_run_container(image: str, name: Optional[str] = None) -> List[str]:
    args = [TOOL_NAME, "run", "-d"]
    if name:
        args.extend(["--name", _check(name, VALID_ID_CHARS, "container name")])
    args.append(_check(image, VALID_IMAGE_REF_CHARS, "image reference"))
    return args


def container_logs(container_id: str, lines: Optional[int] = None, follow: bool = False) -> List[str]:
    args = [TOOL_NAME, "logs"]
    if lines is not None:
        if isinstance(lines, bool) or not isinstance(lines, int) or lines <= 0:
            raise CommandFailed(f"Invalid line count: {lines!r}")
        args.extend(["-n", str(lines)])
    if follow:
        args.append("-f")
    args.append(_check(container_id, VALID_ID_CHARS, "container id"))
    return args


def container_boot_logs(container_id: str) -> List[str]:
    return [TOOL_NAME, "logs", "--boot", _check(container_id, VALID_ID_CHARS, "container id")]


def system_logs(time_window: Optional[str] = None, follow: bool = False) -> List[str]:
    args = [TOOL_NAME, "system", "logs"]
    if time_window:
        args.extend(["--last", _check(time_window, VALID_WINDOW_CHARS, "time window")])
    if follow:
        args.append("--follow")
    return args


def system_status() -> List[str]:
    return [TOOL_NAME, "system", "status"]


def start_system() -> List[str]:
    return [TOOL_NAME, "system", "start"]


def stop_system() -> List[str]:
    return [TOOL_NAME, "system", "stop"]


def restart_system() -> List[str]:
    return [TOOL_NAME, "system", "restart"]


def list_dns_domains() -> List[str]:
    return [TOOL_NAME, "system", "dns", "list"]


def create_dns_domain(domain: str) -> List[str]:
    return [TOOL_NAME, "system", "dns", "create", _check(domain, VALID_DOMAIN_CHARS, "domain")]


def delete_dns_domain(domain: str) -> List[str]:
    return [TOOL_NAME, "system", "dns", "delete", _check(domain, VALID_DOMAIN_CHARS, "domain")]


def set_default_dns_domain(domain: str) -> List[str]:
    return [TOOL_NAME, "system", "dns", "default", _check(domain, VALID_DOMAIN_CHARS, "domain")]


def terminal_session(terminal_command: List[str], tool: str, container_id: str,
                     shell: str = "sh") -> List[str]:
    """Terminal launcher followed by `container exec -ti <id> <shell>`."""
    return list(terminal_command) + [
        tool, "exec", "-ti", _check(container_id, VALID_ID_CHARS, "container id"), shell,
    ]
