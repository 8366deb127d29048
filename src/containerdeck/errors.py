"""
Error taxonomy and classification for the bridge.

Every failure that leaves the executor or crosses the helper boundary is
mapped onto a small, closed set of exceptions:

  - ToolNotFound: the `container` binary is absent and the PATH fallback
    failed at spawn time
  - CommandFailed: the tool ran and exited non-zero (detail = stderr)
  - ConnectionLost: the boundary reported an invalid/interrupted connection,
    the main signal that the backing service is not running
  - BridgeTimeout: no response within the call deadline
  - InvalidOutput: stdout did not parse

The tool itself reports a stopped system service through text like
"XPC connection error: Connection invalid", so a substring heuristic is
still needed. It lives only in is_connection_failure().
"""

import concurrent.futures
import logging
import multiprocessing
import subprocess
from typing import Any, Dict

logger = logging.getLogger(__name__)

CONNECTION_FAILURE_MARKERS = ("xpc connection", "connection invalid", "interrupted")


class BridgeError(Exception):
    kind = "bridge_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    def default_message(self) -> str:
        return self.kind.replace("_", " ")

    def __str__(self) -> str:
        return self.message


class ToolNotFound(BridgeError):
    kind = "tool_not_found"

    def default_message(self) -> str:
        return ("container CLI tool not found. Please ensure Apple's container "
                "tool is installed and accessible.")


class CommandFailed(BridgeError):
    kind = "command_failed"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    def default_message(self) -> str:
        return "command failed"


class ConnectionLost(BridgeError):
    kind = "connection_lost"

    def default_message(self) -> str:
        return "helper connection interrupted"


class BridgeTimeout(BridgeError):
    kind = "timeout"

    def default_message(self) -> str:
        return "helper call timed out"


class InvalidOutput(BridgeError):
    kind = "invalid_output"

    def default_message(self) -> str:
        return "invalid command output"


class InvalidRequest(BridgeError):
    """Malformed request seen by the helper. Callers receive CommandFailed."""
    kind = "invalid_request"

    def default_message(self) -> str:
        return "invalid request"


_KINDS = {
    cls.kind: cls
    for cls in (ToolNotFound, CommandFailed, ConnectionLost, BridgeTimeout, InvalidOutput)
}


def is_connection_failure(text: str) -> bool:
    """Substring heuristic for connection-level failures reported as text."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in CONNECTION_FAILURE_MARKERS)


def classify(exc: BaseException) -> BridgeError:
    """Map any exception raised by the executor or the boundary onto the taxonomy."""
    if isinstance(exc, CommandFailed):
        if is_connection_failure(exc.detail):
            return ConnectionLost(exc.detail)
        return exc
    if isinstance(exc, InvalidRequest):
        return CommandFailed(exc.message)
    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, (FileNotFoundError, PermissionError)):
        return ToolNotFound(str(exc))
    if isinstance(exc, (subprocess.TimeoutExpired, concurrent.futures.TimeoutError, TimeoutError)):
        return BridgeTimeout(str(exc) or "")
    if isinstance(exc, (EOFError, ConnectionError, multiprocessing.AuthenticationError)):
        return ConnectionLost(str(exc) or "")
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return InvalidOutput(str(exc))
    return CommandFailed(str(exc))


def to_payload(err: BridgeError) -> Dict[str, Any]:
    return {"kind": err.kind, "message": err.message}


def from_payload(payload: Dict[str, Any]) -> BridgeError:
    """Rebuild an exception from the `error` object of a helper response."""
    kind = payload.get("kind", "")
    message = str(payload.get("message", ""))
    cls = _KINDS.get(kind)
    if cls is None:
        logger.debug(f"Unknown error kind from helper: {kind!r}")
        return classify(CommandFailed(message))
    return classify(cls(message))
