"""
Running the external `container` tool.

The executor spawns the tool with a given argument vector, captures stdout
and stderr in full and reports the outcome exactly once: the captured stdout
on exit status 0, otherwise an exception from errors.py. It does not look at
what the tool printed beyond that; parsing is parsers.py's job.

Execution Modes:
  - Direct: a known absolute, executable path is spawned with argv[1:]
  - Shell: `/bin/sh -c` with common install directories prepended to PATH,
    for when the locator found nothing or the path is not executable

Error Mapping:
  - spawn failure / shell exit 126 or 127 -> ToolNotFound
  - non-zero exit -> CommandFailed(stderr)
  - per-command timeout -> BridgeTimeout (or partial output for follow mode)
"""

import logging
import os
import shlex
import subprocess
from typing import Optional, Sequence, Union

from .errors import BridgeTimeout, CommandFailed, ToolNotFound
from .locator import TOOL_NAME

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATHS = ("/usr/local/bin", "/opt/homebrew/bin")
SHELL = "/bin/sh"
SHELL_NOT_FOUND_CODES = (126, 127)


def _decode(data: Union[str, bytes, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class CommandExecutor:
    def __init__(self, binary_path: Optional[str] = None,
                 search_paths: Sequence[str] = DEFAULT_SEARCH_PATHS,
                 timeout: Optional[float] = 300.0):
        self.binary_path = binary_path
        self.search_paths = list(search_paths)
        self.timeout = timeout

    def _can_exec_directly(self) -> bool:
        path = self.binary_path
        return bool(path) and os.path.isabs(path) and os.access(path, os.X_OK)

    def build_command(self, argv: Sequence[str]) -> Sequence[str]:
        """Command actually handed to the OS for `argv` ([program, *args])."""
        if not argv:
            raise ValueError("empty argument vector")
        if self._can_exec_directly():
            return [self.binary_path] + list(argv[1:])
        program = argv[0] if argv[0] else TOOL_NAME
        search = ":".join(self.search_paths)
        script = f"PATH={search}:$PATH; exec {shlex.join([program] + list(argv[1:]))}"
        return [SHELL, "-c", script]

    def run(self, argv: Sequence[str], timeout: Optional[float] = None,
            partial_on_timeout: bool = False) -> str:
        cmd = self.build_command(argv)
        shell_mode = cmd[0] == SHELL
        limit = timeout if timeout is not None else self.timeout
        logger.debug(f"Executing {' '.join(argv)} ({'shell' if shell_mode else 'direct'})")

        try:
            result = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=limit,
            )
        except OSError as e:
            # missing, not executable, or not a valid executable format
            logger.error(f"Failed to spawn {cmd[0]}: {e}")
            raise ToolNotFound(f"container CLI tool cannot be run at {cmd[0]}: {e}") from e
        except subprocess.TimeoutExpired as e:
            if partial_on_timeout:
                logger.debug(f"Follow window of {limit}s elapsed for {' '.join(argv)}")
                return _decode(e.output)
            logger.warning(f"Command timed out after {limit}s: {' '.join(argv)}")
            raise BridgeTimeout(f"command timed out after {limit}s") from e

        if result.returncode == 0:
            return result.stdout or ""

        stderr = (result.stderr or "").strip()
        if shell_mode and result.returncode in SHELL_NOT_FOUND_CODES:
            logger.error(f"container CLI not resolvable via PATH: {stderr}")
            raise ToolNotFound(stderr)

        detail = stderr or (result.stdout or "").strip() or f"exit status {result.returncode}"
        logger.warning(f"Command {' '.join(argv)} failed ({result.returncode}): {detail}")
        raise CommandFailed(detail)

    def launch(self, command: Sequence[str]) -> subprocess.Popen:
        """Start a detached interactive process (e.g. a terminal window)."""
        logger.debug(f"Launching {' '.join(command)}")
        try:
            return subprocess.Popen(
                list(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to launch {command[0]}: {e}")
            raise ToolNotFound(f"{command[0]} not found") from e

    @property
    def tool_command(self) -> str:
        """How to name the tool inside another command line."""
        return self.binary_path if self._can_exec_directly() else TOOL_NAME
