"""
containerdeck - A control bridge for Apple's `container` command-line tool.

This package drives the external `container` executable and turns what it
prints into typed state that a presentation layer can observe. Nothing is
stored locally: containers, images, DNS domains and the system service status
are always re-read from the tool.

Features:
  - Tool discovery in well-known install locations with PATH fallback
  - Command execution from a separate, unsandboxed helper process
  - JSON / line-oriented output parsing into dataclasses
  - Deadline-bounded asynchronous calls across the process boundary
  - Optimistic start/stop transitions reconciled by the next refresh
  - A small error taxonomy that tells "system not running" apart

Main Components:
  - locator.py / executor.py: Finding and running the tool
  - parsers.py: Output parsing
  - helper.py / client.py / protocol.py: IPC boundary (both sides)
  - state.py / service.py: Snapshot ownership and the bridge API
  - errors.py: Error taxonomy and classification
  - model.py: Data structures (Container, ContainerImage, DNSDomain, ...)

Usage:
  python -m containerdeck helper
  python -m containerdeck ls

Dependencies:
  - PyYAML (configuration)
  - Python 3.9+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/containerdeck/logs/containerdeck.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/containerdeck.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'containerdeck' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'containerdeck.log')
    except (PermissionError, OSError):
        return '/tmp/containerdeck.log'


def get_runtime_dir() -> str:
    """Directory for the helper socket (XDG_RUNTIME_DIR, else /tmp)."""
    runtime_dir = os.environ.get('XDG_RUNTIME_DIR')
    if runtime_dir and os.path.isdir(runtime_dir):
        return os.path.join(runtime_dir, 'containerdeck')
    return os.path.join('/tmp', f'containerdeck-{os.getuid()}')
