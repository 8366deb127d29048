"""Locating the external `container` executable."""

import os
from typing import Callable, Optional, Sequence

TOOL_NAME = "container"

DEFAULT_TOOL_PATHS = (
    "/usr/local/bin/container",
    "/opt/homebrew/bin/container",
    "/usr/bin/container",
)


def locate_tool(candidates: Sequence[str] = DEFAULT_TOOL_PATHS,
                exists: Callable[[str], bool] = os.path.isfile) -> Optional[str]:
    """
    Return the first candidate path that exists.

    None means "resolve through PATH when executing". A missing tool is only
    discovered when the executor actually tries to spawn it.
    """
    for path in candidates:
        if path and exists(path):
            return path
    return None
