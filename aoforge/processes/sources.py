"""Find the Lua sources that get loaded into an aos process."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_logger = logging.getLogger(__name__)

LUA_SUFFIX = ".lua"


def find_lua_files(target_path: str | Path) -> list[str]:
    """Return *.lua files under target_path as sorted POSIX paths relative to it.

    Hidden directories are not entered. Any traversal error is logged and
    yields an empty list.
    """
    root = Path(target_path)
    found: list[str] = []

    def _walk(directory: Path) -> None:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    if not entry.name.startswith("."):
                        _walk(Path(entry.path))
                elif entry.is_file() and entry.name.endswith(LUA_SUFFIX):
                    found.append(Path(entry.path).relative_to(root).as_posix())

    try:
        _walk(root)
    except OSError as e:
        _logger.error("Failed to scan %s for Lua files: %s", root, e)
        return []

    found.sort()
    _logger.info("Found %d Lua file(s) in %s", len(found), root)
    return found
