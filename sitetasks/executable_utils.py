"""Executable discovery for the external tools sitetasks drives.

Front-end tools (eslint, mocha, postcss, terser) are usually installed per
project with npm, so lookups fall back from PATH to ``node_modules/.bin``.

Functions:
    find_executable: Locate an executable by name or explicit path.
    find_tool: Locate a tool through the ``tools`` config section.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or the project's node_modules/.bin.

    A name containing a path separator is treated as an explicit path
    (relative to the project root when not absolute) and only checked
    for existence.

    Args:
        name: Executable name (``eslint``) or path (``tools/bin/eslint``).
        project_root: Project directory holding node_modules.

    Returns:
        Full path to the executable if found, None otherwise.

    Examples:
        >>> find_executable("mocha", Path("/my/project"))
        '/my/project/node_modules/.bin/mocha'
    """
    if "/" in name:
        explicit = Path(name)
        if not explicit.is_absolute() and project_root is not None:
            explicit = project_root / explicit
        return str(explicit) if explicit.exists() else None

    found = shutil.which(name)
    if found:
        return found

    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)

    return None


def find_tool(config: dict[str, Any], tool: str, project_root: Path) -> str | None:
    """Find the executable configured for ``tool`` under ``tools``."""
    name = str(config.get("tools", {}).get(tool) or tool)
    return find_executable(name, project_root)
