"""File selection for sitetasks.

A FileSelector is an explicit include/exclude predicate pair evaluated
against the project tree. Paths are compared as POSIX paths relative to the
selector root.

Pattern syntax:
    *       any run of characters inside one path segment
    ?       a single character inside one path segment
    **/     zero or more leading directories
    /**     at the end: the directory itself and everything below it
    **      anything, across segments
"""

from __future__ import annotations

import functools
import os
import re
from collections.abc import Iterator
from pathlib import Path, PurePosixPath


@functools.lru_cache(maxsize=None)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a glob pattern into an anchored regular expression.

    Examples:
        >>> bool(compile_pattern("**/*.js").match("app.js"))
        True
        >>> bool(compile_pattern("build/**").match("build"))
        True
    """
    if pattern.startswith("./"):
        pattern = pattern[2:]
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("/**", i) and i + 3 == len(pattern):
            parts.append("(?:/.*)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def match_any(rel_path: str, patterns: tuple[str, ...]) -> bool:
    """Check whether a relative POSIX path matches any of the patterns."""
    return any(compile_pattern(p).match(rel_path) for p in patterns)


class FileSelector:
    """Selects files under a root by include and exclude patterns.

    A path is selected iff it matches at least one include pattern and no
    exclude pattern. Directories matching an exclude pattern are pruned
    while walking, so large dependency trees are never traversed.

    Attributes:
        root: Directory the patterns are relative to.
        include: Patterns a path must match.
        exclude: Patterns that reject a path.
    """

    def __init__(
        self,
        root: Path,
        include: tuple[str, ...],
        exclude: tuple[str, ...] = (),
    ):
        self.root = Path(root)
        self.include = tuple(include)
        self.exclude = tuple(exclude)

    def __repr__(self) -> str:
        return (
            f"FileSelector(root={str(self.root)!r}, include={self.include!r}, "
            f"exclude={self.exclude!r})"
        )

    def relative(self, path: Path | str) -> str | None:
        """Return the POSIX path of ``path`` relative to the root.

        Relative inputs are taken as already relative to the root. Returns
        None for absolute paths outside the root.
        """
        path = Path(path)
        if path.is_absolute():
            try:
                path = path.relative_to(self.root)
            except ValueError:
                return None
        return PurePosixPath(path).as_posix()

    def is_excluded(self, rel_path: str) -> bool:
        return match_any(rel_path, self.exclude)

    def matches(self, path: Path | str) -> bool:
        """Check whether a single path is selected."""
        rel = self.relative(path)
        if rel is None or rel == ".":
            return False
        return match_any(rel, self.include) and not self.is_excluded(rel)

    def iter_files(self) -> Iterator[Path]:
        """Yield selected files in sorted order."""
        if not self.root.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            current = Path(dirpath)
            rel_dir = current.relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            dirnames[:] = sorted(
                d for d in dirnames if not self.is_excluded(prefix + d)
            )
            for name in sorted(filenames):
                rel = prefix + name
                if match_any(rel, self.include) and not self.is_excluded(rel):
                    yield current / name

    def files(self) -> list[Path]:
        return list(self.iter_files())

    def base_dirs(self) -> list[Path]:
        """Return the literal directories the include patterns start from.

        ``views/**/*.jinja`` starts from ``views``; ``**/*.js`` from the
        root itself. Used to scope file system observers.
        """
        dirs: list[Path] = []
        for pattern in self.include:
            segments = pattern.removeprefix("./").split("/")
            literal: list[str] = []
            for segment in segments[:-1]:
                if any(ch in segment for ch in "*?"):
                    break
                literal.append(segment)
            base = self.root.joinpath(*literal)
            if base not in dirs:
                dirs.append(base)
        return dirs
