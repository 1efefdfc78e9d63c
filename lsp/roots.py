"""
Project root strategies.

A root is the directory a language server treats as one project. Each server
definition picks a strategy:

* NearestRoot walks upward from a file to the closest marker, checking marker
  groups in priority order (so ``go.work`` wins over a nearer ``go.mod``).
* SimpleRoots globs the whole workspace and treats every directory holding a
  marker as an independent project.
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Protocol

from core.constants import IGNORED_DIRECTORIES

if TYPE_CHECKING:
    from .workspace import Workspace


def is_within(path: str, directory: str) -> bool:
    """Return True when path equals directory or lies below it."""
    try:
        Path(path).relative_to(directory)
    except ValueError:
        return False
    return True


def walk_files(root: str) -> Iterator[str]:
    """Yield absolute file paths under root, skipping ignored directories."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if d not in IGNORED_DIRECTORIES and not d.endswith(".egg-info")
        )
        for filename in sorted(filenames):
            yield os.path.join(dirpath, filename)


class RootStrategy(Protocol):
    """How a server definition locates its project root(s)."""

    def discover(self, workspace: Workspace) -> list[str]:
        """Candidate roots for the whole workspace."""
        ...

    def resolve(self, workspace: Workspace, file_path: str) -> str:
        """The root owning one file."""
        ...


@dataclass(frozen=True)
class NearestRoot:
    """Walk upward from a file until a marker is found.

    Attributes:
        groups: Marker groups in descending priority. Every directory on the
            path is checked against the first group before any directory is
            checked against the second.
    """

    groups: tuple[tuple[str, ...], ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, *groups: list[str] | tuple[str, ...] | str) -> NearestRoot:
        """Build from groups; a bare string is a group of one marker."""
        return cls(tuple((g,) if isinstance(g, str) else tuple(g) for g in groups))

    def discover(self, workspace: Workspace) -> list[str]:
        return [self.resolve(workspace, str(workspace.cwd))]

    def resolve(self, workspace: Workspace, file_path: str) -> str:
        boundary = str(workspace.root)
        start = Path(file_path)
        current = start if start.is_dir() else start.parent
        inside = is_within(str(current), boundary)

        chain: list[Path] = []
        while True:
            chain.append(current)
            if inside and str(current) == boundary:
                break
            if current == current.parent:
                break
            current = current.parent

        for group in self.groups:
            for directory in chain:
                if any((directory / marker).exists() for marker in group):
                    return str(directory)

        if inside:
            return boundary
        return str(chain[0])


@dataclass(frozen=True)
class SimpleRoots:
    """Every directory in the workspace that holds a marker file is a root."""

    patterns: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def of(cls, *patterns: str) -> SimpleRoots:
        return cls(tuple(patterns))

    def discover(self, workspace: Workspace) -> list[str]:
        boundary = str(workspace.root)
        found: set[str] = set()
        for file_path in walk_files(boundary):
            name = os.path.basename(file_path)
            if any(fnmatch.fnmatch(name, pattern) for pattern in self.patterns):
                found.add(os.path.dirname(file_path))
        return sorted(found) or [boundary]

    def resolve(self, workspace: Workspace, file_path: str) -> str:
        owners = [root for root in self.discover(workspace) if is_within(file_path, root)]
        if not owners:
            return str(workspace.root)
        return max(owners, key=len)
