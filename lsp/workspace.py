"""Workspace description handed to root strategies and spawn functions."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from config import Config, resolve_bin_dir

from .install import ToolCache

VCS_MARKERS = (".git", ".hg", ".svn")


def find_project_root(cwd: Path) -> Path:
    """Nearest ancestor holding a VCS directory, else cwd itself."""
    for directory in (cwd, *cwd.parents):
        if any((directory / marker).exists() for marker in VCS_MARKERS):
            return directory
    return cwd


@dataclass(frozen=True)
class Workspace:
    """Where the assistant is working.

    Attributes:
        root: Project boundary; root strategies never walk above it
        cwd: Directory relative paths resolve against
        tools: Tool cache for bootstrapped server binaries
    """

    root: Path
    cwd: Path
    tools: ToolCache

    @classmethod
    def create(
        cls,
        cwd: str | Path,
        config: Config | None = None,
        root: str | Path | None = None,
    ) -> Workspace:
        config = config or Config()
        cwd_path = Path(cwd).resolve()
        root_path = Path(root).resolve() if root else find_project_root(cwd_path)
        tools = ToolCache(bin_dir=resolve_bin_dir(config), auto_install=config.lsp.auto_install)
        return cls(root=root_path, cwd=cwd_path, tools=tools)

    def absolute(self, path: str | Path) -> str:
        """Resolve a possibly relative path against cwd."""
        return os.path.normpath(os.path.join(self.cwd, path))
