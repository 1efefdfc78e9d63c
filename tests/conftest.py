"""
Shared pytest fixtures for all tests.
"""
import json
import sys
from pathlib import Path
from typing import Callable

import pytest

from config import LSPConfig
from lsp.install import ToolCache
from lsp.roots import NearestRoot, RootStrategy
from lsp.server import ServerDefinition, ServerHandle, spawn_process
from lsp.workspace import Workspace

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_lsp_server.py"


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Resolved temporary directory (no /private symlink surprises on macOS)."""
    return tmp_path.resolve()


@pytest.fixture
def workspace(temp_dir: Path) -> Workspace:
    """Workspace rooted at temp_dir with installs disabled."""
    tools = ToolCache(bin_dir=temp_dir / ".bin", auto_install=False)
    return Workspace(root=temp_dir, cwd=temp_dir, tools=tools)


@pytest.fixture
def fast_config() -> LSPConfig:
    """Short timeouts so failure paths finish quickly."""
    return LSPConfig(
        init_timeout=5.0,
        request_timeout=1.0,
        diagnostics_timeout=3.0,
        shutdown_timeout=1.0,
    )


class FakeServer:
    """Builds ServerDefinitions backed by tests/fixtures/fake_lsp_server.py."""

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir
        self.spawned: list[str] = []

    def log_path(self, server_id: str) -> Path:
        return self.log_dir / f"{server_id}.jsonl"

    def messages(self, server_id: str) -> list[dict]:
        """Every message the fake server received, in order."""
        path = self.log_path(server_id)
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text().splitlines() if line]

    def methods(self, server_id: str) -> list[str]:
        return [m["method"] for m in self.messages(server_id) if "method" in m]

    def definition(
        self,
        server_id: str = "fake",
        extensions: tuple[str, ...] = (".fake",),
        roots: RootStrategy | None = None,
        mode: str = "",
    ) -> ServerDefinition:
        env = {
            "FAKE_LSP_LOG": str(self.log_path(server_id)),
            "FAKE_LSP_MODE": mode,
            "FAKE_LSP_NAME": server_id,
        }

        async def spawn(workspace: Workspace, root: str) -> ServerHandle | None:
            self.spawned.append(root)
            process = await spawn_process([sys.executable, str(FAKE_SERVER)], root, env)
            return ServerHandle(process=process) if process else None

        return ServerDefinition(
            id=server_id,
            extensions=frozenset(extensions),
            roots=roots or NearestRoot.of("fake.toml"),
            spawn=spawn,
        )


@pytest.fixture
def fake_server(temp_dir: Path) -> FakeServer:
    log_dir = temp_dir / ".logs"
    log_dir.mkdir()
    return FakeServer(log_dir)


@pytest.fixture
def write_file(temp_dir: Path) -> Callable[[str, str], Path]:
    """Write a file relative to temp_dir, creating parent directories."""

    def write(relative: str, content: str = "") -> Path:
        path = temp_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return write
