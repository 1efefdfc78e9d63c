"""
Integration test against a real gopls.

Skipped unless both go and gopls are on PATH.
"""

import shutil

import pytest

from config import LSPConfig
from lsp.manager import LSPManager
from lsp.server import BUILTIN_SERVERS

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not (shutil.which("go") and shutil.which("gopls")), reason="gopls not installed"
    ),
]

BROKEN_GO = """package main

func main() {
	var unused int
	undefinedCall()
}
"""


@pytest.mark.asyncio
async def test_gopls_reports_diagnostics(workspace, write_file):
    write_file("go.mod", "module example.com/demo\n\ngo 1.21\n")
    path = str(write_file("main.go", BROKEN_GO))
    golang = [d for d in BUILTIN_SERVERS if d.id == "golang"]
    config = LSPConfig(init_timeout=60.0, diagnostics_timeout=30.0)

    async with LSPManager(workspace, config, servers=golang) as lsp:
        await lsp.touch_file(path, wait_for_diagnostics=True)
        diagnostics = lsp.diagnostics()
        hover = await lsp.hover(path, 3, 6)

    assert path in diagnostics
    assert diagnostics[path]
    assert all(int(d.severity) in {1, 2, 3, 4} for d in diagnostics[path])
    assert any("undefined" in d.message for d in diagnostics[path])
    assert len(hover) <= 1
