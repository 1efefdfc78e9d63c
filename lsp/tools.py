"""
Agent-facing LSP tools.

Thin wrappers over an LSPManager that return plain dicts (``success`` plus
either an ``output`` string for the model or an ``error``), so a broken
language server never surfaces as an exception in the agent loop.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from core.constants import MAX_SYMBOL_RESULTS
from core.exceptions import LSPError

from .manager import LSPManager, pretty
from .types import SYMBOL_KIND_NAMES, DiagnosticSeverity

logger = logging.getLogger(__name__)


async def lsp_diagnostics(manager: LSPManager, path: str) -> dict[str, Any]:
    """Get diagnostics (errors, warnings, hints) for a file.

    Sends the file to every server that handles it and waits (bounded) for
    published diagnostics.

    Args:
        manager: The session pool
        path: Path to the source file, absolute or relative to the cwd

    Returns:
        dict with:
            - success: bool
            - title: path relative to the workspace root
            - output: pretty diagnostic lines, or "No errors found"
            - diagnostics: list of diagnostic dicts
            - error_count: int
            - warning_count: int
            - error: str error message if success=False
    """
    file_path = manager.workspace.absolute(path)
    if not os.path.isfile(file_path):
        return {"success": False, "error": f"File not found: {file_path}"}

    try:
        await manager.touch_file(file_path, wait_for_diagnostics=True)
        diags = manager.diagnostics().get(file_path, [])
    except LSPError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception("lsp_diagnostics failed for %s", file_path)
        return {"success": False, "error": f"Unexpected error: {e}"}

    return {
        "success": True,
        "title": os.path.relpath(file_path, manager.workspace.root),
        "output": "\n".join(pretty(d) for d in diags) if diags else "No errors found",
        "diagnostics": [d.to_dict() for d in diags],
        "error_count": sum(1 for d in diags if d.severity == DiagnosticSeverity.ERROR),
        "warning_count": sum(1 for d in diags if d.severity == DiagnosticSeverity.WARNING),
    }


async def lsp_hover(manager: LSPManager, file: str, line: int, character: int) -> dict[str, Any]:
    """Get type information and documentation for a symbol at a position.

    Args:
        manager: The session pool
        file: Path to the source file
        line: 0-based line number
        character: 0-based character offset within the line

    Returns:
        dict with success, results (one dict per answering server) and output
    """
    file_path = manager.workspace.absolute(file)
    if not os.path.isfile(file_path):
        return {"success": False, "error": f"File not found: {file_path}"}

    try:
        await manager.touch_file(file_path)
        results = await manager.hover(file_path, line, character)
    except LSPError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception("lsp_hover failed for %s", file_path)
        return {"success": False, "error": f"Unexpected error: {e}"}

    output = "\n\n".join(r.contents for r in results)
    return {
        "success": True,
        "results": [r.to_dict() for r in results],
        "output": output or "No hover information available at this position",
    }


async def lsp_workspace_symbols(manager: LSPManager, query: str) -> dict[str, Any]:
    """Search for symbols across every running language server."""
    try:
        symbols = await manager.workspace_symbol(query)
    except LSPError as e:
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.exception("lsp_workspace_symbols failed for %r", query)
        return {"success": False, "error": f"Unexpected error: {e}"}

    shown = symbols[:MAX_SYMBOL_RESULTS]
    lines = []
    for symbol in shown:
        kind = SYMBOL_KIND_NAMES.get(symbol.kind, f"Kind({symbol.kind})")
        location = symbol.path
        if symbol.range:
            location += f":{symbol.range.start.line + 1}"
        container = f" ({symbol.container_name})" if symbol.container_name else ""
        lines.append(f"{kind} {symbol.name}{container} - {location}")
    if len(symbols) > len(shown):
        lines.append(f"... and {len(symbols) - len(shown)} more")

    return {
        "success": True,
        "count": len(symbols),
        "symbols": [
            {**s.to_dict(), "kind_name": SYMBOL_KIND_NAMES.get(s.kind, "Unknown")} for s in shown
        ],
        "output": "\n".join(lines) if lines else f"No symbols found for '{query}'",
    }
