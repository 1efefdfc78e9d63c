"""
Language Server Protocol bridge.

Discovers, launches and talks to per-language analysis servers so the agent
can ask for diagnostics, hover information and workspace symbols.
"""

from core.exceptions import (
    LSPConnectionError,
    LSPError,
    LSPInitializationError,
    LSPRequestError,
    LSPTimeoutError,
)

from .client import ClientState, LSPClient
from .connection import LSPConnection
from .manager import LSPManager, ManagerState, pretty
from .roots import NearestRoot, RootStrategy, SimpleRoots
from .server import BUILTIN_SERVERS, ServerDefinition, ServerHandle, definitions
from .tools import lsp_diagnostics, lsp_hover, lsp_workspace_symbols
from .types import Diagnostic, DiagnosticSeverity, HoverResult, Position, Range, Symbol
from .workspace import Workspace, find_project_root

__all__ = [
    # Orchestrator
    "LSPManager",
    "ManagerState",
    "pretty",
    # Sessions
    "LSPClient",
    "ClientState",
    "LSPConnection",
    # Registry
    "BUILTIN_SERVERS",
    "ServerDefinition",
    "ServerHandle",
    "definitions",
    "RootStrategy",
    "NearestRoot",
    "SimpleRoots",
    "Workspace",
    "find_project_root",
    # Types
    "Diagnostic",
    "DiagnosticSeverity",
    "HoverResult",
    "Position",
    "Range",
    "Symbol",
    # Tools
    "lsp_diagnostics",
    "lsp_hover",
    "lsp_workspace_symbols",
    # Exceptions
    "LSPError",
    "LSPConnectionError",
    "LSPTimeoutError",
    "LSPRequestError",
    "LSPInitializationError",
]
