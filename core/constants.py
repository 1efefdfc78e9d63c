"""
Core constants for the language-server bridge.

This module defines system-wide constants used across the codebase.
Following the style guide: no magic constants in code.
"""

# Timeouts (seconds)
LSP_INIT_TIMEOUT_SECONDS = 5.0
LSP_REQUEST_TIMEOUT_SECONDS = 2.0
LSP_DIAGNOSTICS_TIMEOUT_SECONDS = 5.0  # Longer timeout for diagnostics
LSP_SHUTDOWN_TIMEOUT_SECONDS = 2.0
LSP_PROGRESS_TIMEOUT_SECONDS = 10.0  # tsserver indexing kick-off
INSTALL_TIMEOUT_SECONDS = 300.0
DOWNLOAD_TIMEOUT_SECONDS = 60.0

# Tool cache
APP_NAME = "opencode"
BIN_DIR_ENV = "OPENCODE_BIN_DIR"

# Directories never scanned for source files or root markers
IGNORED_DIRECTORIES = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        ".venv",
        "venv",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        "_build",
        "deps",
        "zig-cache",
        ".zig-cache",
        "zig-out",
        "target",
        "dist",
    }
)

# Agent tool output
MAX_SYMBOL_RESULTS = 20

# JSON-RPC error codes
JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INTERNAL_ERROR = -32603
