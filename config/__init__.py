"""
Configuration module for the language-server bridge.

Exports the configuration models and loader functions.
"""

from .loader import (
    get_working_directory,
    load_config,
    load_config_file,
    merge_configs,
    resolve_bin_dir,
    strip_jsonc_comments,
)
from .lsp_config import LSPConfig, LSPServerConfig
from .main_config import Config

__all__ = [
    # Config models
    "Config",
    "LSPConfig",
    "LSPServerConfig",
    # Loader functions
    "load_config",
    "get_working_directory",
    "load_config_file",
    "merge_configs",
    "resolve_bin_dir",
    "strip_jsonc_comments",
]
