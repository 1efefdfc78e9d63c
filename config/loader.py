"""Configuration loading utilities."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from core.constants import APP_NAME, BIN_DIR_ENV

from .main_config import Config

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = f".{APP_NAME}"


def strip_jsonc_comments(content: str) -> str:
    """
    Strip comments from JSONC content to convert to valid JSON.

    Handles:
    - Single-line comments: // comment
    - Multi-line comments: /* comment */

    Args:
        content: JSONC content string

    Returns:
        JSON string with comments removed
    """
    # Remove single-line comments
    content = re.sub(r"//.*?$", "", content, flags=re.MULTILINE)
    # Remove multi-line comments
    content = re.sub(r"/\*.*?\*/", "", content, flags=re.DOTALL)
    return content


def load_config_file(path: Path) -> dict[str, Any] | None:
    """
    Load a config file from the given path.

    Supports both .json and .jsonc files with comment stripping.

    Args:
        path: Path to the config file

    Returns:
        Parsed config dictionary or None if file doesn't exist
    """
    if not path.exists():
        return None

    try:
        content = path.read_text()
        if path.suffix == ".jsonc":
            content = strip_jsonc_comments(content)
        return json.loads(content)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load config from %s: %s", path, e)
        return None


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two configuration dictionaries.

    Args:
        base: Base configuration
        override: Override configuration (takes precedence)

    Returns:
        Merged configuration dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def load_config(project_root: Path | None = None, home: Path | None = None) -> Config:
    """
    Load configuration from multiple sources with precedence.

    Looks for config files in the following order:
    1. Project-level: opencode.jsonc, opencode.json, .opencode/opencode.jsonc
    2. Global: ~/.opencode/opencode.jsonc

    Project config is merged with and takes precedence over global config.

    Args:
        project_root: Project root directory (defaults to current working directory)
        home: Home directory holding the global config (defaults to Path.home())

    Returns:
        Loaded and merged Config model
    """
    if project_root is None:
        project_root = Path.cwd()
    if home is None:
        home = Path.home()

    global_config_path = home / CONFIG_DIR_NAME / f"{APP_NAME}.jsonc"
    config_data = load_config_file(global_config_path) or {}

    project_config_paths = [
        project_root / f"{APP_NAME}.jsonc",
        project_root / f"{APP_NAME}.json",
        project_root / CONFIG_DIR_NAME / f"{APP_NAME}.jsonc",
    ]

    for path in project_config_paths:
        project_config = load_config_file(path)
        if project_config:
            config_data = merge_configs(config_data, project_config)
            break

    return Config(**config_data)


def get_working_directory() -> str:
    """
    Get the working directory from environment or default to cwd.

    Returns:
        The working directory path as a string
    """
    return os.environ.get("WORKING_DIR", os.getcwd())


def resolve_bin_dir(config: Config, home: Path | None = None) -> Path:
    """
    Resolve the tool cache where bootstrapped server binaries live.

    Precedence: OPENCODE_BIN_DIR, then lsp.bin_dir, then ~/.opencode/bin.
    """
    override = os.environ.get(BIN_DIR_ENV) or config.lsp.bin_dir
    if override:
        return Path(override).expanduser()
    return (home or Path.home()) / CONFIG_DIR_NAME / "bin"

