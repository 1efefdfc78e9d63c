"""File extension to LSP languageId mapping."""

from pathlib import Path

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    # Python
    ".py": "python",
    ".pyi": "python",
    # TypeScript/JavaScript
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".mts": "typescript",
    ".cts": "typescript",
    # Go
    ".go": "go",
    # Ruby
    ".rb": "ruby",
    ".rake": "ruby",
    ".gemspec": "ruby",
    ".ru": "ruby",
    # Elixir
    ".ex": "elixir",
    ".exs": "elixir",
    ".heex": "phoenix-heex",
    # Zig
    ".zig": "zig",
    ".zon": "zig",
    # Rust
    ".rs": "rust",
    # C/C++
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    # JVM
    ".java": "java",
    ".kt": "kotlin",
    ".scala": "scala",
    # Other languages
    ".cs": "csharp",
    ".php": "php",
    ".swift": "swift",
    ".lua": "lua",
    ".dart": "dart",
    ".hs": "haskell",
    ".ml": "ocaml",
    ".erl": "erlang",
    # Shell
    ".sh": "shellscript",
    ".bash": "shellscript",
    ".zsh": "shellscript",
    # Config/Data
    ".json": "json",
    ".jsonc": "jsonc",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
    # Web
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".vue": "vue",
    ".svelte": "svelte",
    # Documentation
    ".md": "markdown",
    ".sql": "sql",
}


def get_language_id(file_path: str) -> str:
    """Get LSP language ID for a file, falling back to plaintext."""
    return EXTENSION_TO_LANGUAGE.get(Path(file_path).suffix, "plaintext")
