"""
LSP value types shared by the client, the manager and the agent tools.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse


def path_to_uri(path: str) -> str:
    """Build a file:// URI for an absolute path."""
    return Path(path).as_uri()


def uri_to_path(uri: str) -> str:
    """Decode the path portion of a file:// URI.

    Non-file URIs are returned unchanged.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    return unquote(parsed.path)


@dataclass
class Position:
    """0-based line and character position."""

    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass
class Range:
    """Range with start and end positions."""

    start: Position
    end: Position

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> Range:
        return cls(
            start=Position(data["start"]["line"], data["start"]["character"]),
            end=Position(data["end"]["line"], data["end"]["character"]),
        )


class DiagnosticSeverity(IntEnum):
    """LSP diagnostic severity levels."""

    ERROR = 1
    WARNING = 2
    INFO = 3
    HINT = 4

    @classmethod
    def parse(cls, value: Any) -> DiagnosticSeverity:
        """Servers may omit severity; the client treats that as an error."""
        try:
            return cls(value)
        except (ValueError, TypeError):
            return cls.ERROR


SEVERITY_LABELS = {
    DiagnosticSeverity.ERROR: "ERROR",
    DiagnosticSeverity.WARNING: "WARN",
    DiagnosticSeverity.INFO: "INFO",
    DiagnosticSeverity.HINT: "HINT",
}

_EMPTY_RANGE = {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 0}}


@dataclass
class Diagnostic:
    """A single diagnostic from an LSP server.

    Attributes:
        path: Absolute path of the file the diagnostic belongs to
        range: Location of the diagnostic in the file
        severity: Error, warning, info, or hint
        message: The diagnostic message
        source: Name of the source (e.g., "typescript", "pyright")
        code: Optional diagnostic code
    """

    path: str
    range: Range
    severity: DiagnosticSeverity
    message: str
    source: str = ""
    code: str | int | None = None

    @classmethod
    def from_dict(cls, path: str, data: dict) -> Diagnostic:
        """Parse Diagnostic from LSP JSON."""
        return cls(
            path=path,
            range=Range.from_dict(data.get("range", _EMPTY_RANGE)),
            severity=DiagnosticSeverity.parse(data.get("severity")),
            message=data.get("message", ""),
            source=data.get("source", ""),
            code=data.get("code"),
        )

    def pretty(self) -> str:
        """Format as ``SEVERITY [line:col] message`` with 1-based line/col."""
        line = self.range.start.line + 1
        col = self.range.start.character + 1
        return f"{SEVERITY_LABELS[self.severity]} [{line}:{col}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "range": self.range.to_dict(),
            "severity": int(self.severity),
            "message": self.message,
        }
        if self.source:
            data["source"] = self.source
        if self.code is not None:
            data["code"] = self.code
        return data


@dataclass
class HoverResult:
    """Result from a hover request, tagged with the answering server."""

    server_id: str
    contents: str
    range: Range | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"server_id": self.server_id, "contents": self.contents}
        if self.range:
            data["range"] = self.range.to_dict()
        return data


@dataclass
class Symbol:
    """A workspace symbol (SymbolInformation or WorkspaceSymbol)."""

    name: str
    kind: int
    path: str
    range: Range | None = None
    container_name: str = ""
    server_id: str = ""

    @classmethod
    def from_dict(cls, server_id: str, data: dict) -> Symbol:
        location = data.get("location", {})
        symbol_range = location.get("range")
        return cls(
            name=data.get("name", ""),
            kind=data.get("kind", 0),
            path=uri_to_path(location.get("uri", "")),
            range=Range.from_dict(symbol_range) if symbol_range else None,
            container_name=data.get("containerName", ""),
            server_id=server_id,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind,
            "path": self.path,
            "server_id": self.server_id,
        }
        if self.range:
            data["range"] = self.range.to_dict()
        if self.container_name:
            data["containerName"] = self.container_name
        return data


SYMBOL_KIND_NAMES = {
    1: "File", 2: "Module", 3: "Namespace", 4: "Package",
    5: "Class", 6: "Method", 7: "Property", 8: "Field",
    9: "Constructor", 10: "Enum", 11: "Interface", 12: "Function",
    13: "Variable", 14: "Constant", 15: "String", 16: "Number",
    17: "Boolean", 18: "Array", 19: "Object", 20: "Key",
    21: "Null", 22: "EnumMember", 23: "Struct", 24: "Event",
    25: "Operator", 26: "TypeParameter",
}


def parse_hover_contents(contents: Any) -> str:
    """Parse hover contents from various LSP formats.

    LSP hover contents can be:
    - string: Plain text
    - MarkupContent: {kind: "plaintext"|"markdown", value: string}
    - MarkedString: {language: string, value: string} or string
    - MarkedString[]: Array of the above

    Args:
        contents: Raw hover contents from LSP response

    Returns:
        Formatted string representation
    """
    if contents is None:
        return ""

    if isinstance(contents, str):
        return contents

    if isinstance(contents, dict):
        if "value" in contents:
            value = contents["value"]
            language = contents.get("language", "")
            if language:
                return f"```{language}\n{value}\n```"
            return value
        return str(contents)

    if isinstance(contents, list):
        parts = [parse_hover_contents(item) for item in contents]
        return "\n\n".join(part for part in parts if part)

    return str(contents)
