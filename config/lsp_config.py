"""LSPConfig model."""

from pydantic import BaseModel, Field

from core.constants import (
    LSP_DIAGNOSTICS_TIMEOUT_SECONDS,
    LSP_INIT_TIMEOUT_SECONDS,
    LSP_REQUEST_TIMEOUT_SECONDS,
    LSP_SHUTDOWN_TIMEOUT_SECONDS,
)


class LSPServerConfig(BaseModel):
    """Per-server override, or a custom server when the id is not built in."""

    disabled: bool = Field(default=False, description="Never spawn this server")
    command: list[str] | None = Field(
        default=None,
        description="Command line used instead of the built-in lookup/install",
    )
    extensions: list[str] | None = Field(
        default=None,
        description="File extensions (with leading dot) the server owns",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the server process",
    )
    initialization: dict = Field(
        default_factory=dict,
        description="initializationOptions merged over the built-in ones",
    )
    root_markers: list[str] | None = Field(
        default=None,
        description="Marker files that identify a project root",
    )
    multi_root: bool = Field(
        default=False,
        description="Spawn one session per directory holding a marker file",
    )


class LSPConfig(BaseModel):
    """Language-server bridge configuration."""

    enabled: bool = Field(default=True, description="Enable language servers")
    auto_install: bool = Field(
        default=True,
        description="Install missing server binaries into the tool cache",
    )
    bin_dir: str | None = Field(
        default=None,
        description="Tool cache for installed servers (default ~/.opencode/bin)",
    )
    init_timeout: float = Field(
        default=LSP_INIT_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds allowed for the initialize handshake",
    )
    request_timeout: float = Field(
        default=LSP_REQUEST_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds allowed per request, per server",
    )
    diagnostics_timeout: float = Field(
        default=LSP_DIAGNOSTICS_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds to wait for published diagnostics",
    )
    shutdown_timeout: float = Field(
        default=LSP_SHUTDOWN_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds allowed for a graceful server shutdown",
    )
    servers: dict[str, LSPServerConfig] = Field(
        default_factory=dict,
        description="Per-server overrides and custom servers by id",
    )
