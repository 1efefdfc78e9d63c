"""Main Config model."""

from pydantic import BaseModel, ConfigDict, Field

from .lsp_config import LSPConfig


class Config(BaseModel):
    """Main configuration model.

    Only the sections this package consumes are modelled; other keys in the
    shared opencode config file are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    lsp: LSPConfig = Field(
        default_factory=LSPConfig,
        description="Language server settings",
    )
