"""
Core domain exceptions.

These exceptions are transport-agnostic. The language-server layer raises the
LSP subclasses; the manager and the agent tools catch them at their isolation
boundaries so one broken server never fails the surrounding operation.
"""


class CoreError(Exception):
    """Base exception for all core errors."""

    pass


class LSPError(CoreError):
    """Base exception for LSP errors."""

    pass


class LSPConnectionError(LSPError):
    """The server process or its streams are gone."""

    pass


class LSPTimeoutError(LSPError):
    """Request timed out."""

    pass


class LSPRequestError(LSPError):
    """The server answered a request with a JSON-RPC error."""

    def __init__(self, method: str, code: int, message: str):
        self.method = method
        self.code = code
        super().__init__(f"LSP error for '{method}' ({code}): {message}")


class LSPInitializationError(LSPError):
    """Server failed to complete the initialize handshake."""

    def __init__(self, server_id: str, cause: BaseException | str):
        self.server_id = server_id
        self.cause = cause
        super().__init__(f"Failed to initialize LSP server '{server_id}': {cause}")
