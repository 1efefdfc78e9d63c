"""
LSP client session for one language-server process.

A session moves through SPAWNED -> HANDSHAKING -> READY -> SHUTTING_DOWN ->
CLOSED. It tracks which documents have been sent to the server (and at which
version) and keeps the latest diagnostics snapshot per file.
"""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum
from typing import Any

from config import LSPConfig
from core.events import DiagnosticsEvent, EventChannel
from core.exceptions import LSPConnectionError, LSPError, LSPInitializationError
from core.logging_config import log_timing

from .connection import LSPConnection
from .language import get_language_id
from .server import ServerHandle
from .types import Diagnostic, HoverResult, Range, Symbol, parse_hover_contents, path_to_uri, uri_to_path

logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    SPAWNED = "spawned"
    HANDSHAKING = "handshaking"
    READY = "ready"
    SHUTTING_DOWN = "shutting-down"
    CLOSED = "closed"


CLIENT_CAPABILITIES: dict[str, Any] = {
    "window": {"workDoneProgress": True},
    "workspace": {
        "configuration": True,
        "workspaceFolders": True,
        "symbol": {"dynamicRegistration": False},
    },
    "textDocument": {
        "synchronization": {
            "didOpen": True,
            "didChange": True,
            "didClose": True,
        },
        "publishDiagnostics": {"versionSupport": True},
        "hover": {"contentFormat": ["markdown", "plaintext"]},
    },
}


class LSPClient:
    """LSP client for a single language server instance."""

    def __init__(
        self,
        server_id: str,
        root: str,
        connection: LSPConnection,
        config: LSPConfig | None = None,
    ):
        self.server_id = server_id
        self.root = root
        self.connection = connection
        self.config = config or LSPConfig()
        self.state = ClientState.SPAWNED
        self.capabilities: dict = {}

        # file_path -> last published snapshot
        self.diagnostics: dict[str, list[Diagnostic]] = {}
        # file_path -> version last sent while the document is open
        self.open_files: dict[str, int] = {}
        self.events: EventChannel[DiagnosticsEvent] = EventChannel()
        # Survives didClose so a re-open never reuses a version
        self._last_versions: dict[str, int] = {}

        self._setup_handlers()

    @classmethod
    async def create(
        cls,
        server_id: str,
        root: str,
        handle: ServerHandle,
        config: LSPConfig | None = None,
    ) -> LSPClient:
        """Attach to a spawned server and run the initialize handshake.

        Args:
            server_id: Server identifier
            root: Project root the server was spawned for
            handle: The spawned process and its handshake extras
            config: Timeouts; defaults apply when omitted

        Returns:
            A READY client

        Raises:
            LSPInitializationError: If the handshake or on_initialized hook
                fails. The process is terminated before raising.
        """
        process = handle.process
        if process.stdin is None or process.stdout is None:
            raise LSPInitializationError(server_id, "process has no stdio pipes")

        logger.info("starting client %s for %s", server_id, root)
        connection = LSPConnection(process, process.stdout, process.stdin, name=server_id)
        client = cls(server_id, root, connection, config)
        await connection.start_response_listener()

        try:
            with log_timing(logger, f"initialize {server_id}", logging.INFO):
                await client.initialize(handle.initialization)
            if handle.on_initialized is not None:
                await handle.on_initialized(client)
        except asyncio.CancelledError:
            await client._abort()
            raise
        except Exception as e:
            await client._abort()
            raise LSPInitializationError(server_id, e) from e

        client.state = ClientState.READY
        return client

    def _setup_handlers(self) -> None:
        """Register handlers before anything is sent so no early message is lost."""
        self.connection.on_notification(
            "textDocument/publishDiagnostics",
            self._handle_publish_diagnostics,
        )
        self.connection.on_request("workspace/configuration", self._handle_configuration)
        self.connection.on_request("window/workDoneProgress/create", lambda params: None)
        self.connection.on_request("client/registerCapability", lambda params: None)
        self.connection.on_request("client/unregisterCapability", lambda params: None)
        self.connection.on_request("workspace/workspaceFolders", lambda params: self._workspace_folders())

    def _handle_publish_diagnostics(self, params: dict) -> None:
        """Handle textDocument/publishDiagnostics notification.

        The newest snapshot for a path replaces the previous one.
        """
        file_path = uri_to_path(params.get("uri", ""))
        diagnostics: list[Diagnostic] = []
        for item in params.get("diagnostics") or []:
            try:
                diagnostics.append(Diagnostic.from_dict(file_path, item))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("[%s] skipping malformed diagnostic for %s: %r", self.server_id, file_path, e)
        self.diagnostics[file_path] = diagnostics
        logger.debug("[%s] publishDiagnostics %s (%d)", self.server_id, file_path, len(self.diagnostics[file_path]))
        self.events.publish(DiagnosticsEvent(server_id=self.server_id, path=file_path))

    @staticmethod
    def _handle_configuration(params: dict | None) -> list[dict]:
        items = (params or {}).get("items", [])
        return [{} for _ in items] or [{}]

    def _workspace_folders(self) -> list[dict[str, str]]:
        return [{"name": "workspace", "uri": path_to_uri(self.root)}]

    async def initialize(self, init_options: dict | None = None) -> dict:
        """Send initialize request and initialized notification.

        Args:
            init_options: Optional initialization options

        Returns:
            Server capabilities
        """
        self.state = ClientState.HANDSHAKING
        params: dict[str, Any] = {
            "processId": os.getpid(),
            "rootUri": path_to_uri(self.root),
            "rootPath": self.root,
            "workspaceFolders": self._workspace_folders(),
            "initializationOptions": dict(init_options or {}),
            "capabilities": CLIENT_CAPABILITIES,
        }

        result = await self.connection.send_request(
            "initialize", params, timeout=self.config.init_timeout
        )
        self.capabilities = (result or {}).get("capabilities", {})

        await self.connection.send_notification("initialized", {})
        logger.info("initialized %s", self.server_id)
        return self.capabilities

    def _ensure_usable(self) -> None:
        if self.state in (ClientState.SHUTTING_DOWN, ClientState.CLOSED):
            raise LSPConnectionError(f"LSP client '{self.server_id}' is {self.state.value}")

    async def open_file(self, file_path: str) -> int:
        """Send the document to the server.

        The first send is textDocument/didOpen at version 0. Later sends of an
        open document are full-text textDocument/didChange notifications with
        a bumped version.

        Returns:
            The version that was sent
        """
        self._ensure_usable()
        file_path = os.path.abspath(file_path)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                text = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise LSPError(f"Failed to read file: {e}") from e

        uri = path_to_uri(file_path)
        # The old snapshot describes the previous text
        self.diagnostics.pop(file_path, None)
        current = self.open_files.get(file_path)
        if current is None:
            previous = self._last_versions.get(file_path)
            version = 0 if previous is None else previous + 1
            logger.debug("[%s] textDocument/didOpen %s", self.server_id, file_path)
            await self.connection.send_notification(
                "textDocument/didOpen",
                {
                    "textDocument": {
                        "uri": uri,
                        "languageId": get_language_id(file_path),
                        "version": version,
                        "text": text,
                    }
                },
            )
        else:
            version = current + 1
            logger.debug("[%s] textDocument/didChange %s v%d", self.server_id, file_path, version)
            await self.connection.send_notification(
                "textDocument/didChange",
                {
                    "textDocument": {"uri": uri, "version": version},
                    "contentChanges": [{"text": text}],
                },
            )

        self.open_files[file_path] = version
        self._last_versions[file_path] = version
        return version

    async def close_file(self, file_path: str) -> None:
        """Send textDocument/didClose so the next open starts fresh."""
        self._ensure_usable()
        file_path = os.path.abspath(file_path)
        if file_path not in self.open_files:
            return
        await self.connection.send_notification(
            "textDocument/didClose",
            {"textDocument": {"uri": path_to_uri(file_path)}},
        )
        del self.open_files[file_path]

    def wait_for_diagnostics(
        self,
        file_path: str,
        timeout: float | None = None,
    ) -> asyncio.Future[list[Diagnostic]]:
        """Wait for the server to publish diagnostics for a file.

        The subscription is made when this method is called, so the caller
        can subscribe, send the document, then await the future without
        missing a fast server. The future resolves with the stored
        diagnostics for the file (possibly empty) when a matching publish
        arrives or the timeout elapses. Cancelling it drops the subscription.

        Args:
            file_path: Path to file
            timeout: Maximum time to wait in seconds
        """
        file_path = os.path.abspath(file_path)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[list[Diagnostic]] = loop.create_future()

        def resolve() -> None:
            if not future.done():
                future.set_result(self.diagnostics.get(file_path, []))

        def on_event(event: DiagnosticsEvent) -> None:
            if event.path == file_path and event.server_id == self.server_id:
                logger.debug("[%s] got diagnostics %s", self.server_id, file_path)
                resolve()

        def on_timeout() -> None:
            if not future.done():
                logger.info("[%s] timed out refreshing diagnostics for %s", self.server_id, file_path)
            resolve()

        unsubscribe = self.events.subscribe(on_event)
        wait = self.config.diagnostics_timeout if timeout is None else timeout
        timer = loop.call_later(wait, on_timeout)

        def cleanup(_: asyncio.Future) -> None:
            unsubscribe()
            timer.cancel()

        future.add_done_callback(cleanup)
        logger.debug("[%s] waiting for diagnostics %s", self.server_id, file_path)
        return future

    def get_diagnostics(self, file_path: str) -> list[Diagnostic]:
        """Get current diagnostics for a file without waiting."""
        return self.diagnostics.get(os.path.abspath(file_path), [])

    def get_all_diagnostics(self) -> dict[str, list[Diagnostic]]:
        """Snapshot copy of every stored diagnostics list."""
        return {path: list(diags) for path, diags in self.diagnostics.items()}

    async def request(self, method: str, params: Any, timeout: float | None = None) -> Any:
        """Pass-through request with the client's default timeout."""
        self._ensure_usable()
        return await self.connection.send_request(
            method, params, timeout=self.config.request_timeout if timeout is None else timeout
        )

    async def hover(self, file_path: str, line: int, character: int) -> HoverResult | None:
        """Send textDocument/hover.

        Args:
            file_path: Path to source file
            line: 0-based line number
            character: 0-based character offset

        Returns:
            HoverResult or None if the server has nothing for the position
        """
        result = await self.request(
            "textDocument/hover",
            {
                "textDocument": {"uri": path_to_uri(os.path.abspath(file_path))},
                "position": {"line": line, "character": character},
            },
        )
        if not result:
            return None

        contents = parse_hover_contents(result.get("contents"))
        if not contents:
            return None

        hover_range = Range.from_dict(result["range"]) if result.get("range") else None
        return HoverResult(server_id=self.server_id, contents=contents, range=hover_range)

    async def workspace_symbol(self, query: str) -> list[Symbol]:
        """Search for symbols across the workspace."""
        result = await self.request("workspace/symbol", {"query": query})
        if not result:
            return []
        return [Symbol.from_dict(self.server_id, item) for item in result]

    def status(self) -> dict[str, Any]:
        return {
            "server_id": self.server_id,
            "root": self.root,
            "state": self.state.value,
            "open_files": len(self.open_files),
            "diagnostic_files": len(self.diagnostics),
        }

    async def _abort(self) -> None:
        """Kill a session that never became ready."""
        self.state = ClientState.CLOSED
        await self.connection.close(timeout=self.config.shutdown_timeout)

    async def shutdown(self) -> None:
        """Shutdown server gracefully. Idempotent; errors are swallowed."""
        if self.state in (ClientState.SHUTTING_DOWN, ClientState.CLOSED):
            return
        was_ready = self.state is ClientState.READY
        self.state = ClientState.SHUTTING_DOWN
        logger.info("shutting down %s (%s)", self.server_id, self.root)

        if was_ready and not self.connection.closed:
            try:
                await self.connection.send_request(
                    "shutdown", None, timeout=self.config.shutdown_timeout
                )
                await self.connection.send_notification("exit")
                await asyncio.wait_for(
                    self.connection.process.wait(), timeout=self.config.shutdown_timeout
                )
            except (LSPError, asyncio.TimeoutError) as e:
                logger.debug("[%s] graceful shutdown failed: %s", self.server_id, e)

        try:
            await self.connection.close(timeout=self.config.shutdown_timeout)
        except (OSError, ProcessLookupError) as e:
            logger.debug("[%s] close failed: %s", self.server_id, e)
        self.state = ClientState.CLOSED
