"""
Language-server orchestrator.

Owns every running session, keyed by (server id, root). Sessions are spawned
lazily on first touch of a matching file (or eagerly by ``init``), pairs that
fail to spawn or initialize are remembered as broken and never retried, and
requests are broadcast to all relevant sessions with per-session timeouts so
one slow or dead server never holds up the others.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from config import LSPConfig
from core.exceptions import LSPError
from core.logging_config import timed

from .client import LSPClient
from .roots import SimpleRoots, walk_files
from .server import ServerDefinition, definitions
from .types import Diagnostic, HoverResult, Symbol
from .workspace import Workspace

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionKey = tuple[str, str]


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTDOWN = "shutdown"


class LSPManager:
    """Pool of language-server sessions for one workspace.

    Use as an async context manager::

        async with LSPManager(workspace, config.lsp) as lsp:
            await lsp.touch_file("main.go", wait_for_diagnostics=True)
            print(lsp.diagnostics())
    """

    def __init__(
        self,
        workspace: Workspace,
        config: LSPConfig | None = None,
        servers: Sequence[ServerDefinition] | None = None,
    ):
        self.workspace = workspace
        self.config = config or LSPConfig()
        if not self.config.enabled:
            self.servers: list[ServerDefinition] = []
        elif servers is not None:
            self.servers = list(servers)
        else:
            self.servers = definitions(self.config)

        self.state = ManagerState.UNINITIALIZED
        self._clients: dict[SessionKey, LSPClient] = {}
        self._broken: set[SessionKey] = set()
        self._spawning: dict[SessionKey, asyncio.Task[LSPClient | None]] = {}
        self._init_task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> LSPManager:
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # --- Lifecycle ---

    async def init(self) -> None:
        """Spawn sessions for every server with a matching file in the workspace.

        Safe to call more than once; later calls wait for the first scan.
        """
        if self.state is ManagerState.SHUTDOWN:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        await self._init_task

    async def _initialize(self) -> None:
        self.state = ManagerState.INITIALIZING
        hits = await asyncio.to_thread(self._scan)

        jobs: list[Awaitable[LSPClient | None]] = []
        for definition in self.servers:
            hit = hits.get(definition.id)
            if hit is None:
                continue
            if isinstance(definition.roots, SimpleRoots):
                roots = await asyncio.to_thread(definition.roots.discover, self.workspace)
            else:
                roots = [await asyncio.to_thread(definition.roots.resolve, self.workspace, hit)]
            logger.debug("init %s: %s -> %s", definition.id, hit, roots)
            jobs.extend(self._get_or_spawn(definition, root) for root in roots)

        await asyncio.gather(*jobs)
        if self.state is ManagerState.INITIALIZING:
            self.state = ManagerState.READY
        logger.info("LSP manager ready with %d session(s)", len(self._clients))

    def _scan(self) -> dict[str, str]:
        """First workspace file each server definition handles."""
        hits: dict[str, str] = {}
        if not self.servers:
            return hits
        for file_path in walk_files(str(self.workspace.root)):
            for definition in self.servers:
                if definition.id not in hits and definition.handles(file_path):
                    hits[definition.id] = file_path
            if len(hits) == len(self.servers):
                break
        return hits

    async def shutdown(self) -> None:
        """Stop every session. In-flight spawns are cancelled and their
        processes killed rather than awaited. Idempotent."""
        if self.state is ManagerState.SHUTDOWN:
            return
        self.state = ManagerState.SHUTDOWN

        spawning = list(self._spawning.values())
        for task in spawning:
            task.cancel()
        if spawning:
            await asyncio.gather(*spawning, return_exceptions=True)

        clients = list(self._clients.values())
        self._clients.clear()
        logger.info("shutting down %d LSP session(s)", len(clients))
        results = await asyncio.gather(*(c.shutdown() for c in clients), return_exceptions=True)
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.debug("shutdown of %s failed: %s", client.server_id, result)

    # --- Sessions ---

    async def _get_or_spawn(self, definition: ServerDefinition, root: str) -> LSPClient | None:
        key = (definition.id, root)
        if self.state is ManagerState.SHUTDOWN:
            return None
        client = self._clients.get(key)
        stale = None
        if client is not None:
            if not client.connection.closed:
                return client
            # The server exited after the handshake; respawn it
            logger.warning("%s for %s exited; dropping session", client.server_id, root)
            stale = self._clients.pop(key)
        if key in self._broken:
            return None

        task = self._spawning.get(key)
        if task is None:
            task = asyncio.create_task(self._spawn(definition, root))
            self._spawning[key] = task

            def forget(done: asyncio.Task) -> None:
                if self._spawning.get(key) is done:
                    del self._spawning[key]

            task.add_done_callback(forget)

        if stale is not None:
            await stale.shutdown()
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _spawn(self, definition: ServerDefinition, root: str) -> LSPClient | None:
        key = (definition.id, root)
        logger.info("spawning %s for %s", definition.id, root)
        try:
            handle = await definition.spawn(self.workspace, root)
        except Exception:
            logger.exception("Failed to spawn %s for %s", definition.id, root)
            handle = None
        if handle is None:
            logger.info("%s unavailable for %s", definition.id, root)
            self._broken.add(key)
            return None

        try:
            client = await LSPClient.create(definition.id, root, handle, self.config)
        except LSPError as e:
            logger.error("%s", e)
            self._broken.add(key)
            return None

        if self.state is ManagerState.SHUTDOWN:
            await client.shutdown()
            return None
        self._clients[key] = client
        return client

    async def _clients_for(self, file_path: str) -> list[LSPClient]:
        owners = [d for d in self.servers if d.handles(file_path)]
        if not owners:
            return []
        roots = await asyncio.gather(
            *(asyncio.to_thread(d.roots.resolve, self.workspace, file_path) for d in owners)
        )
        clients = await asyncio.gather(
            *(self._get_or_spawn(d, root) for d, root in zip(owners, roots))
        )
        return [c for c in clients if c is not None]

    @property
    def clients(self) -> list[LSPClient]:
        """Live sessions; ones whose server exited are left out."""
        return [c for c in self._clients.values() if not c.connection.closed]

    def status(self) -> dict[str, Any]:
        """Debug view of live sessions and broken pairs."""
        return {
            "state": self.state.value,
            "clients": [c.status() for c in self._clients.values()],
            "broken": [{"server_id": s, "root": r} for s, r in sorted(self._broken)],
        }

    # --- Documents ---

    async def touch_file(self, path: str, wait_for_diagnostics: bool = False) -> None:
        """Send a file to every server that handles it.

        Args:
            path: File path, absolute or relative to the workspace cwd
            wait_for_diagnostics: Also wait (bounded) for each server to
                publish diagnostics for the file
        """
        file_path = self.workspace.absolute(path)
        clients = await self._clients_for(file_path)
        if not clients:
            logger.debug("no LSP session for %s", file_path)
            return

        async def sync(client: LSPClient) -> None:
            waiter = client.wait_for_diagnostics(file_path) if wait_for_diagnostics else None
            try:
                await client.open_file(file_path)
            except LSPError as e:
                logger.error("[%s] failed to send %s: %s", client.server_id, file_path, e)
                if waiter is not None:
                    waiter.cancel()
                return
            if waiter is not None:
                await waiter

        await asyncio.gather(*(sync(c) for c in clients))

    async def close_file(self, path: str) -> None:
        """Send didClose to every session holding the file open."""
        file_path = self.workspace.absolute(path)
        holders = [c for c in self._clients.values() if file_path in c.open_files]

        async def close(client: LSPClient) -> None:
            try:
                await client.close_file(file_path)
            except LSPError as e:
                logger.warning("[%s] failed to close %s: %s", client.server_id, file_path, e)

        await asyncio.gather(*(close(c) for c in holders))

    def diagnostics(self) -> dict[str, list[Diagnostic]]:
        """Get aggregated diagnostics from all active clients.

        Returns:
            Dict mapping file paths to lists of diagnostics,
            aggregated across all LSP clients.
        """
        result: dict[str, list[Diagnostic]] = {}
        for client in self.clients:
            for file_path, diags in client.get_all_diagnostics().items():
                result.setdefault(file_path, []).extend(diags)
        return result

    # --- Requests ---

    async def _run(
        self,
        clients: Sequence[LSPClient],
        fn: Callable[[LSPClient], Awaitable[T]],
        operation: str,
    ) -> list[T]:
        timeout = self.config.request_timeout

        async def one(client: LSPClient) -> T | None:
            try:
                return await asyncio.wait_for(fn(client), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("[%s] %s timed out after %ss", client.server_id, operation, timeout)
            except Exception as e:
                logger.warning("[%s] %s failed: %s", client.server_id, operation, e)
            return None

        results = await asyncio.gather(*(one(c) for c in clients))
        return [r for r in results if r is not None]

    @timed("hover")
    async def hover(self, path: str, line: int, character: int) -> list[HoverResult]:
        """Hover at a 0-based position, broadcast to every live session.

        Does not send the document; call ``touch_file`` first.
        """
        file_path = self.workspace.absolute(path)
        return await self._run(self.clients, lambda c: c.hover(file_path, line, character), "hover")

    @timed("workspace_symbol")
    async def workspace_symbol(self, query: str) -> list[Symbol]:
        """Search symbols across every live session and concatenate the results."""
        results = await self._run(
            self.clients, lambda c: c.workspace_symbol(query), "workspace/symbol"
        )
        return [symbol for symbols in results for symbol in symbols]


def pretty(diagnostic: Diagnostic) -> str:
    """Format as ``SEVERITY [line:col] message`` (1-based)."""
    return diagnostic.pretty()
