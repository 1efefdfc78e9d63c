"""Tests for LSPManager: routing, session reuse, isolation and lifecycle."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from config import LSPConfig
from lsp.manager import LSPManager, ManagerState, pretty
from lsp.roots import NearestRoot, SimpleRoots
from lsp.types import Diagnostic, DiagnosticSeverity, Position, Range


def unavailable(server_id="missing", extensions=(".fake",)):
    """A definition whose toolchain is not installed."""
    from lsp.server import ServerDefinition

    return ServerDefinition(
        id=server_id,
        extensions=frozenset(extensions),
        roots=NearestRoot.of(),
        spawn=AsyncMock(return_value=None),
    )


class TestTouchFile:
    @pytest.mark.asyncio
    async def test_spawns_once_and_reuses(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake", "ok\n"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(path)
            await manager.touch_file(path)
            assert len(manager.clients) == 1
            assert fake_server.spawned == [str(workspace.root)]
        finally:
            await manager.shutdown()

        methods = [m for m in fake_server.methods("fake") if m.startswith("textDocument/did")]
        # Idempotent open: the second touch is a change, never a second open
        assert methods == ["textDocument/didOpen", "textDocument/didChange"]

    @pytest.mark.asyncio
    async def test_concurrent_touches_share_one_spawn(self, fake_server, workspace, fast_config, write_file):
        paths = [str(write_file(f"f{i}.fake")) for i in range(5)]
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await asyncio.gather(*(manager.touch_file(p) for p in paths))
            assert len(manager.clients) == 1
            assert len(fake_server.spawned) == 1
            assert len(manager.clients[0].open_files) == 5
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_sibling_roots_get_separate_sessions(self, fake_server, workspace, fast_config, write_file):
        write_file("a/fake.toml")
        write_file("b/fake.toml")
        a = str(write_file("a/main.fake"))
        b = str(write_file("b/main.fake"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(a)
            await manager.touch_file(b)
            roots = sorted(c.root for c in manager.clients)
        finally:
            await manager.shutdown()

        assert roots == [str(workspace.root / "a"), str(workspace.root / "b")]

    @pytest.mark.asyncio
    async def test_wait_for_diagnostics(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("src/main.fake", "ERROR\n"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            diagnostics = manager.diagnostics()
        finally:
            await manager.shutdown()

        assert list(diagnostics) == [path]
        assert [d.severity for d in diagnostics[path]] == [DiagnosticSeverity.ERROR]

    @pytest.mark.asyncio
    async def test_relative_path_resolves_against_cwd(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("pkg/mod.fake", "WARN\n"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file("pkg/mod.fake", wait_for_diagnostics=True)
            assert path in manager.diagnostics()
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_unhandled_extension(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("notes.txt"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            assert manager.clients == []
            assert fake_server.spawned == []
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_both_servers_for_shared_extension(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake", "ERROR\n"))
        servers = [fake_server.definition("one"), fake_server.definition("two")]
        manager = LSPManager(workspace, fast_config, servers=servers)
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            diagnostics = manager.diagnostics()
        finally:
            await manager.shutdown()

        # Per-path lists from both sessions are merged
        assert sorted(d.source for d in diagnostics[path]) == ["one", "two"]


class TestGracefulDegradation:
    @pytest.mark.asyncio
    async def test_missing_toolchain(self, workspace, fast_config, write_file):
        path = str(write_file("main.fake"))
        definition = unavailable()
        manager = LSPManager(workspace, fast_config, servers=[definition])
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            await manager.touch_file(path)
            assert manager.diagnostics() == {}
            assert await manager.hover(path, 0, 0) == []
            assert await manager.workspace_symbol("x") == []
            # Broken pairs are never retried
            definition.spawn.assert_awaited_once()
            assert manager.status()["broken"] == [{"server_id": "missing", "root": str(workspace.root)}]
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_spawn_raising_is_contained(self, workspace, fast_config, write_file):
        path = str(write_file("main.fake"))
        definition = replace(unavailable(), spawn=AsyncMock(side_effect=RuntimeError("boom")))
        manager = LSPManager(workspace, fast_config, servers=[definition])
        try:
            await manager.touch_file(path)
            assert manager.clients == []
            assert ("missing", str(workspace.root)) in manager._broken
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_failed_handshake_never_registered(self, fake_server, workspace, write_file):
        path = str(write_file("main.fake"))
        config = LSPConfig(init_timeout=0.3, request_timeout=0.5, shutdown_timeout=0.5)
        manager = LSPManager(workspace, config, servers=[fake_server.definition(mode="crash-init")])
        try:
            await manager.touch_file(path)
            await manager.touch_file(path)
            assert manager.clients == []
            assert len(fake_server.spawned) == 1
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_healthy_server_unaffected_by_broken_one(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake", "ERROR\n"))
        manager = LSPManager(workspace, fast_config, servers=[unavailable(), fake_server.definition()])
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            assert [c.server_id for c in manager.clients] == ["fake"]
            assert len(manager.diagnostics()[path]) == 1
        finally:
            await manager.shutdown()


class TestExitedServer:
    @pytest.mark.asyncio
    async def test_dead_session_is_dropped_and_respawned(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake", "ERROR\n"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(path, wait_for_diagnostics=True)
            dead = manager.clients[0]
            assert path in manager.diagnostics()

            dead.connection.process.kill()
            for _ in range(200):
                if dead.connection.closed:
                    break
                await asyncio.sleep(0.01)
            assert dead.connection.closed

            # The exited server's last snapshot is no longer reported
            assert manager.clients == []
            assert manager.diagnostics() == {}

            await manager.touch_file(path, wait_for_diagnostics=True)
            assert len(fake_server.spawned) == 2
            assert len(manager.clients) == 1
            assert manager.clients[0] is not dead
            assert len(manager.diagnostics()[path]) == 1
        finally:
            await manager.shutdown()


class TestFanOut:
    @pytest.mark.asyncio
    async def test_stuck_session_does_not_block_hover(self, fake_server, workspace, write_file):
        path = str(write_file("main.fake"))
        config = LSPConfig(request_timeout=0.5, diagnostics_timeout=1.0, shutdown_timeout=0.5)
        servers = [fake_server.definition("stuck", mode="stuck-hover"), fake_server.definition("quick")]
        manager = LSPManager(workspace, config, servers=servers)
        loop = asyncio.get_running_loop()
        try:
            await manager.touch_file(path)
            started = loop.time()
            results = await manager.hover(path, 3, 1)
            elapsed = loop.time() - started
        finally:
            await manager.shutdown()

        assert [(r.server_id, r.contents) for r in results] == [("quick", "quick 3:1")]
        assert elapsed < 0.5 + 0.5

    @pytest.mark.asyncio
    async def test_hover_reaches_every_session(self, fake_server, workspace, fast_config, write_file):
        main = str(write_file("main.fake"))
        other = str(write_file("lib.other"))
        servers = [fake_server.definition("a"), fake_server.definition("b", extensions=(".other",))]
        manager = LSPManager(workspace, fast_config, servers=servers)
        try:
            await manager.touch_file(main)
            await manager.touch_file(other)
            results = await manager.hover(main, 0, 0)
        finally:
            await manager.shutdown()

        assert sorted(r.server_id for r in results) == ["a", "b"]
        assert "textDocument/hover" in fake_server.methods("a")
        assert "textDocument/hover" in fake_server.methods("b")

    @pytest.mark.asyncio
    async def test_hover_never_spawns(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            assert await manager.hover(path, 0, 0) == []
            assert fake_server.spawned == []
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_workspace_symbol_concatenates(self, fake_server, workspace, fast_config, write_file):
        write_file("a/fake.toml")
        write_file("b/fake.toml")
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(str(write_file("a/x.fake")))
            await manager.touch_file(str(write_file("b/y.fake")))
            symbols = await manager.workspace_symbol("Serve")
        finally:
            await manager.shutdown()

        assert [s.name for s in symbols] == ["ServeHandler", "ServeHandler"]
        assert sorted(s.path for s in symbols) == [
            str(workspace.root / "a" / "x.fake"),
            str(workspace.root / "b" / "y.fake"),
        ]


class TestInit:
    @pytest.mark.asyncio
    async def test_spawns_for_first_matching_file(self, fake_server, workspace, fast_config, write_file):
        write_file("svc/fake.toml")
        write_file("svc/main.fake")
        write_file("README.md")

        async with LSPManager(workspace, fast_config, servers=[fake_server.definition()]) as manager:
            assert manager.state is ManagerState.READY
            assert [c.root for c in manager.clients] == [str(workspace.root / "svc")]
            await manager.init()
            assert len(fake_server.spawned) == 1

        assert manager.state is ManagerState.SHUTDOWN
        assert manager.clients == []

    @pytest.mark.asyncio
    async def test_simple_roots_spawn_each_project(self, fake_server, workspace, fast_config, write_file):
        write_file("one/fake.toml")
        write_file("two/fake.toml")
        write_file("one/main.fake")
        definition = fake_server.definition(roots=SimpleRoots.of("fake.toml"))

        async with LSPManager(workspace, fast_config, servers=[definition]) as manager:
            roots = sorted(c.root for c in manager.clients)

        assert roots == [str(workspace.root / "one"), str(workspace.root / "two")]

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, fake_server, workspace, fast_config, write_file):
        write_file("main.go")
        async with LSPManager(workspace, fast_config, servers=[fake_server.definition()]) as manager:
            assert manager.clients == []
        assert fake_server.spawned == []

    @pytest.mark.asyncio
    async def test_disabled(self, fake_server, workspace, write_file):
        path = str(write_file("main.fake"))
        config = LSPConfig(enabled=False)
        async with LSPManager(workspace, config, servers=[fake_server.definition()]) as manager:
            await manager.touch_file(path)
            assert manager.clients == []
        assert fake_server.spawned == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stops_every_session(self, fake_server, workspace, fast_config, write_file):
        write_file("a/fake.toml")
        write_file("b/fake.toml")
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        await manager.touch_file(str(write_file("a/x.fake")))
        await manager.touch_file(str(write_file("b/y.fake")))
        processes = [c.connection.process for c in manager.clients]

        await manager.shutdown()
        await manager.shutdown()

        assert manager.clients == []
        assert all(p.returncode is not None for p in processes)

    @pytest.mark.asyncio
    async def test_kills_sessions_stuck_in_handshake(self, fake_server, workspace, write_file):
        path = str(write_file("main.fake"))
        config = LSPConfig(init_timeout=30.0, shutdown_timeout=0.5)
        definition = fake_server.definition(mode="hang-init")
        handles = []

        async def spawn(ws, root):
            handle = await definition.spawn(ws, root)
            handles.append(handle)
            return handle

        manager = LSPManager(workspace, config, servers=[replace(definition, spawn=spawn)])
        touch = asyncio.create_task(manager.touch_file(path))
        while not handles:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.1)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await manager.shutdown()
        assert loop.time() - started < 5
        await asyncio.wait_for(touch, timeout=5)

        assert handles[0].process.returncode is not None
        assert manager.clients == []

    @pytest.mark.asyncio
    async def test_touch_after_shutdown_is_noop(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        await manager.shutdown()
        await manager.touch_file(path)
        assert manager.clients == []
        assert fake_server.spawned == []


class TestCloseAndStatus:
    @pytest.mark.asyncio
    async def test_close_file(self, fake_server, workspace, fast_config, write_file):
        path = str(write_file("main.fake"))
        manager = LSPManager(workspace, fast_config, servers=[fake_server.definition()])
        try:
            await manager.touch_file(path)
            await manager.close_file(path)
            assert manager.clients[0].open_files == {}
            status = manager.status()
        finally:
            await manager.shutdown()

        assert "textDocument/didClose" in fake_server.methods("fake")
        assert status["state"] == "uninitialized"
        assert status["clients"][0]["open_files"] == 0


def test_pretty():
    diag = Diagnostic(
        path="/a.zig",
        range=Range(Position(11, 0), Position(11, 4)),
        severity=DiagnosticSeverity.HINT,
        message="unused capture",
    )
    assert pretty(diag) == "HINT [12:1] unused capture"
