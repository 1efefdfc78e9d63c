"""
Language server definitions.

Each definition knows which extensions it owns, how to find project roots and
how to spawn (installing first if needed) its server. ``spawn`` returns None
instead of raising when the toolchain is unavailable, so one broken ecosystem
never blocks the others.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping, Sequence

from config import LSPConfig, LSPServerConfig
from core.constants import LSP_PROGRESS_TIMEOUT_SECONDS

from .install import (
    IS_WINDOWS,
    Installer,
    ToolCache,
    download,
    extract_archive,
    gem_installer,
    go_installer,
    host_target,
    npm_bin,
    npm_installer,
    npm_prefix,
    release_installer,
    resolve_binary,
    run_command,
)
from .roots import NearestRoot, RootStrategy, SimpleRoots, walk_files
from .workspace import Workspace

if TYPE_CHECKING:
    from .client import LSPClient

logger = logging.getLogger(__name__)

ELIXIR_LS_ARCHIVE = "https://github.com/elixir-lsp/elixir-ls/archive/refs/heads/master.zip"
ZLS_RELEASE = "https://github.com/zigtools/zls/releases/latest/download/zls-{arch}-{os}.{ext}"
TYPESCRIPT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")


@dataclass
class ServerHandle:
    """A launched server process plus handshake extras.

    Attributes:
        process: The child process, with piped stdin/stdout/stderr
        initialization: Sent as ``initializationOptions``
        on_initialized: Awaited once after the handshake, before the session
            is handed to callers
    """

    process: asyncio.subprocess.Process
    initialization: dict = field(default_factory=dict)
    on_initialized: Callable[[LSPClient], Awaitable[None]] | None = None


SpawnFunction = Callable[[Workspace, str], Awaitable["ServerHandle | None"]]


@dataclass(frozen=True)
class ServerDefinition:
    """Static description of one language server."""

    id: str
    extensions: frozenset[str]
    roots: RootStrategy
    spawn: SpawnFunction

    def handles(self, file_path: str) -> bool:
        return Path(file_path).suffix in self.extensions


async def spawn_process(
    cmd: Sequence[str],
    cwd: str,
    env: Mapping[str, str] | None = None,
) -> asyncio.subprocess.Process | None:
    """Start a server with piped stdio; None if the executable won't start."""
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            env={**os.environ, **(env or {})},
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Failed to spawn %s: %s", cmd[0], e)
        return None


# --- TypeScript ---


def find_tsserver(root: str, workspace: Workspace) -> str | None:
    """Locate typescript/lib/tsserver.js from the root up to the workspace."""
    relative = Path("node_modules", "typescript", "lib", "tsserver.js")
    for directory in (Path(root), *Path(root).parents):
        candidate = directory / relative
        if candidate.exists():
            return str(candidate)
        if directory == workspace.root:
            break
    cached = npm_prefix(workspace.tools) / relative
    return str(cached) if cached.exists() else None


async def _typescript_warmup(client: LSPClient) -> None:
    # tsserver won't start processing the codebase until a file is opened
    hint = next(
        (f for f in walk_files(client.root) if f.endswith(TYPESCRIPT_EXTENSIONS)),
        None,
    )
    if hint is None:
        return

    done = asyncio.Event()

    def on_progress(params: dict) -> None:
        if (params or {}).get("value", {}).get("kind") == "end":
            done.set()

    dispose = client.connection.on_notification("$/progress", on_progress)
    try:
        await client.open_file(hint)
        await asyncio.wait_for(done.wait(), timeout=LSP_PROGRESS_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.info("typescript did not report indexing progress for %s", hint)
    finally:
        dispose()


async def spawn_typescript(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    name = "typescript-language-server"
    binary = await resolve_binary(
        name,
        tools,
        npm_installer(tools, name, "typescript"),
        locate=lambda: tools.which(name) or npm_bin(tools, name),
    )
    if not binary:
        return None
    tsserver = find_tsserver(root, workspace)
    if not tsserver:
        logger.info("typescript not installed in %s, skipping", root)
        return None
    process = await spawn_process([binary, "--stdio"], root)
    if process is None:
        return None
    return ServerHandle(
        process=process,
        initialization={"tsserver": {"path": tsserver}},
        on_initialized=_typescript_warmup,
    )


# --- Go ---


async def spawn_gopls(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    binary = await resolve_binary(
        "gopls", tools, go_installer(tools, "golang.org/x/tools/gopls@latest")
    )
    if not binary:
        return None
    process = await spawn_process([binary], root)
    return ServerHandle(process=process) if process else None


# --- Ruby ---


async def spawn_ruby_lsp(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    binary = await resolve_binary("ruby-lsp", tools, gem_installer(tools, "ruby-lsp"))
    if not binary:
        return None
    process = await spawn_process([binary, "--stdio"], root)
    return ServerHandle(process=process) if process else None


# --- Python ---


async def spawn_pyright(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    name = "pyright-langserver"
    binary = await resolve_binary(
        name,
        tools,
        npm_installer(tools, "pyright"),
        locate=lambda: tools.which(name) or npm_bin(tools, name),
    )
    if not binary:
        return None
    process = await spawn_process([binary, "--stdio"], root)
    return ServerHandle(process=process) if process else None


# --- Elixir ---


def elixir_ls_release(tools: ToolCache) -> Path:
    script = "language_server.bat" if IS_WINDOWS else "language_server.sh"
    return tools.path("elixir-ls-master", "release", script)


def _elixir_installer(tools: ToolCache) -> Installer | None:
    mix = shutil.which("mix")
    if not shutil.which("elixir") or not mix:
        logger.error("elixir is required to run elixir-ls")
        return None

    async def install() -> bool:
        archive = tools.path("elixir-ls.zip")
        try:
            logger.info("downloading elixir-ls from GitHub releases")
            await download(ELIXIR_LS_ARCHIVE, archive)
            await asyncio.to_thread(extract_archive, archive, tools.bin_dir)
        finally:
            archive.unlink(missing_ok=True)

        source = tools.path("elixir-ls-master")
        env = {"MIX_ENV": "prod"}
        for step in (["deps.get"], ["compile"], ["elixir_ls.release2", "-o", "release"]):
            if not await run_command([mix, *step], cwd=source, env=env):
                return False
        return True

    return install


async def spawn_elixir_ls(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    release = elixir_ls_release(tools)
    binary = await resolve_binary(
        "elixir-ls",
        tools,
        _elixir_installer(tools),
        locate=lambda: tools.which("elixir-ls") or (str(release) if release.exists() else None),
    )
    if not binary:
        return None
    process = await spawn_process([binary], root)
    return ServerHandle(process=process) if process else None


# --- Zig ---


def zls_release_url() -> str:
    arch, system = host_target()
    return ZLS_RELEASE.format(arch=arch, os=system, ext="zip" if IS_WINDOWS else "tar.xz")


async def spawn_zls(workspace: Workspace, root: str) -> ServerHandle | None:
    tools = workspace.tools
    installer = None
    if shutil.which("zig"):
        installer = release_installer(tools, "zls", zls_release_url())
    else:
        logger.info("zig is required to run zls")
    binary = await resolve_binary("zls", tools, installer)
    if not binary:
        return None
    process = await spawn_process([binary], root)
    return ServerHandle(process=process) if process else None


# --- Registry ---


BUILTIN_SERVERS: tuple[ServerDefinition, ...] = (
    ServerDefinition(
        id="typescript",
        extensions=frozenset(TYPESCRIPT_EXTENSIONS),
        roots=NearestRoot.of(["tsconfig.json", "jsconfig.json", "package.json"]),
        spawn=spawn_typescript,
    ),
    ServerDefinition(
        id="golang",
        extensions=frozenset({".go"}),
        roots=NearestRoot.of("go.work", ["go.mod", "go.sum"]),
        spawn=spawn_gopls,
    ),
    ServerDefinition(
        id="ruby-lsp",
        extensions=frozenset({".rb", ".rake", ".gemspec", ".ru"}),
        roots=NearestRoot.of("Gemfile"),
        spawn=spawn_ruby_lsp,
    ),
    ServerDefinition(
        id="pyright",
        extensions=frozenset({".py", ".pyi"}),
        roots=NearestRoot.of(
            [
                "pyproject.toml",
                "setup.py",
                "setup.cfg",
                "requirements.txt",
                "Pipfile",
                "pyrightconfig.json",
            ]
        ),
        spawn=spawn_pyright,
    ),
    ServerDefinition(
        id="elixir-ls",
        extensions=frozenset({".ex", ".exs"}),
        roots=NearestRoot.of(["mix.exs", "mix.lock"]),
        spawn=spawn_elixir_ls,
    ),
    ServerDefinition(
        id="zls",
        extensions=frozenset({".zig", ".zon"}),
        roots=NearestRoot.of("build.zig"),
        spawn=spawn_zls,
    ),
)


def command_spawner(command: list[str], env: Mapping[str, str]) -> SpawnFunction:
    """Spawn a configured command line verbatim (no lookup, no install)."""

    async def spawn(workspace: Workspace, root: str) -> ServerHandle | None:
        if not shutil.which(command[0]) and not Path(command[0]).exists():
            logger.info("%s not found", command[0])
            return None
        process = await spawn_process(command, root, env)
        return ServerHandle(process=process) if process else None

    return spawn


def with_initialization(spawn: SpawnFunction, extra: dict) -> SpawnFunction:
    """Merge configured initializationOptions over the definition's own."""

    async def wrapped(workspace: Workspace, root: str) -> ServerHandle | None:
        handle = await spawn(workspace, root)
        if handle is not None:
            handle.initialization = {**handle.initialization, **extra}
        return handle

    return wrapped


def _roots_from(override: LSPServerConfig) -> RootStrategy | None:
    if not override.root_markers:
        return None
    if override.multi_root:
        return SimpleRoots.of(*override.root_markers)
    return NearestRoot.of(override.root_markers)


def _apply(definition: ServerDefinition, override: LSPServerConfig) -> ServerDefinition:
    spawn = definition.spawn
    if override.command:
        spawn = command_spawner(override.command, override.env)
    if override.initialization:
        spawn = with_initialization(spawn, override.initialization)
    return replace(
        definition,
        extensions=frozenset(override.extensions) if override.extensions else definition.extensions,
        roots=_roots_from(override) or definition.roots,
        spawn=spawn,
    )


def definitions(config: LSPConfig | None = None) -> list[ServerDefinition]:
    """The server table after configuration overrides.

    Built-in servers can be disabled or have their command, extensions,
    roots and initializationOptions replaced. Unknown ids that carry both a
    command and extensions become custom servers.
    """
    config = config or LSPConfig()
    if not config.enabled:
        return []

    result: list[ServerDefinition] = []
    for definition in BUILTIN_SERVERS:
        override = config.servers.get(definition.id)
        if override is None:
            result.append(definition)
        elif not override.disabled:
            result.append(_apply(definition, override))

    builtin_ids = {d.id for d in BUILTIN_SERVERS}
    for server_id, override in config.servers.items():
        if server_id in builtin_ids or override.disabled:
            continue
        if not override.command or not override.extensions:
            logger.warning("Ignoring custom server %s without command and extensions", server_id)
            continue
        custom = ServerDefinition(
            id=server_id,
            extensions=frozenset(override.extensions),
            roots=_roots_from(override) or NearestRoot.of(),
            spawn=command_spawner(override.command, override.env),
        )
        result.append(_apply(custom, override.model_copy(update={"command": None})))

    return result
