"""
On-demand installation of language-server binaries.

Binaries are looked up on PATH plus a private tool cache. When one is missing
and installation is allowed, the ecosystem installer runs once and the lookup
is repeated; a second miss means the server is unavailable.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import stat
import sys
import tarfile
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Sequence

import httpx

from core.constants import DOWNLOAD_TIMEOUT_SECONDS, INSTALL_TIMEOUT_SECONDS
from core.logging_config import log_timing

logger = logging.getLogger(__name__)

Installer = Callable[[], Awaitable[bool]]

IS_WINDOWS = sys.platform == "win32"


@dataclass(frozen=True)
class ToolCache:
    """Private directory holding bootstrapped server binaries."""

    bin_dir: Path
    auto_install: bool = True

    def which(self, name: str) -> str | None:
        """Find an executable on PATH or in the tool cache."""
        search_path = os.pathsep.join(
            p for p in (os.environ.get("PATH", ""), str(self.bin_dir)) if p
        )
        return shutil.which(name, path=search_path)

    def path(self, *parts: str) -> Path:
        return self.bin_dir.joinpath(*parts)

    def ensure(self) -> Path:
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        return self.bin_dir


class _Step(Enum):
    LOOKUP = "lookup"
    INSTALL = "install"


async def resolve_binary(
    name: str,
    tools: ToolCache,
    installer: Installer | None = None,
    locate: Callable[[], str | None] | None = None,
) -> str | None:
    """Find a server binary, installing it at most once.

    Args:
        name: Executable name to look up
        tools: Tool cache searched in addition to PATH
        installer: Coroutine factory performing the install; returns success
        locate: Custom lookup replacing ``tools.which(name)``

    Returns:
        Path to the executable, or None when unavailable
    """
    lookup = locate or (lambda: tools.which(name))
    step = _Step.LOOKUP
    attempted = False

    while True:
        if step is _Step.LOOKUP:
            found = lookup()
            if found:
                return found
            if attempted or installer is None or not tools.auto_install:
                if attempted:
                    logger.error("%s still missing after install", name)
                else:
                    logger.info("%s not found and cannot be installed", name)
                return None
            step = _Step.INSTALL
        else:
            attempted = True
            logger.info("installing %s", name)
            try:
                tools.ensure()
                with log_timing(logger, f"install {name}", logging.INFO):
                    ok = await installer()
            except (OSError, httpx.HTTPError, tarfile.TarError, zipfile.BadZipFile) as e:
                logger.error("Failed to install %s: %s", name, e)
                ok = False
            if not ok:
                logger.error("Failed to install %s", name)
                return None
            logger.info("installed %s", name)
            step = _Step.LOOKUP


async def run_command(
    cmd: Sequence[str],
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float = INSTALL_TIMEOUT_SECONDS,
) -> bool:
    """Run an installer command, returning True on a zero exit status."""
    full_env = {**os.environ, **(env or {})}
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            env=full_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Could not run %s: %s", cmd[0], e)
        return False

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.error("%s timed out after %.0fs", " ".join(cmd), timeout)
        return False

    if process.returncode != 0:
        logger.error(
            "%s exited with %s: %s",
            " ".join(cmd),
            process.returncode,
            stderr.decode("utf-8", "replace").strip()[-500:],
        )
        return False
    return True


def exe(name: str) -> str:
    return name + (".exe" if IS_WINDOWS else "")


def go_installer(tools: ToolCache, package: str) -> Installer | None:
    """``go install <package>`` into the tool cache; None without Go."""
    go = shutil.which("go")
    if not go:
        return None

    async def install() -> bool:
        return await run_command([go, "install", package], env={"GOBIN": str(tools.bin_dir)})

    return install


def gem_installer(tools: ToolCache, gem: str) -> Installer | None:
    """``gem install <gem>`` with binaries in the tool cache; None without Ruby."""
    ruby, gem_bin = shutil.which("ruby"), shutil.which("gem")
    if not ruby or not gem_bin:
        logger.info("Ruby not found, please install Ruby first")
        return None

    async def install() -> bool:
        return await run_command([gem_bin, "install", gem, "--bindir", str(tools.bin_dir)])

    return install


def npm_prefix(tools: ToolCache) -> Path:
    return tools.path("node")


def npm_bin(tools: ToolCache, name: str) -> str | None:
    """Locate an npm-installed executable in the tool cache."""
    candidate = npm_prefix(tools) / "node_modules" / ".bin" / (name + (".cmd" if IS_WINDOWS else ""))
    return str(candidate) if candidate.exists() else None


def npm_installer(tools: ToolCache, *packages: str) -> Installer | None:
    """``npm install --prefix <cache>/node <packages>``; None without npm."""
    npm = shutil.which("npm")
    if not npm:
        return None

    async def install() -> bool:
        prefix = npm_prefix(tools)
        prefix.mkdir(parents=True, exist_ok=True)
        return await run_command([npm, "install", "--prefix", str(prefix), *packages])

    return install


async def download(url: str, destination: Path) -> None:
    """Stream a URL to a file, following redirects."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with destination.open("wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)


def extract_archive(archive: Path, destination: Path) -> None:
    """Extract a .zip or .tar.* archive, refusing members outside destination."""
    destination.mkdir(parents=True, exist_ok=True)
    target = destination.resolve()

    if archive.suffix == ".zip":
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                if not (target / member).resolve().is_relative_to(target):
                    raise zipfile.BadZipFile(f"Unsafe path in archive: {member}")
            zf.extractall(target)
        return

    with tarfile.open(archive) as tf:
        for member in tf.getmembers():
            if not (target / member.name).resolve().is_relative_to(target):
                raise tarfile.TarError(f"Unsafe path in archive: {member.name}")
        tf.extractall(target)


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def host_target() -> tuple[str, str]:
    """(arch, os) names as used by release archives, e.g. ("x86_64", "linux")."""
    machine = platform.machine().lower()
    arch = {"amd64": "x86_64", "x64": "x86_64", "arm64": "aarch64"}.get(machine, machine)
    system = {"darwin": "macos", "win32": "windows"}.get(sys.platform, sys.platform)
    if system.startswith("linux"):
        system = "linux"
    return arch, system


def release_installer(
    tools: ToolCache,
    name: str,
    url: str,
    member: str | None = None,
) -> Installer:
    """Download a release archive, unpack it into the tool cache and mark
    the binary executable.

    Args:
        tools: Destination tool cache
        name: Executable name expected inside the archive
        url: Archive URL
        member: Path of the executable inside the archive (defaults to name)
    """

    async def install() -> bool:
        archive_name = url.rsplit("/", 1)[-1]
        archive = tools.path(archive_name)
        staging = tools.path(f".{name}-extract")
        try:
            logger.info("downloading %s", url)
            await download(url, archive)
            await asyncio.to_thread(extract_archive, archive, staging)
            source = staging / (member or exe(name))
            if not source.exists():
                logger.error("%s not found in %s", source.name, archive_name)
                return False
            binary = tools.path(exe(name))
            shutil.move(str(source), binary)
            if not IS_WINDOWS:
                make_executable(binary)
            return True
        finally:
            archive.unlink(missing_ok=True)
            shutil.rmtree(staging, ignore_errors=True)

    return install
