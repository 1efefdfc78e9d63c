"""
Command-line entry point for poking at language servers.

    python main.py diagnostics src/app.ts
    python main.py symbols Handler --cwd ~/code/service
    python main.py hover main.go 12 4
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from config import get_working_directory, load_config
from core.logging_config import setup_logging
from lsp import (
    LSPManager,
    Workspace,
    find_project_root,
    lsp_diagnostics,
    lsp_hover,
    lsp_workspace_symbols,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--cwd", default=None, help="Working directory (default: WORKING_DIR or cwd)")
    common.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")

    parser = argparse.ArgumentParser(description="Language-server bridge")
    commands = parser.add_subparsers(dest="command", required=True)

    diagnostics = commands.add_parser("diagnostics", parents=[common], help="Diagnostics for a file")
    diagnostics.add_argument("file")

    symbols = commands.add_parser("symbols", parents=[common], help="Workspace symbol search")
    symbols.add_argument("query")

    hover = commands.add_parser("hover", parents=[common], help="Hover at a 0-based position")
    hover.add_argument("file")
    hover.add_argument("line", type=int)
    hover.add_argument("character", type=int)

    return parser


async def run(args: argparse.Namespace) -> int:
    cwd = Path(args.cwd or get_working_directory()).resolve()
    root = find_project_root(cwd)
    config = load_config(root)
    workspace = Workspace.create(cwd, config, root=root)
    logger.info("Workspace root: %s", workspace.root)

    async with LSPManager(workspace, config.lsp) as manager:
        if args.command == "diagnostics":
            result = await lsp_diagnostics(manager, args.file)
            if result["success"]:
                print(result["output"])
        elif args.command == "symbols":
            result = await lsp_workspace_symbols(manager, args.query)
            if result["success"]:
                print(json.dumps(result["symbols"], indent=2))
        else:
            result = await lsp_hover(manager, args.file, args.line, args.character)
            if result["success"]:
                print(json.dumps(result["results"], indent=2))

    if not result["success"]:
        logger.error("%s", result["error"])
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
