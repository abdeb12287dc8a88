"""Command-line interface for the OrgWatch auth server."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .log import enable_debug


if TYPE_CHECKING:
    from collections.abc import Sequence


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : sequence of str, optional
        Arguments to parse instead of ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="orgwatch",
        description="OrgWatch auth server and maintenance tools",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log login, token and sweep activity at DEBUG level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the auth server with uvicorn",
    )
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address (uses config default)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Port (uses config default)")

    # cleanup command
    subparsers.add_parser(
        "cleanup",
        help="Delete expired OAuth states and idle sessions once and print the counts",
    )

    args = parser.parse_args(argv)
    if args.debug:
        enable_debug()

    if args.command == "config":
        return handle_config(args)
    if args.command == "serve":
        return handle_serve(args)
    if args.command == "cleanup":
        return handle_cleanup(args)
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import OrgWatchSettings, _find_config_files

    if args.sources:
        files = _find_config_files()
        if not files:
            print("No configuration files found; using defaults and environment variables.")
        for path in files:
            print(path.resolve())
        return 0

    settings = OrgWatchSettings()
    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_serve(args: argparse.Namespace) -> int:
    """Handle the serve command."""
    import uvicorn

    from .config import get_settings
    from .server.app import create_app

    settings = get_settings()
    app = create_app(settings)
    # create_app applies the configured level; --debug overrides it
    if args.debug:
        enable_debug()
    uvicorn.run(
        app,
        host=args.host or settings.server.host,
        port=args.port or settings.server.port,
        log_level="debug" if args.debug else settings.server.log_level,
    )
    return 0


def handle_cleanup(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the cleanup command.

    Only meaningful with a shared backend; a memory backend is empty in a
    fresh process.
    """
    from redis.exceptions import RedisError

    from .config import get_settings
    from .exceptions import OrgWatchException
    from .server.app import build_janitor, build_stores

    settings = get_settings()
    if settings.deploy.state_backend == "memory":
        print("Warning: memory backend has no persisted state to clean up.", file=sys.stderr)

    async def _run() -> dict[str, int]:
        ledger, sessions = build_stores(settings)
        try:
            result = await build_janitor(settings, ledger, sessions).run()
        finally:
            for store in (ledger, sessions):
                close = getattr(store, "close", None)
                if close is not None:
                    await close()
        return result.to_dict()

    try:
        counts = asyncio.run(_run())
    except (OrgWatchException, RedisError, OSError) as exc:
        print(f"Error: cleanup failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(counts))
    return 0


if __name__ == "__main__":
    sys.exit(main())
