"""Command-line interface for tabconsole.

Provides the main entry point for starting the console server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tabconsole",
        description="Multi-tab shell sessions over WebSocket",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/tabconsole.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the console server")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port")
    serve_parser.add_argument(
        "--static-dir", type=str, default=None,
        help="Directory with the browser client (served at /)",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the tabconsole CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from tabconsole.config.settings import load_settings
    from tabconsole.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        if args.host is not None:
            settings.server.host = args.host
        if args.port is not None:
            settings.server.port = args.port
        if args.static_dir is not None:
            settings.server.static_dir = args.static_dir

        from tabconsole.server.runner import serve

        logger.info("Starting console server")
        sys.exit(asyncio.run(serve(settings)))


if __name__ == "__main__":
    main()
