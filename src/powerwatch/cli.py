"""
PowerWatch CLI entry point.

This module provides the command-line interface for PowerWatch.
"""

from __future__ import annotations

import argparse
import sys

from powerwatch import __version__
from powerwatch.cli_commands import (
    cmd_config,
    cmd_refresh,
    cmd_serve,
    cmd_token,
)
from powerwatch.observability import configure_logging


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="powerwatch",
        description="PowerWatch - Power Platform assessment cache and API gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"powerwatch {__version__}",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )

    parser.add_argument(
        "--log-format",
        choices=["human", "json"],
        help="Log output format (default: POWERWATCH_LOG_FORMAT or human)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API gateway")
    serve_parser.add_argument(
        "--config",
        help="Configuration file (JSON or YAML; default: environment variables)",
    )
    serve_parser.add_argument(
        "--host",
        help="Host to bind to (overrides configuration)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (overrides configuration)",
    )
    serve_parser.add_argument(
        "--no-refresh-on-startup",
        action="store_true",
        help="Do not run an assessment when the gateway starts",
    )

    # refresh command
    refresh_parser = subparsers.add_parser(
        "refresh", help="Run one assessment and print the summary"
    )
    refresh_parser.add_argument(
        "--config",
        help="Configuration file (JSON or YAML; default: environment variables)",
    )
    refresh_parser.add_argument(
        "--output",
        choices=["json", "table"],
        default="table",
        help="Output format (default: table)",
    )

    # config command
    config_parser = subparsers.add_parser("config", help="Inspect configuration")
    config_parser.add_argument(
        "action",
        choices=["validate", "show"],
        help="validate: report problems; show: print the effective configuration",
    )
    config_parser.add_argument(
        "--config",
        help="Configuration file (JSON or YAML; default: environment variables)",
    )
    config_parser.add_argument(
        "--format",
        choices=["json", "yaml"],
        default="json",
        help="Output format for show (default: json)",
    )
    config_parser.add_argument(
        "--show-secrets",
        action="store_true",
        help="Include API keys and the JWT secret in show output",
    )

    # token command
    token_parser = subparsers.add_parser("token", help="Issue a signed bearer token")
    token_parser.add_argument(
        "--secret",
        help="Signing secret (default: jwt_secret from configuration)",
    )
    token_parser.add_argument(
        "--config",
        help="Configuration file providing the secret and algorithm",
    )
    token_parser.add_argument(
        "--subject",
        required=True,
        help="Principal name for the sub claim",
    )
    token_parser.add_argument(
        "--permissions",
        default="read",
        help="Comma-separated permissions (default: read)",
    )
    token_parser.add_argument(
        "--expires-in",
        type=int,
        default=3600,
        help="Lifetime in seconds; 0 issues a token without expiry (default: 3600)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbosity
    if args.verbose or args.log_format:
        configure_logging(
            level="DEBUG" if args.verbose else "INFO",
            format=args.log_format or "human",
        )

    if args.command is None:
        parser.print_help()
        return 0

    # Route to command handlers
    command_handlers = {
        "serve": cmd_serve,
        "refresh": cmd_refresh,
        "config": cmd_config,
        "token": cmd_token,
    }

    handler = command_handlers.get(args.command)
    if handler:
        return handler(args)

    print(f"Unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
