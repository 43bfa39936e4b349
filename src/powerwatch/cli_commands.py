"""
CLI command handlers for PowerWatch.

Implements each CLI subcommand with error handling and output
formatting.
"""

from __future__ import annotations

import argparse
import json
import signal
import threading
from typing import Any

import yaml

from powerwatch.auth import JWTConfig, JWTError, JWTManager
from powerwatch.cache import CacheManager, create_engine
from powerwatch.config import ConfigurationError, GatewayConfiguration, load_config
from powerwatch.observability import get_logger
from powerwatch.web.handlers import build_summary

logger = get_logger("cli")


def _load(args: argparse.Namespace) -> GatewayConfiguration:
    return load_config(getattr(args, "config", None))


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the API gateway until interrupted.

    Returns:
        Exit code
    """
    from powerwatch.context import AppContext
    from powerwatch.web import GatewayServer

    try:
        config = _load(args)
        if args.host:
            config.server.host = args.host
        if args.port is not None:
            config.server.port = args.port
        if args.no_refresh_on_startup:
            config.cache.refresh_on_startup = False

        context = AppContext.from_config(config)
    except (ConfigurationError, JWTError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    server = GatewayServer(context)

    # serve_forever only exits on shutdown(), which must come from another thread
    def handle_sigterm(signum: int, frame: Any) -> None:
        threading.Thread(target=server.stop, daemon=True).start()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, handle_sigterm)

    context.start()
    try:
        print("PowerWatch API Gateway")
        print(f"  URL: {server.url}")
        print(f"  Authentication: {'enabled' if config.auth.enabled else 'DISABLED'}")
        print("  Press Ctrl+C to stop")
        print()
        server.start()
    except KeyboardInterrupt:
        print("\nGateway stopped.")
    except OSError as e:
        logger.error("Gateway failed to start", error=str(e))
        print(f"Error: {e}")
        return 1
    finally:
        context.stop()
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    """
    Run one assessment and print the resulting summary.

    Returns:
        Exit code (0 success, 1 error)
    """
    try:
        config = _load(args)
        engine = create_engine(config.engine)
    except (ConfigurationError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    cache = CacheManager(
        engine=engine,
        ttl_seconds=config.cache.ttl_seconds,
        engine_timeout=config.cache.engine_timeout_seconds,
        environment_filter=config.engine.environment_filter or None,
    )
    result = cache.refresh_snapshot(force=True)
    if not result.success:
        print(f"Error: assessment failed: {result.error}")
        return 1

    summary = build_summary(cache.get_snapshot())

    if args.output == "json":
        print(json.dumps(summary, indent=2))
        return 0

    overview = summary["overview"]
    security = summary["security"]
    print(f"Assessment date: {overview['assessmentDate']}")
    print(f"Completed in {result.duration_seconds:.1f}s")
    print()
    print(f"  Environments: {overview['totalEnvironments']}")
    print(f"  Users:        {overview['totalUsers']}")
    print(f"  Connections:  {overview['totalConnections']}")
    print(f"  Flows:        {overview['totalFlows']}")
    print()
    print(f"  Findings: {security['totalFindings']} "
          f"(high {security['highRiskFindings']}, "
          f"medium {security['mediumRiskFindings']}, "
          f"low {security['lowRiskFindings']})")
    print(f"  Overall risk: {security['overallRiskLevel']} "
          f"(score {security['overallRiskScore']})")
    print()
    print("Recommendations:")
    for item in summary["recommendations"]:
        print(f"  [{item['priority']}] {item['recommendation']}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """
    Validate or show the effective configuration.

    Returns:
        Exit code (validate returns 1 when there are warnings)
    """
    try:
        config = _load(args)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    if args.action == "validate":
        warnings = config.validate()
        if not warnings:
            print("Configuration is valid.")
            return 0
        print(f"Configuration has {len(warnings)} warning(s):")
        for warning in warnings:
            print(f"  - {warning}")
        return 1

    data = config.to_dict(redact=not args.show_secrets)
    if args.format == "yaml":
        print(yaml.safe_dump(data, default_flow_style=False), end="")
    else:
        print(json.dumps(data, indent=2))
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    """
    Issue a signed bearer token.

    Returns:
        Exit code
    """
    secret = args.secret
    algorithm = "HS256"
    if not secret or args.config:
        try:
            config = _load(args)
        except ConfigurationError as e:
            print(f"Error: {e}")
            return 1
        secret = secret or config.auth.jwt_secret
        algorithm = config.auth.jwt_algorithm

    if not secret:
        print("Error: no signing secret; pass --secret or configure auth.jwt_secret")
        return 1

    permissions = [p.strip() for p in args.permissions.split(",") if p.strip()]
    try:
        manager = JWTManager(JWTConfig(secret_key=secret, algorithm=algorithm))
        token = manager.encode(
            subject=args.subject,
            permissions=permissions,
            expires_in=args.expires_in if args.expires_in > 0 else None,
        )
    except JWTError as e:
        print(f"Error: {e}")
        return 1

    print(token)
    return 0
