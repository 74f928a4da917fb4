"""CLI entry point for the autodb proxy."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import time
from typing import Any, Sequence

from autodb.config.loader import initialize_config, load_config
from autodb.config.schema import AppConfig
from autodb.core.doctor import run_diagnostics
from autodb.core.logging import EventLogger, configure_logging, get_logger
from autodb.core.provisioning import SchemaProvisioner
from autodb.core.server import ProxyServer
from autodb.errors import ProvisioningError


DEFAULT_CONFIG = Path(__file__).parent / "config" / "defaults.yml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autodb")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter config")
    init_parser.add_argument("--config", type=Path, default=Path("./config/autodb.yml"))
    init_parser.add_argument("--force", action="store_true")

    up_parser = subparsers.add_parser("up", help="Start the proxy")
    up_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    up_parser.add_argument(
        "--once",
        action="store_true",
        help="Start the proxy, print status, then stop immediately",
    )

    status_parser = subparsers.add_parser("status", help="Show effective configuration")
    status_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)

    ensure_parser = subparsers.add_parser("ensure", help="Create one database on the upstream if it is missing")
    ensure_parser.add_argument("schema", type=str)
    ensure_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)

    doctor_parser = subparsers.add_parser("doctor", help="Run configuration and readiness diagnostics")
    doctor_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    doctor_parser.add_argument(
        "--check-upstream",
        action="store_true",
        help="Open an admin connection to the upstream and ping it",
    )

    return parser


def _build_provisioner(config: AppConfig) -> SchemaProvisioner:
    return SchemaProvisioner(
        config.upstream,
        config.admin,
        serialize_per_name=config.provisioning.serialize_per_name,
        event_logger=EventLogger(
            logger=get_logger("autodb.provisioning"),
            service_name=config.logging.service_name,
        ),
    )


def cmd_init(config_path: Path, force: bool) -> int:
    initialize_config(config_path, force=force)
    print(f"wrote config: {config_path}")
    return 0


def cmd_up(config_path: Path, once: bool = False) -> int:
    config = load_config(config_path)
    configure_logging(config.logging)
    server = ProxyServer(config, provisioner=_build_provisioner(config))
    try:
        server.start()
        print(json.dumps(server.status(), indent=2))
        if once:
            return 0
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        return 0
    finally:
        server.stop()
    return 0


def cmd_status(config_path: Path) -> int:
    config = load_config(config_path)
    payload: dict[str, Any] = {
        "environment": config.environment,
        "proxy": {
            "listen_host": config.proxy.listen_host,
            "listen_port": config.proxy.listen_port,
            "max_concurrent_connections": config.proxy.max_concurrent_connections,
            "handshake_timeout_seconds": config.proxy.handshake_timeout_seconds,
            "upstream_reply_timeout_seconds": config.proxy.upstream_reply_timeout_seconds,
        },
        "upstream": {
            "host": config.upstream.host,
            "port": config.upstream.port,
            "connect_timeout_seconds": config.upstream.connect_timeout_seconds,
        },
        "admin": {
            "user": config.admin.user,
            "password": "***" if config.admin.password else "",
            "timeout_seconds": config.admin.timeout_seconds,
        },
        "provisioning": {
            "enabled": config.provisioning.enabled,
            "serialize_per_name": config.provisioning.serialize_per_name,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.fmt,
            "sink": config.logging.sink,
        },
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_ensure(config_path: Path, schema: str) -> int:
    config = load_config(config_path)
    configure_logging(config.logging)
    provisioner = _build_provisioner(config)
    try:
        created = provisioner.ensure_schema(schema)
    except ProvisioningError as exc:
        print(json.dumps({"ok": False, "schema": schema, "error": str(exc), "error_type": type(exc).__name__}, indent=2))
        return 1
    print(json.dumps({"ok": True, "schema": schema, "created": created}, indent=2))
    return 0


def cmd_doctor(config_path: Path, *, check_upstream: bool) -> int:
    config = load_config(config_path)
    report = run_diagnostics(config, check_upstream=check_upstream)
    print(json.dumps(report, indent=2))
    return 0 if bool(report.get("ok")) else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args.config, args.force)
    if args.command == "up":
        return cmd_up(args.config, once=args.once)
    if args.command == "status":
        return cmd_status(args.config)
    if args.command == "ensure":
        return cmd_ensure(args.config, args.schema)
    if args.command == "doctor":
        return cmd_doctor(args.config, check_upstream=args.check_upstream)

    parser.error(f"unknown command: {args.command}")
    return 2
