"""Dataclasses for top-level application config."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ProxyConfig:
    listen_host: str = "0.0.0.0"
    listen_port: int = 3308
    max_concurrent_connections: int = 256
    handshake_timeout_seconds: float = 30.0
    upstream_reply_timeout_seconds: float = 30.0
    max_frame_bytes: int = 16_777_215


@dataclass(slots=True)
class UpstreamConfig:
    host: str = "localhost"
    port: int = 3306
    connect_timeout_seconds: float = 10.0

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(slots=True)
class AdminConfig:
    user: str = "root"
    password: str = "test"
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class ProvisioningConfig:
    enabled: bool = True
    serialize_per_name: bool = False


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    fmt: str = "ecs_json"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "autodb"


@dataclass(slots=True)
class AppConfig:
    environment: str = "development"
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL", "PANIC": "CRITICAL"}
VALID_LOG_FORMATS = {"json", "ecs_json"}
VALID_LOG_SINKS = {"stdout", "file"}


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name, {})
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"'{name}' must be an object")
    return raw


def _parse_bool_value(raw: Any, *, field_name: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"'{field_name}' must be a boolean")


def _parse_port(raw: Any, *, field_name: str, default: int, allow_zero: bool = False) -> int:
    if raw is None or raw == "":
        return default
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer port") from exc
    lower = 0 if allow_zero else 1
    if port < lower or port > 65535:
        raise ValueError(f"'{field_name}' must be between {lower} and 65535")
    return port


def _parse_positive_float(raw: Any, *, field_name: str, default: float) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if value <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return value


def normalize_log_level(raw: Any) -> str:
    level = str(raw or "INFO").strip().upper()
    level = LOG_LEVEL_ALIASES.get(level, level)
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{raw}'")
    return level


def parse_config(data: dict[str, Any]) -> AppConfig:
    environment = str(data.get("environment", "development")).strip() or "development"

    proxy_raw = _section(data, "proxy")
    max_connections_raw = proxy_raw.get("max_concurrent_connections", 256)
    try:
        max_connections = int(max_connections_raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("'proxy.max_concurrent_connections' must be an integer") from exc
    if max_connections <= 0:
        raise ValueError("'proxy.max_concurrent_connections' must be greater than zero")
    max_frame_bytes = int(proxy_raw.get("max_frame_bytes", 16_777_215))
    if max_frame_bytes <= 0 or max_frame_bytes > 16_777_215:
        raise ValueError("'proxy.max_frame_bytes' must be between 1 and 16777215")
    proxy = ProxyConfig(
        listen_host=str(proxy_raw.get("listen_host", "0.0.0.0")).strip() or "0.0.0.0",
        listen_port=_parse_port(
            proxy_raw.get("listen_port"),
            field_name="proxy.listen_port",
            default=3308,
            allow_zero=True,
        ),
        max_concurrent_connections=max_connections,
        handshake_timeout_seconds=_parse_positive_float(
            proxy_raw.get("handshake_timeout_seconds"),
            field_name="proxy.handshake_timeout_seconds",
            default=30.0,
        ),
        upstream_reply_timeout_seconds=_parse_positive_float(
            proxy_raw.get("upstream_reply_timeout_seconds"),
            field_name="proxy.upstream_reply_timeout_seconds",
            default=30.0,
        ),
        max_frame_bytes=max_frame_bytes,
    )

    upstream_raw = _section(data, "upstream")
    upstream_host = str(upstream_raw.get("host", "localhost")).strip()
    if not upstream_host:
        raise ValueError("'upstream.host' must be a non-empty string")
    upstream = UpstreamConfig(
        host=upstream_host,
        port=_parse_port(upstream_raw.get("port"), field_name="upstream.port", default=3306),
        connect_timeout_seconds=_parse_positive_float(
            upstream_raw.get("connect_timeout_seconds"),
            field_name="upstream.connect_timeout_seconds",
            default=10.0,
        ),
    )

    admin_raw = _section(data, "admin")
    admin_user = str(admin_raw.get("user", "root")).strip()
    if not admin_user:
        raise ValueError("'admin.user' must be a non-empty string")
    admin = AdminConfig(
        user=admin_user,
        password=str(admin_raw.get("password", "test") or ""),
        timeout_seconds=_parse_positive_float(
            admin_raw.get("timeout_seconds"),
            field_name="admin.timeout_seconds",
            default=10.0,
        ),
    )

    provisioning_raw = _section(data, "provisioning")
    provisioning = ProvisioningConfig(
        enabled=_parse_bool_value(
            provisioning_raw.get("enabled"),
            field_name="provisioning.enabled",
            default=True,
        ),
        serialize_per_name=_parse_bool_value(
            provisioning_raw.get("serialize_per_name"),
            field_name="provisioning.serialize_per_name",
            default=False,
        ),
    )

    logging_raw = _section(data, "logging")
    log_format = str(logging_raw.get("format", "ecs_json")).lower()
    if log_format not in VALID_LOG_FORMATS:
        raise ValueError(f"invalid log format '{log_format}'")
    sink = str(logging_raw.get("sink", "stdout")).lower()
    if sink not in VALID_LOG_SINKS:
        raise ValueError(f"invalid log sink '{sink}'")
    file_path = logging_raw.get("file_path")
    if sink == "file" and not file_path:
        raise ValueError("'logging.file_path' is required when sink is 'file'")
    logging_config = LoggingConfig(
        level=normalize_log_level(logging_raw.get("level", "INFO")),
        fmt=log_format,
        sink=sink,
        file_path=str(file_path) if file_path else None,
        service_name=str(logging_raw.get("service_name", "autodb")),
    )

    return AppConfig(
        environment=environment,
        proxy=proxy,
        upstream=upstream,
        admin=admin,
        provisioning=provisioning,
        logging=logging_config,
    )
