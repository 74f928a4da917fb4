"""Structured ECS logging for proxy and provisioning events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import json
import logging
from pathlib import Path
from typing import Callable

from autodb.config.schema import LoggingConfig


def _strip_empty(value: object) -> object | None:
    if isinstance(value, dict):
        cleaned = {key: _strip_empty(item) for key, item in value.items()}
        return {key: item for key, item in cleaned.items() if item is not None} or None
    if isinstance(value, list):
        cleaned_list = [_strip_empty(item) for item in value]
        return [item for item in cleaned_list if item is not None] or None
    if value in ("", None):
        return None
    return value


class ECSJsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = "autodb") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds")
        payload: dict[str, object] = {
            "@timestamp": timestamp,
            "message": record.getMessage(),
            "log": {
                "level": record.levelname.lower(),
                "logger": record.name,
            },
            "service": {
                "name": getattr(record, "service_name", self.service_name),
            },
            "event": {
                "kind": "event",
                "category": getattr(record, "event_category", "network"),
                "action": getattr(record, "event_action", None),
                "type": getattr(record, "event_type", None),
                "outcome": getattr(record, "event_outcome", None),
            },
            "client": {
                "address": getattr(record, "client_address", None),
            },
            "destination": {
                "address": getattr(record, "upstream_address", None),
            },
            "error": {
                "message": getattr(record, "error_message", None),
                "type": getattr(record, "error_type", None),
            },
            "autodb": {
                "schema": getattr(record, "schema", None),
                "session_state": getattr(record, "session_state", None),
                "payload": getattr(record, "payload", None),
            },
        }
        if record.exc_info and not getattr(record, "error_message", None):
            payload["error"] = {"stack_trace": self.formatException(record.exc_info)}
        cleaned = _strip_empty(payload) or {}
        return json.dumps(cleaned, separators=(",", ":"))


class JsonFormatter(logging.Formatter):
    """Flat JSON lines: one top-level key per field."""

    _FIELDS = (
        ("event_action", "action"),
        ("event_outcome", "outcome"),
        ("client_address", "client_address"),
        ("upstream_address", "upstream_address"),
        ("schema", "schema"),
        ("session_state", "session_state"),
        ("error_message", "error"),
        ("error_type", "error_type"),
        ("payload", "payload"),
    )

    def __init__(self, service_name: str = "autodb") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "service": getattr(record, "service_name", self.service_name),
            "message": record.getMessage(),
        }
        for attribute, key in self._FIELDS:
            value = getattr(record, attribute, None)
            if value not in ("", None, {}):
                payload[key] = value
        if record.exc_info:
            payload["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), default=str)


def _formatter_for(config: LoggingConfig) -> logging.Formatter:
    if config.fmt == "json":
        return JsonFormatter(service_name=config.service_name)
    return ECSJsonFormatter(service_name=config.service_name)


def _sink_handler(config: LoggingConfig, formatter: logging.Formatter) -> logging.Handler:
    if config.sink == "file":
        file_path = config.file_path or "logs/autodb.log"
        log_file = Path(file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    return handler


def configure_logging(config: LoggingConfig, force: bool = False) -> None:
    root = logging.getLogger("autodb")
    if getattr(root, "_autodb_configured", False) and not force:
        return

    formatter = _formatter_for(config)
    root.setLevel(config.level)
    for existing in list(root.handlers):
        existing.close()
    root.handlers.clear()
    root.addHandler(_sink_handler(config, formatter))

    root.propagate = False
    setattr(root, "_autodb_configured", True)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if name.startswith("autodb"):
        parent = logging.getLogger("autodb")
        if parent.handlers:
            logger.setLevel(logging.NOTSET)
            logger.propagate = True
            return logger

    handler = logging.StreamHandler()
    handler.setFormatter(ECSJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


@dataclass(slots=True)
class EventLogger:
    logger: logging.Logger
    service_name: str = "autodb"
    publish_hook: Callable[[dict[str, object]], None] | None = None

    def emit(
        self,
        *,
        message: str,
        action: str,
        client_address: str | None = None,
        upstream_address: str | None = None,
        schema: str | None = None,
        session_state: str | None = None,
        outcome: str | None = None,
        event_type: str | None = None,
        error: BaseException | None = None,
        payload: dict[str, object] | None = None,
        level: str = "INFO",
    ) -> None:
        event_payload: dict[str, object] = {
            "service_name": self.service_name,
            "action": action,
            "event_type": event_type or "",
            "outcome": outcome or "",
            "client_address": client_address or "",
            "upstream_address": upstream_address or "",
            "schema": schema or "",
            "session_state": session_state or "",
            "error": str(error) if error is not None else "",
            "message": message,
            "payload": payload or {},
            "timestamp": datetime.now(UTC).isoformat(timespec="microseconds"),
            "level": level.upper(),
        }
        self.logger.log(
            getattr(logging, level.upper(), logging.INFO),
            message,
            extra={
                "service_name": event_payload["service_name"],
                "event_action": event_payload["action"],
                "event_category": "network",
                "event_type": event_payload["event_type"] or None,
                "event_outcome": event_payload["outcome"] or None,
                "client_address": event_payload["client_address"] or None,
                "upstream_address": event_payload["upstream_address"] or None,
                "schema": event_payload["schema"] or None,
                "session_state": event_payload["session_state"] or None,
                "error_message": event_payload["error"] or None,
                "error_type": type(error).__name__ if error is not None else None,
                "payload": event_payload["payload"],
            },
        )
        if self.publish_hook:
            try:
                self.publish_hook(event_payload)
            except Exception:
                return
