from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

import pymysql.err
import pytest


# The packaged defaults read these; keep default-config test runs deterministic.
for _name in (
    "AUTODB_ENVIRONMENT",
    "PROXY_HOST",
    "PROXY_PORT",
    "MYSQL_HOST",
    "MYSQL_PORT",
    "MYSQL_USER",
    "MYSQL_PASSWORD",
    "LOG_LEVEL",
):
    os.environ.pop(_name, None)


class FakeCursor:
    def __init__(self, server: "FakeMySQLServer") -> None:
        self._server = server
        self._row: tuple[int] | None = None

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def execute(self, sql: str, params: tuple[Any, ...] | None = None) -> int:
        server = self._server
        with server.lock:
            server.statements.append((sql, params))
        if sql.startswith("SELECT COUNT(*)"):
            if server.check_error is not None:
                raise server.check_error
            name = str(params[0]) if params else ""
            with server.lock:
                exists = name in server.schemas
            if server.check_delay_seconds:
                time.sleep(server.check_delay_seconds)
            self._row = (1 if exists else 0,)
            return 1
        if sql.startswith("CREATE DATABASE"):
            if server.create_error is not None:
                raise server.create_error
            name = sql.removeprefix("CREATE DATABASE ").strip().strip("`")
            with server.lock:
                if name in server.schemas:
                    raise pymysql.err.ProgrammingError(1007, f"Can't create database '{name}'; database exists")
                server.schemas.add(name)
            return 1
        raise AssertionError(f"unexpected statement: {sql}")

    def fetchone(self) -> tuple[int] | None:
        return self._row


class FakeConnection:
    def __init__(self, server: "FakeMySQLServer") -> None:
        self._server = server
        self.closed = 0

    def ping(self, reconnect: bool = True) -> None:
        assert reconnect is False
        if self._server.ping_error is not None:
            raise self._server.ping_error

    def cursor(self) -> FakeCursor:
        return FakeCursor(self._server)

    def close(self) -> None:
        self.closed += 1
        with self._server.lock:
            self._server.closed_connections += 1


class FakeMySQLServer:
    """In-memory stand-in for the upstream's administrative interface."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.schemas: set[str] = set()
        self.statements: list[tuple[str, tuple[Any, ...] | None]] = []
        self.connect_calls: list[dict[str, Any]] = []
        self.connections: list[FakeConnection] = []
        self.closed_connections = 0
        self.connect_error: Exception | None = None
        self.ping_error: Exception | None = None
        self.check_error: Exception | None = None
        self.create_error: Exception | None = None
        self.check_delay_seconds = 0.0

    def connect(self, **kwargs: Any) -> FakeConnection:
        with self.lock:
            self.connect_calls.append(kwargs)
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(self)
        with self.lock:
            self.connections.append(connection)
        return connection

    @property
    def create_statements(self) -> list[str]:
        return [sql for sql, _ in self.statements if sql.startswith("CREATE DATABASE")]


@pytest.fixture
def fake_mysql() -> FakeMySQLServer:
    return FakeMySQLServer()


@pytest.fixture(autouse=True)
def _reset_autodb_loggers():
    yield
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger) or not (name == "autodb" or name.startswith("autodb.")):
            continue
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
        if hasattr(logger, "_autodb_configured"):
            delattr(logger, "_autodb_configured")
