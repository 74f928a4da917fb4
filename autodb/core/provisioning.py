"""Schema-name validation and the create-if-absent provisioning gate."""

from __future__ import annotations

import re
import threading
from typing import Any, Callable

import pymysql
import pymysql.err

from autodb.config.schema import AdminConfig, UpstreamConfig
from autodb.core.logging import EventLogger, get_logger
from autodb.errors import (
    InvalidSchemaName,
    SchemaCheckFailed,
    SchemaCreateFailed,
    UpstreamUnreachable,
)


SCHEMA_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
RESERVED_SCHEMA_FRAGMENTS = ("information_schema", "mysql", "performance_schema", "sys")

SCHEMA_EXISTS_QUERY = "SELECT COUNT(*) FROM INFORMATION_SCHEMA.SCHEMATA WHERE SCHEMA_NAME = %s"

_ER_DB_CREATE_EXISTS = 1007


def validate_schema_name(name: str) -> str:
    if not name:
        raise InvalidSchemaName("database name cannot be empty", schema=name)
    lowered = name.lower()
    for fragment in RESERVED_SCHEMA_FRAGMENTS:
        if fragment in lowered:
            raise InvalidSchemaName(f"database name '{name}' is not allowed", schema=name)
    if not SCHEMA_NAME_PATTERN.fullmatch(name):
        raise InvalidSchemaName(f"database name '{name}' contains invalid characters", schema=name)
    return name


def quote_identifier(name: str) -> str:
    """Back-tick quote an already validated name for use in DDL."""
    return "`" + name.replace("`", "``") + "`"


class _NameLocks:
    """Lazily created lock per schema name."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_name(self, name: str) -> threading.Lock:
        key = name.lower()
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class SchemaProvisioner:
    """Ensures a schema exists on the upstream server.

    Every call opens its own administrative connection and closes it before
    returning. Nothing is pooled or cached between calls, so two sessions
    asking for the same new schema at once may both try to create it; the
    server's "already exists" answer is taken as success.
    """

    def __init__(
        self,
        upstream: UpstreamConfig,
        admin: AdminConfig,
        *,
        serialize_per_name: bool = False,
        connect: Callable[..., Any] = pymysql.connect,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.upstream = upstream
        self.admin = admin
        self._connect = connect
        self._name_locks = _NameLocks() if serialize_per_name else None
        self.event_logger = event_logger or EventLogger(logger=get_logger("autodb.provisioning"))

    def ensure_schema(self, name: str) -> bool:
        """Create ``name`` on the upstream if it is missing.

        Returns True when this call created the schema, False when it already
        existed.
        """
        validate_schema_name(name)
        if self._name_locks is None:
            return self._ensure(name)
        with self._name_locks.for_name(name):
            return self._ensure(name)

    def probe(self) -> None:
        """Open an administrative connection, ping it and close it."""
        connection = self._open()
        self._close(connection)

    def _ensure(self, name: str) -> bool:
        connection = self._open(schema=name)
        try:
            if self._schema_exists(connection, name):
                self.event_logger.emit(
                    message="database already exists",
                    action="schema_ready",
                    schema=name,
                    upstream_address=self.upstream.address,
                    outcome="success",
                    level="DEBUG",
                )
                return False
            created = self._create_schema(connection, name)
        finally:
            self._close(connection)
        if created:
            self.event_logger.emit(
                message="created database",
                action="schema_created",
                schema=name,
                upstream_address=self.upstream.address,
                event_type="creation",
                outcome="success",
            )
        return created

    def _open(self, *, schema: str = "") -> Any:
        timeout = self.admin.timeout_seconds
        try:
            connection = self._connect(
                host=self.upstream.host,
                port=self.upstream.port,
                user=self.admin.user,
                password=self.admin.password,
                connect_timeout=timeout,
                read_timeout=timeout,
                write_timeout=timeout,
                autocommit=True,
            )
        except Exception as exc:
            raise UpstreamUnreachable(
                f"failed to connect to MySQL at {self.upstream.address}: {exc}",
                schema=schema,
            ) from exc
        try:
            connection.ping(reconnect=False)
        except Exception as exc:
            self._close(connection)
            raise UpstreamUnreachable(
                f"failed to ping MySQL at {self.upstream.address}: {exc}",
                schema=schema,
            ) from exc
        return connection

    @staticmethod
    def _schema_exists(connection: Any, name: str) -> bool:
        try:
            with connection.cursor() as cursor:
                cursor.execute(SCHEMA_EXISTS_QUERY, (name,))
                row = cursor.fetchone()
        except (pymysql.err.MySQLError, OSError) as exc:
            raise SchemaCheckFailed(f"failed to check if database exists: {exc}", schema=name) from exc
        return bool(row and int(row[0]) > 0)

    @staticmethod
    def _create_schema(connection: Any, name: str) -> bool:
        statement = f"CREATE DATABASE {quote_identifier(name)}"
        try:
            with connection.cursor() as cursor:
                cursor.execute(statement)
        except pymysql.err.MySQLError as exc:
            if exc.args and exc.args[0] == _ER_DB_CREATE_EXISTS:
                # Lost a creation race with another session.
                return False
            raise SchemaCreateFailed(f"failed to create database {name}: {exc}", schema=name) from exc
        except OSError as exc:
            raise SchemaCreateFailed(f"failed to create database {name}: {exc}", schema=name) from exc
        return True

    @staticmethod
    def _close(connection: Any) -> None:
        try:
            connection.close()
        except (pymysql.err.MySQLError, OSError):
            # pymysql raises when closing an already closed connection.
            return
