import logging
import threading

import pymysql.err
import pytest

from autodb.config.schema import AdminConfig, UpstreamConfig
from autodb.core.logging import EventLogger
from autodb.core.provisioning import (
    SCHEMA_EXISTS_QUERY,
    SchemaProvisioner,
    quote_identifier,
    validate_schema_name,
)
from autodb.errors import (
    InvalidSchemaName,
    SchemaCheckFailed,
    SchemaCreateFailed,
    UpstreamUnreachable,
)


def _provisioner(fake_mysql, **kwargs) -> SchemaProvisioner:
    return SchemaProvisioner(
        UpstreamConfig(host="db.internal", port=3306),
        AdminConfig(user="root", password="test", timeout_seconds=10.0),
        connect=fake_mysql.connect,
        **kwargs,
    )


@pytest.mark.parametrize("name", ["myapp_db", "svc-a", "Orders2024", "a"])
def test_valid_schema_names(name: str) -> None:
    assert validate_schema_name(name) == name


@pytest.mark.parametrize(
    "name",
    [
        "",
        "information_schema",
        "my_mysql_copy",
        "Performance_Schema",
        "sysadmin",
        "bad name",
        "db;drop",
        "db`x",
        "dot.ted",
        "café",
    ],
)
def test_invalid_schema_names(name: str) -> None:
    with pytest.raises(InvalidSchemaName):
        validate_schema_name(name)


def test_quote_identifier_doubles_backticks() -> None:
    assert quote_identifier("svc_a") == "`svc_a`"
    assert quote_identifier("a`b") == "`a``b`"


def test_ensure_schema_creates_missing_database(fake_mysql) -> None:
    provisioner = _provisioner(fake_mysql)

    assert provisioner.ensure_schema("svc_a") is True

    assert "svc_a" in fake_mysql.schemas
    assert fake_mysql.statements[0] == (SCHEMA_EXISTS_QUERY, ("svc_a",))
    assert fake_mysql.create_statements == ["CREATE DATABASE `svc_a`"]
    assert fake_mysql.closed_connections == 1
    call = fake_mysql.connect_calls[0]
    assert call["host"] == "db.internal"
    assert call["port"] == 3306
    assert call["user"] == "root"
    assert call["password"] == "test"
    assert call["connect_timeout"] == 10.0
    assert call["read_timeout"] == 10.0
    assert call["write_timeout"] == 10.0


def test_ensure_schema_skips_existing_database(fake_mysql) -> None:
    fake_mysql.schemas.add("svc_a")
    provisioner = _provisioner(fake_mysql)

    assert provisioner.ensure_schema("svc_a") is False

    assert fake_mysql.create_statements == []
    assert fake_mysql.closed_connections == 1


def test_invalid_name_never_reaches_upstream(fake_mysql) -> None:
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(InvalidSchemaName):
        provisioner.ensure_schema("information_schema")

    assert fake_mysql.connect_calls == []


def test_connect_failure_is_upstream_unreachable(fake_mysql) -> None:
    fake_mysql.connect_error = pymysql.err.OperationalError(2003, "Can't connect to MySQL server")
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(UpstreamUnreachable) as excinfo:
        provisioner.ensure_schema("svc_a")

    assert excinfo.value.schema == "svc_a"
    assert "db.internal:3306" in str(excinfo.value)


def test_ping_failure_closes_connection(fake_mysql) -> None:
    fake_mysql.ping_error = pymysql.err.OperationalError(2013, "Lost connection")
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(UpstreamUnreachable):
        provisioner.ensure_schema("svc_a")

    assert fake_mysql.closed_connections == 1
    assert fake_mysql.statements == []


def test_unexpected_client_errors_are_upstream_unreachable(fake_mysql) -> None:
    fake_mysql.connect_error = RuntimeError("'cryptography' package is required for caching_sha2_password auth")
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(UpstreamUnreachable) as excinfo:
        provisioner.ensure_schema("svc_a")

    assert isinstance(excinfo.value.__cause__, RuntimeError)

    fake_mysql.connect_error = None
    fake_mysql.ping_error = RuntimeError("unexpected handshake state")
    with pytest.raises(UpstreamUnreachable):
        provisioner.ensure_schema("svc_a")
    assert fake_mysql.closed_connections == 1


def test_existence_check_failure(fake_mysql) -> None:
    fake_mysql.check_error = pymysql.err.OperationalError(1045, "Access denied")
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(SchemaCheckFailed):
        provisioner.ensure_schema("svc_a")

    assert fake_mysql.closed_connections == 1


def test_create_failure(fake_mysql) -> None:
    fake_mysql.create_error = pymysql.err.OperationalError(1044, "Access denied for user")
    provisioner = _provisioner(fake_mysql)

    with pytest.raises(SchemaCreateFailed):
        provisioner.ensure_schema("svc_a")

    assert fake_mysql.closed_connections == 1


def test_lost_creation_race_counts_as_ready(fake_mysql) -> None:
    fake_mysql.create_error = pymysql.err.ProgrammingError(1007, "Can't create database 'svc_a'; database exists")
    provisioner = _provisioner(fake_mysql)

    assert provisioner.ensure_schema("svc_a") is False


def test_serialized_provisioning_issues_one_create(fake_mysql) -> None:
    fake_mysql.check_delay_seconds = 0.05
    provisioner = _provisioner(fake_mysql, serialize_per_name=True)
    results: list[bool] = []

    def _worker() -> None:
        results.append(provisioner.ensure_schema("svc_shared"))

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert sorted(results) == [False, False, False, True]
    assert fake_mysql.create_statements == ["CREATE DATABASE `svc_shared`"]
    assert fake_mysql.closed_connections == 4


def test_probe_pings_and_closes(fake_mysql) -> None:
    provisioner = _provisioner(fake_mysql)

    provisioner.probe()

    assert len(fake_mysql.connect_calls) == 1
    assert fake_mysql.closed_connections == 1
    assert fake_mysql.statements == []


def test_creation_is_published_as_event(fake_mysql) -> None:
    published: list[dict[str, object]] = []
    emitter = EventLogger(
        logger=logging.getLogger("autodb.test.provisioning"),
        publish_hook=published.append,
    )
    provisioner = _provisioner(fake_mysql, event_logger=emitter)

    provisioner.ensure_schema("svc_a")
    provisioner.ensure_schema("svc_a")

    actions = [event["action"] for event in published]
    assert actions == ["schema_created", "schema_ready"]
    assert published[0]["schema"] == "svc_a"
    assert published[0]["upstream_address"] == "db.internal:3306"
