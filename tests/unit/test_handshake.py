from autodb.protocol.handshake import (
    CLIENT_CONNECT_WITH_DB,
    CLIENT_PLUGIN_AUTH,
    CLIENT_PROTOCOL_41,
    CLIENT_SECURE_CONNECTION,
    CLIENT_SSL,
    extract_schema_name,
    err_frame,
    ok_frame,
    parse_handshake_response,
)


_CAPABILITIES = CLIENT_PROTOCOL_41 | CLIENT_SECURE_CONNECTION | CLIENT_PLUGIN_AUTH | CLIENT_CONNECT_WITH_DB


def _fixed_fields(capabilities: int = _CAPABILITIES) -> bytes:
    return capabilities.to_bytes(4, "little") + (16 * 1024 * 1024).to_bytes(4, "little") + b"\x21" + (b"\x00" * 23)


def _login(
    *,
    username: bytes = b"root",
    auth: bytes = b"",
    trailing: tuple[bytes, ...] = (),
    tail: bytes = b"",
) -> bytes:
    payload = _fixed_fields() + username + b"\x00" + bytes([len(auth)]) + auth
    for field in trailing:
        payload += field + b"\x00"
    return payload + tail


def test_short_payload_has_no_schema() -> None:
    assert extract_schema_name(b"") == ""
    assert extract_schema_name(b"\x00" * 31) == ""


def test_schema_follows_empty_credential() -> None:
    assert extract_schema_name(_login(trailing=(b"myapp_db",))) == "myapp_db"


def test_auth_plugin_tag_is_skipped() -> None:
    payload = _login(trailing=(b"mysql_native_password", b"myapp_db"))
    assert extract_schema_name(payload) == "myapp_db"


def test_schema_with_scrambled_credential() -> None:
    scramble = bytes(range(1, 21))
    payload = _login(auth=scramble, trailing=(b"orders", b"caching_sha2_password"))
    assert extract_schema_name(payload) == "orders"


def test_schema_without_terminator_runs_to_frame_end() -> None:
    payload = _login(auth=b"\x01\x02", tail=b"billing")
    assert extract_schema_name(payload) == "billing"


def test_plugin_name_alone_yields_no_schema() -> None:
    assert extract_schema_name(_login(trailing=(b"caching_sha2_password",))) == ""


def test_connection_attributes_after_plugin_are_rejected() -> None:
    attributes = b"\x2a\x0c_client_name\x08libmysql\x04_pid\x0512345"
    payload = _login(trailing=(b"mysql_native_password",), tail=attributes)
    assert extract_schema_name(payload) == ""


def test_candidate_mentioning_client_attribute_is_rejected() -> None:
    assert extract_schema_name(_login(trailing=(b"x_client_version",))) == ""


def test_missing_username_terminator_yields_no_schema() -> None:
    assert extract_schema_name(_fixed_fields() + b"rootwithoutterminator") == ""


def test_credential_running_past_frame_end_yields_no_schema() -> None:
    payload = _fixed_fields() + b"root\x00" + b"\x14" + b"abc"
    assert extract_schema_name(payload) == ""


def test_pre_plugin_client_without_trailing_fields() -> None:
    payload = _fixed_fields() + b"root\x00" + b"\x03" + b"abc"
    assert extract_schema_name(payload) == ""
    assert extract_schema_name(_fixed_fields() + b"root\x00") == ""


def test_empty_trailing_field_yields_no_schema() -> None:
    assert extract_schema_name(_login(trailing=(b"",))) == ""


def test_parse_handshake_response_exposes_session_attributes() -> None:
    response = parse_handshake_response(_login(username=b"app", trailing=(b"svc_a", b"mysql_native_password")))
    assert response.username == "app"
    assert response.schema == "svc_a"
    assert response.capabilities == _CAPABILITIES
    assert response.max_packet_size == 16 * 1024 * 1024
    assert response.charset == 0x21
    assert response.ssl_request is False


def test_parse_handshake_response_tolerates_garbage() -> None:
    response = parse_handshake_response(b"\xff\xfe")
    assert response.schema == ""
    assert response.username == ""


def test_ssl_request_is_detected() -> None:
    response = parse_handshake_response(_fixed_fields(_CAPABILITIES | CLIENT_SSL))
    assert response.ssl_request is True
    assert response.schema == ""


def test_synthesized_ok_frame() -> None:
    frame = ok_frame(2)
    assert frame.sequence == 2
    assert frame.encode() == b"\x07\x00\x00\x02\x00\x00\x00\x02\x00\x00\x00"


def test_err_frame_layout() -> None:
    frame = err_frame(2, "nope")
    assert frame.payload.startswith(b"\xff")
    assert frame.payload[3:9] == b"#HY000"
    assert frame.payload.endswith(b"nope")
