"""Client handshake-response parsing.

The schema field of a HandshakeResponse41 is not length tagged, and its
position depends on which capability flags the client negotiated. The scanner
here walks the payload once and gives up with an empty name whenever the
layout is not the one it expects; it never guesses.

Layout assumed::

    [32 bytes]  capability flags, max packet size, charset, reserved filler
    [NUL str]   username
    [1 + n]     auth response, one length byte then n bytes
    [NUL str]*  trailing text fields (schema and/or auth plugin name)
"""

from __future__ import annotations

from dataclasses import dataclass

from autodb.protocol.frames import Frame


FIXED_FIELDS_SIZE = 32

CLIENT_CONNECT_WITH_DB = 0x00000008
CLIENT_PROTOCOL_41 = 0x00000200
CLIENT_SSL = 0x00000800
CLIENT_SECURE_CONNECTION = 0x00008000
CLIENT_PLUGIN_AUTH = 0x00080000

AUTH_PLUGIN_NAMES = frozenset(
    {
        "mysql_native_password",
        "caching_sha2_password",
        "sha256_password",
    }
)

_ATTRIBUTE_BLOB_MARKERS = (b"\x0c", b"_client_")

OK_PAYLOAD = b"\x00\x00\x00\x02\x00\x00\x00"


@dataclass(frozen=True, slots=True)
class HandshakeResponse:
    capabilities: int = 0
    max_packet_size: int = 0
    charset: int = 0
    username: str = ""
    schema: str = ""
    ssl_request: bool = False


def parse_handshake_response(payload: bytes) -> HandshakeResponse:
    if len(payload) < FIXED_FIELDS_SIZE:
        return HandshakeResponse()
    capabilities = int.from_bytes(payload[0:4], "little")
    max_packet_size = int.from_bytes(payload[4:8], "little")
    charset = payload[8]
    username = ""
    username_end = payload.find(b"\x00", FIXED_FIELDS_SIZE)
    if username_end >= 0:
        username = payload[FIXED_FIELDS_SIZE:username_end].decode("utf-8", errors="replace")
    return HandshakeResponse(
        capabilities=capabilities,
        max_packet_size=max_packet_size,
        charset=charset,
        username=username,
        schema=extract_schema_name(payload),
        # An SSLRequest is the fixed block alone with CLIENT_SSL set.
        ssl_request=len(payload) == FIXED_FIELDS_SIZE and bool(capabilities & CLIENT_SSL),
    )


def extract_schema_name(payload: bytes) -> str:
    """Return the schema the client asked for, or ``""`` when unsure."""
    size = len(payload)
    if size < FIXED_FIELDS_SIZE:
        return ""

    username_end = payload.find(b"\x00", FIXED_FIELDS_SIZE)
    if username_end < 0:
        return ""
    pos = username_end + 1

    if pos >= size:
        return ""
    auth_length = payload[pos]
    pos += 1 + auth_length
    if pos > size:
        return ""
    if pos == size:
        # Pre-plugin clients stop after the auth response.
        return ""

    candidate, pos = _next_text_field(payload, pos)
    if candidate.decode("utf-8", errors="replace") in AUTH_PLUGIN_NAMES:
        if pos >= size:
            return ""
        candidate, pos = _next_text_field(payload, pos)

    if not candidate:
        return ""
    if any(marker in candidate for marker in _ATTRIBUTE_BLOB_MARKERS):
        return ""
    return candidate.decode("utf-8", errors="replace")


def _next_text_field(payload: bytes, pos: int) -> tuple[bytes, int]:
    """Return the field starting at ``pos`` and the offset just past its terminator."""
    end = payload.find(b"\x00", pos)
    if end < 0:
        return (payload[pos:], len(payload))
    return (payload[pos:end], end + 1)


def ok_frame(sequence: int) -> Frame:
    return Frame(sequence=sequence & 0xFF, payload=OK_PAYLOAD)


def err_frame(sequence: int, message: str, *, code: int = 1105, state: str = "HY000") -> Frame:
    payload = bytearray(b"\xff")
    payload.extend(code.to_bytes(2, "little"))
    payload.extend(b"#")
    payload.extend(state.encode("ascii")[:5].ljust(5, b"0"))
    payload.extend(message.encode("utf-8", errors="replace"))
    return Frame(sequence=sequence & 0xFF, payload=bytes(payload))
