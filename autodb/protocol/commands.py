"""Schema-selection detection for frames sent after the handshake."""

from __future__ import annotations

from autodb.protocol.frames import Frame


COM_INIT_DB = 0x02
COM_QUERY = 0x03

_USE_PREFIX = b"use "
_NAME_TERMINATORS = (0x00, 0x3B, 0x20)  # NUL, ';', space


def schema_from_command(region: bytes) -> str:
    """Return the schema a client command selects, or ``""``.

    ``region`` is the frame payload: the command byte followed by its
    arguments. A region that starts with ``USE `` directly is matched too.
    """
    if not region:
        return ""
    command = region[0]
    if command == COM_INIT_DB:
        return _take_name(region, 1)
    if command == COM_QUERY:
        region = region[1:]
    if region[:4].lower() != _USE_PREFIX:
        return ""
    return _take_name(region, 4)


def classify_frame(frame: Frame) -> str:
    return schema_from_command(frame.payload)


def _take_name(region: bytes, start: int) -> str:
    end = start
    size = len(region)
    while end < size and region[end] not in _NAME_TERMINATORS:
        end += 1
    return region[start:end].decode("utf-8", errors="replace")
