"""MySQL wire framing and the handshake/command inspection used by the relay."""

from .commands import classify_frame, schema_from_command
from .frames import Frame, read_frame, write_frame
from .handshake import HandshakeResponse, extract_schema_name, ok_frame, parse_handshake_response

__all__ = [
    "Frame",
    "HandshakeResponse",
    "classify_frame",
    "extract_schema_name",
    "ok_frame",
    "parse_handshake_response",
    "read_frame",
    "schema_from_command",
    "write_frame",
]
