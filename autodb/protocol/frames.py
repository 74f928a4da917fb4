"""Length-prefixed MySQL wire frames over a blocking socket."""

from __future__ import annotations

from dataclasses import dataclass
import socket
import time

from autodb.errors import FrameTimeout, FrameTooLarge, ShortRead, WriteFailed


HEADER_SIZE = 4
MAX_PAYLOAD_LENGTH = 0xFFFFFF


@dataclass(frozen=True, slots=True)
class Frame:
    sequence: int
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)

    def header(self) -> bytes:
        if self.length > MAX_PAYLOAD_LENGTH:
            raise FrameTooLarge(self.length, MAX_PAYLOAD_LENGTH)
        return self.length.to_bytes(3, "little") + bytes([self.sequence & 0xFF])

    def encode(self) -> bytes:
        return self.header() + self.payload


def decode_header(header: bytes) -> tuple[int, int]:
    """Return ``(length, sequence)`` for a 4-byte frame header."""
    if len(header) != HEADER_SIZE:
        raise ValueError(f"frame header must be {HEADER_SIZE} bytes, got {len(header)}")
    return (int.from_bytes(header[0:3], "little"), header[3])


def read_frame(
    conn: socket.socket,
    timeout: float | None = None,
    *,
    max_length: int = MAX_PAYLOAD_LENGTH,
) -> Frame:
    """Read exactly one frame.

    ``timeout`` is a deadline for the whole frame, header and payload together.
    When omitted the socket's own timeout applies to each receive.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    previous_timeout = conn.gettimeout()
    try:
        header = _recv_exact(conn, HEADER_SIZE, deadline=deadline, stage="header")
        length, sequence = decode_header(header)
        if length > max_length:
            raise FrameTooLarge(length, max_length)
        payload = _recv_exact(conn, length, deadline=deadline, stage="payload", consumed=HEADER_SIZE)
    finally:
        if deadline is not None:
            _restore_timeout(conn, previous_timeout)
    return Frame(sequence=sequence, payload=payload)


def write_frame(conn: socket.socket, frame: Frame) -> None:
    data = frame.encode()
    try:
        conn.sendall(data)
    except OSError as exc:
        raise WriteFailed(f"failed to write frame of {frame.length} bytes: {exc}") from exc


def _recv_exact(
    conn: socket.socket,
    size: int,
    *,
    deadline: float | None,
    stage: str,
    consumed: int = 0,
) -> bytes:
    """Receive exactly ``size`` bytes. ``consumed`` counts frame bytes read before this call."""
    data = bytearray()
    while len(data) < size:
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise FrameTimeout(f"deadline elapsed while reading frame {stage}", received=consumed + len(data))
            conn.settimeout(remaining)
        try:
            chunk = conn.recv(size - len(data))
        except TimeoutError as exc:
            raise FrameTimeout(f"timed out reading frame {stage}", received=consumed + len(data)) from exc
        except OSError as exc:
            raise ShortRead(size, len(data), stage=stage) from exc
        if not chunk:
            raise ShortRead(size, len(data), stage=stage)
        data.extend(chunk)
    return bytes(data)


def _restore_timeout(conn: socket.socket, value: float | None) -> None:
    try:
        conn.settimeout(value)
    except OSError:
        # Socket already closed by the peer handling code.
        return
