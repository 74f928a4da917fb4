"""Per-connection relay between one client and the upstream MySQL server."""

from __future__ import annotations

import socket
import threading
from typing import Protocol

from autodb.config.schema import AppConfig
from autodb.core.logging import EventLogger, get_logger
from autodb.errors import (
    AutoDBError,
    FrameTimeout,
    InvalidSchemaName,
    ProvisioningError,
    ShortRead,
    TransportError,
    UnsupportedHandshake,
)
from autodb.protocol.commands import classify_frame
from autodb.protocol.frames import Frame, read_frame, write_frame
from autodb.protocol.handshake import err_frame, ok_frame, parse_handshake_response


DIALING = "dialing"
GREETING_FORWARDED = "greeting_forwarded"
HANDSHAKE_GATED = "handshake_gated"
RELAYING = "relaying"
CLOSED = "closed"
FAILED = "failed"

_RAW_CHUNK_SIZE = 65536


class SchemaGate(Protocol):
    def ensure_schema(self, name: str) -> bool: ...


class RelaySession:
    """Runs one client connection through the handshake gate and then relays.

    The session owns both sockets. ``run`` returns once both relay directions
    have finished (or the handshake failed) and both sockets are closed.
    """

    def __init__(
        self,
        client: socket.socket,
        client_address: tuple[str, int],
        config: AppConfig,
        provisioner: SchemaGate | None,
        *,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.client = client
        self.client_address = f"{client_address[0]}:{client_address[1]}"
        self.config = config
        self.provisioner = provisioner if config.provisioning.enabled else None
        self.event_logger = event_logger or EventLogger(logger=get_logger("autodb.relay"))
        self.upstream: socket.socket | None = None
        self.upstream_address = config.upstream.address
        self.state = DIALING
        self.schema = ""
        self.frames_from_client = 0
        self.bytes_from_upstream = 0
        self._closed = False
        self._close_lock = threading.Lock()

    def run(self) -> str:
        self._emit("new connection", action="connection_open", event_type="start")
        try:
            self._dial()
            self._forward_greeting()
            self._gate_handshake()
        except (AutoDBError, OSError) as exc:
            self._fail(exc)
            self.close()
            return self.state
        self._relay()
        self.close()
        self.state = CLOSED
        self._emit(
            "connection closed",
            action="connection_close",
            event_type="end",
            outcome="success",
            payload={
                "frames_from_client": self.frames_from_client,
                "bytes_from_upstream": self.bytes_from_upstream,
            },
        )
        return self.state

    def _dial(self) -> None:
        upstream = self.config.upstream
        self.upstream = socket.create_connection(
            (upstream.host, upstream.port),
            timeout=upstream.connect_timeout_seconds,
        )
        io_timeout = self.config.proxy.handshake_timeout_seconds
        self.upstream.settimeout(io_timeout)
        self.client.settimeout(io_timeout)
        self._emit("connected to upstream", action="upstream_dial", outcome="success", level="DEBUG")

    def _forward_greeting(self) -> None:
        assert self.upstream is not None
        greeting = read_frame(self.upstream, max_length=self.config.proxy.max_frame_bytes)
        write_frame(self.client, greeting)
        self.state = GREETING_FORWARDED

    def _gate_handshake(self) -> None:
        assert self.upstream is not None
        handshake = read_frame(self.client, max_length=self.config.proxy.max_frame_bytes)
        self.state = HANDSHAKE_GATED
        response = parse_handshake_response(handshake.payload)
        if response.ssl_request:
            write_frame(self.client, err_frame(handshake.sequence + 1, "ssl mode unsupported by proxy"))
            raise UnsupportedHandshake("client requested TLS, which the proxy does not terminate")

        if response.schema:
            self.schema = response.schema
            self._emit("client requested database", action="handshake_schema")
            if self.provisioner is not None:
                self.provisioner.ensure_schema(response.schema)
                self._emit("database is ready", action="schema_ready", outcome="success")
        else:
            self._emit("no database specified in connection", action="handshake_schema", level="DEBUG")

        write_frame(self.upstream, handshake)
        self._forward_handshake_reply(handshake)
        self._emit("handshake completed", action="handshake_complete", outcome="success")

    def _forward_handshake_reply(self, handshake: Frame) -> None:
        assert self.upstream is not None
        try:
            reply = read_frame(
                self.upstream,
                timeout=self.config.proxy.upstream_reply_timeout_seconds,
                max_length=self.config.proxy.max_frame_bytes,
            )
        except FrameTimeout as exc:
            if exc.received:
                # Only a reply with no bytes read yet may be replaced by an OK.
                raise
            self._emit(
                "upstream did not answer handshake in time, acknowledging client",
                action="handshake_reply_timeout",
                outcome="unknown",
                level="WARNING",
            )
            write_frame(self.client, ok_frame(handshake.sequence + 1))
            return
        write_frame(self.client, reply)

    def _relay(self) -> None:
        assert self.upstream is not None
        self.state = RELAYING
        self.client.settimeout(None)
        self.upstream.settimeout(None)
        client_to_upstream = threading.Thread(
            target=self._pump_client,
            name=f"autodb-c2s-{self.client_address}",
            daemon=True,
        )
        client_to_upstream.start()
        self._pump_upstream()
        client_to_upstream.join()

    def _pump_client(self) -> None:
        assert self.upstream is not None
        max_length = self.config.proxy.max_frame_bytes
        try:
            while True:
                try:
                    frame = read_frame(self.client, max_length=max_length)
                except ShortRead as exc:
                    if not exc.at_boundary:
                        self._emit("client stream ended mid-frame", action="relay_read", error=exc, level="DEBUG")
                    return
                except TransportError as exc:
                    self._emit("client stream read failed", action="relay_read", error=exc, level="DEBUG")
                    return
                self.frames_from_client += 1
                name = classify_frame(frame)
                if name:
                    self._intercept_schema(name)
                try:
                    write_frame(self.upstream, frame)
                except TransportError:
                    return
        finally:
            self._shutdown_both()

    def _pump_upstream(self) -> None:
        assert self.upstream is not None
        try:
            while True:
                try:
                    data = self.upstream.recv(_RAW_CHUNK_SIZE)
                except OSError:
                    return
                if not data:
                    return
                try:
                    self.client.sendall(data)
                except OSError:
                    return
                self.bytes_from_upstream += len(data)
        finally:
            self._shutdown_both()

    def _intercept_schema(self, name: str) -> None:
        self.schema = name
        self._emit("client selected database", action="command_use_schema")
        if self.provisioner is None:
            return
        try:
            self.provisioner.ensure_schema(name)
        except Exception as exc:
            # The command still goes upstream; the server reports its own error.
            self._emit(
                "failed to provision database selected in session",
                action="provisioning_failed",
                outcome="failure",
                error=exc,
                level="ERROR",
            )

    def _fail(self, exc: BaseException) -> None:
        failed_in = self.state
        self.state = FAILED
        if isinstance(exc, InvalidSchemaName):
            action = "schema_rejected"
        elif isinstance(exc, ProvisioningError):
            action = "provisioning_failed"
        else:
            action = "session_failed"
        self._emit(
            "session failed",
            action=action,
            outcome="failure",
            error=exc,
            level="ERROR",
            payload={"failed_in": failed_in},
        )

    def _shutdown_both(self) -> None:
        for sock in (self.client, self.upstream):
            if sock is None:
                continue
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Already shut down by the other direction or reset by the peer.
                continue

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        for sock in (self.client, self.upstream):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError:
                continue

    def _emit(self, message: str, *, action: str, **kwargs: object) -> None:
        self.event_logger.emit(
            message=message,
            action=action,
            client_address=self.client_address,
            upstream_address=self.upstream_address,
            schema=self.schema or None,
            session_state=self.state,
            **kwargs,  # type: ignore[arg-type]
        )
