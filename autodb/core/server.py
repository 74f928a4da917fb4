"""Threaded TCP listener that hands each client to a RelaySession."""

from __future__ import annotations

import socket
import socketserver
import threading
from typing import Any, Callable

from autodb.config.schema import AppConfig
from autodb.core.logging import EventLogger, get_logger
from autodb.core.provisioning import SchemaProvisioner
from autodb.core.relay import RelaySession, SchemaGate


class _ThreadingTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        *args: Any,
        max_concurrent_connections: int = 256,
        on_accept_error: Callable[[OSError], None] | None = None,
        **kwargs: Any,
    ) -> None:
        self._connection_slots = threading.BoundedSemaphore(max(1, int(max_concurrent_connections)))
        self._on_accept_error = on_accept_error
        super().__init__(*args, **kwargs)

    def get_request(self) -> tuple[socket.socket, Any]:
        try:
            return super().get_request()
        except OSError as exc:
            if self._on_accept_error is not None:
                self._on_accept_error(exc)
            raise

    def process_request(self, request: Any, client_address: Any) -> None:
        if not self._connection_slots.acquire(blocking=False):
            try:
                request.close()
            except OSError:
                pass
            return
        try:
            super().process_request(request, client_address)
        except Exception:
            self._connection_slots.release()
            raise

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._connection_slots.release()

    def shutdown_request(self, request: Any) -> None:
        # RelaySession closes its own sockets.
        if request.fileno() == -1:
            return
        super().shutdown_request(request)


class ProxyServer:
    def __init__(
        self,
        config: AppConfig,
        *,
        provisioner: SchemaGate | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("autodb.server")
        self.event_logger = event_logger or EventLogger(
            logger=get_logger("autodb.relay"),
            service_name=config.logging.service_name,
        )
        if provisioner is None:
            provisioner = SchemaProvisioner(
                config.upstream,
                config.admin,
                serialize_per_name=config.provisioning.serialize_per_name,
                event_logger=EventLogger(
                    logger=get_logger("autodb.provisioning"),
                    service_name=config.logging.service_name,
                ),
            )
        self.provisioner = provisioner
        self._server: _ThreadingTCPServer | None = None
        self._thread: threading.Thread | None = None
        self._bound_host: str | None = None
        self._bound_port: int | None = None
        self.running = False

    @property
    def bound_endpoint(self) -> tuple[str, int] | None:
        if self._bound_host is None or self._bound_port is None:
            return None
        return (self._bound_host, self._bound_port)

    def start(self) -> None:
        self._bind()
        assert self._server is not None
        self._thread = threading.Thread(target=self._server.serve_forever, name="autodb-accept", daemon=True)
        self._thread.start()
        self.running = True
        self._emit_started()

    def stop(self) -> None:
        if self._server:
            if self._thread is not None:
                self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None
        if self.running:
            self.running = False
            self.event_logger.emit(message="proxy stopped", action="proxy_stop", event_type="end")

    def status(self) -> dict[str, Any]:
        endpoint = self.bound_endpoint
        return {
            "running": self.running,
            "listen": {
                "host": endpoint[0] if endpoint else self.config.proxy.listen_host,
                "port": endpoint[1] if endpoint else self.config.proxy.listen_port,
            },
            "upstream": self.config.upstream.address,
            "provisioning_enabled": self.config.provisioning.enabled,
            "max_concurrent_connections": self.config.proxy.max_concurrent_connections,
        }

    def _bind(self) -> None:
        proxy = self.config.proxy
        self._server = _ThreadingTCPServer(
            (proxy.listen_host, proxy.listen_port),
            self._build_handler(),
            max_concurrent_connections=proxy.max_concurrent_connections,
            on_accept_error=self._accept_failed,
        )
        self._bound_host = proxy.listen_host
        self._bound_port = int(self._server.server_address[1])

    def _emit_started(self) -> None:
        self.event_logger.emit(
            message="MySQL auto-database proxy started",
            action="proxy_start",
            event_type="start",
            upstream_address=self.config.upstream.address,
            payload={
                "host": self._bound_host,
                "port": self._bound_port,
                "admin_user": self.config.admin.user,
                "log_level": self.config.logging.level,
                "provisioning_enabled": self.config.provisioning.enabled,
            },
        )

    def _accept_failed(self, exc: OSError) -> None:
        self.event_logger.emit(
            message="failed to accept connection",
            action="accept_error",
            outcome="failure",
            error=exc,
            level="WARNING",
        )

    def _build_handler(self) -> type[socketserver.BaseRequestHandler]:
        proxy = self

        class RelayHandler(socketserver.BaseRequestHandler):
            def handle(self) -> None:
                proxy._handle_client(self.request, self.client_address)

        return RelayHandler

    def _handle_client(self, conn: socket.socket, client_address: tuple[str, int]) -> None:
        session = RelaySession(
            conn,
            client_address,
            self.config,
            self.provisioner,
            event_logger=self.event_logger,
        )
        try:
            session.run()
        except Exception:
            self.logger.exception(
                "unhandled relay error",
                extra={"event_action": "session_failed", "client_address": session.client_address},
            )
            session.close()
