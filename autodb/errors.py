"""Error taxonomy shared by the frame codec, relay and provisioning gate."""

from __future__ import annotations


class AutoDBError(RuntimeError):
    pass


class TransportError(AutoDBError):
    pass


class ShortRead(TransportError):
    def __init__(self, expected: int, received: int, *, stage: str = "payload") -> None:
        super().__init__(f"stream closed while reading frame {stage}: expected {expected} bytes, got {received}")
        self.expected = expected
        self.received = received
        self.stage = stage

    @property
    def at_boundary(self) -> bool:
        """True when the stream ended cleanly between two frames."""
        return self.stage == "header" and self.received == 0


class FrameTimeout(TransportError):
    def __init__(self, message: str, *, received: int = 0) -> None:
        super().__init__(message)
        self.received = received


class WriteFailed(TransportError):
    pass


class FrameTooLarge(TransportError):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"frame length {length} exceeds limit {limit}")
        self.length = length
        self.limit = limit


class UnsupportedHandshake(AutoDBError):
    pass


class ProvisioningError(AutoDBError):
    def __init__(self, message: str, *, schema: str = "") -> None:
        super().__init__(message)
        self.schema = schema


class InvalidSchemaName(ProvisioningError):
    pass


class UpstreamUnreachable(ProvisioningError):
    pass


class SchemaCheckFailed(ProvisioningError):
    pass


class SchemaCreateFailed(ProvisioningError):
    pass
