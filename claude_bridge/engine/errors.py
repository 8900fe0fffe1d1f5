"""Exception hierarchy for the Claude bridge.

Boundary errors raised to callers. Failures inside an in-flight request
are reported through the stream as error events, not raised.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class NotInitializedError(BridgeError):
    """A request was made before transport selection ran."""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: session manager is not initialized "
            f"(call initialize() first)"
        )


class RequestInFlightError(BridgeError):
    """A second streaming request was started while one is running."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"A request is already in flight for session {session_id}"
        )


class TransportNotReadyError(BridgeError):
    """The transport selector has not been probed yet."""
    def __init__(self) -> None:
        super().__init__("Transport selector used before initialize()")


class TransportUnavailableError(BridgeError):
    """A transport failed its availability probe."""
    def __init__(self, transport: str, reason: str):
        self.transport = transport
        self.reason = reason
        super().__init__(f"Transport '{transport}' is unavailable: {reason}")


class TransportRuntimeError(BridgeError):
    """A transport failed while serving a request."""
    def __init__(self, transport: str, reason: str):
        self.transport = transport
        self.reason = reason
        super().__init__(f"Transport '{transport}' failed: {reason}")


class SessionNotFoundError(BridgeError):
    """No transcript exists for the requested session id."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ConfigError(BridgeError):
    """A configuration file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
