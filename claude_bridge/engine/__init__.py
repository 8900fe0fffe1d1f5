"""Claude bridge: streaming access to Claude over the Agent SDK or the CLI."""
from .classify import detect_language, is_thinking_content
from .config import BridgeConfig
from .errors import (
    BridgeError,
    ConfigError,
    NotInitializedError,
    RequestInFlightError,
    SessionNotFoundError,
    TransportNotReadyError,
    TransportRuntimeError,
    TransportUnavailableError,
)
from .manager import SessionManager
from .sink import CollectingSink, StreamSink, fire_callback
from .stream_parser import LineBuffer, StreamJsonParser
from .transports import (
    DirectTransport,
    SubprocessTransport,
    Transport,
    TransportMode,
    TransportRequest,
    TransportSelector,
)

__all__ = [
    "BridgeConfig",
    "BridgeError",
    "CollectingSink",
    "ConfigError",
    "DirectTransport",
    "LineBuffer",
    "NotInitializedError",
    "RequestInFlightError",
    "SessionManager",
    "SessionNotFoundError",
    "StreamJsonParser",
    "StreamSink",
    "SubprocessTransport",
    "Transport",
    "TransportMode",
    "TransportNotReadyError",
    "TransportRequest",
    "TransportRuntimeError",
    "TransportSelector",
    "TransportUnavailableError",
    "detect_language",
    "fire_callback",
    "is_thinking_content",
]
