"""Backend transports: in-process SDK and CLI subprocess."""
from .base import Transport, TransportRequest
from .direct_transport import DirectTransport
from .selector import TransportMode, TransportSelector
from .subprocess_transport import SubprocessTransport

__all__ = [
    "Transport",
    "TransportRequest",
    "DirectTransport",
    "SubprocessTransport",
    "TransportMode",
    "TransportSelector",
]
