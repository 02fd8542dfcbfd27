from .status_gate import GateConfigError, GateOutcome, StatusGate, start_gate
from .transport import HttpStatusReader, MalformedStatus, StatusSnapshot, WebSocketPushChannel

__all__ = [
    "GateConfigError",
    "GateOutcome",
    "HttpStatusReader",
    "MalformedStatus",
    "StatusGate",
    "StatusSnapshot",
    "WebSocketPushChannel",
    "start_gate",
]
