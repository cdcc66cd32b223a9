"""Room coordination core exports."""

from .errors import (
    ClaimBusy,
    CorruptState,
    HostMismatch,
    HostNotFound,
    InvalidRequest,
    PaymentRequired,
    RoomConflict,
    RoomError,
    UpstreamUnavailable,
)
from .keys import RoomKeys, normalize_room_id, resolve_room
from .models import HostRecord, Message, MessageKind, MessageMeta
from .runtime import RoomRuntime
from .settlement import PromptRequest, RequestState, SettlementOutcome

__all__ = [
    "ClaimBusy",
    "CorruptState",
    "HostMismatch",
    "HostNotFound",
    "HostRecord",
    "InvalidRequest",
    "Message",
    "MessageKind",
    "MessageMeta",
    "PaymentRequired",
    "PromptRequest",
    "RequestState",
    "RoomConflict",
    "RoomError",
    "RoomKeys",
    "RoomRuntime",
    "SettlementOutcome",
    "UpstreamUnavailable",
    "normalize_room_id",
    "resolve_room",
]
