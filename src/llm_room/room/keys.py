"""Room id normalization and storage key derivation."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ROOM_ID = "global"


@dataclass(frozen=True)
class RoomKeys:
    room_id: str
    host: str
    lock: str
    messages: str
    balances: str
    channel: str


def normalize_room_id(raw: str | None, default: str = DEFAULT_ROOM_ID) -> str:
    trimmed = (raw or "").strip()
    return trimmed if trimmed else default


def resolve_room(raw: str | None, default: str = DEFAULT_ROOM_ID) -> RoomKeys:
    """Map a raw room id to the keys every component reads and writes."""
    room_id = normalize_room_id(raw, default)
    prefix = f"room:{room_id}"
    return RoomKeys(
        room_id=room_id,
        host=f"{prefix}:host",
        lock=f"{prefix}:lock",
        messages=f"{prefix}:messages",
        balances=f"{prefix}:balances",
        channel=f"{prefix}:events",
    )
