"""Append-only per-room message log with a cursor-based incremental feed."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import CorruptState
from .keys import resolve_room
from .logger import EventLogger
from .models import Message, MessageKind
from .store import KeyValueStore

_CONTEXT_ROLES = {
    MessageKind.PROMPT: "user",
    MessageKind.RESPONSE: "assistant",
}


@dataclass
class MessageLog:
    """Room history stored as a list of JSON entries.

    Reads only look at the newest `window` entries, so a consumer that falls
    further behind than the window misses the older entries.
    """

    store: KeyValueStore
    logger: EventLogger | None = None
    window: int = 200

    def append(self, room_id: str, message: Message) -> Message:
        self.store.rpush(resolve_room(room_id).messages, message.to_json())
        return message

    def _decode_tail(self, room_id: str, window: int) -> list[Message]:
        if window <= 0:
            return []
        raw_items = self.store.lrange(resolve_room(room_id).messages, -window, -1)
        decoded: list[Message] = []
        skipped = 0
        for raw in raw_items:
            try:
                decoded.append(Message.from_json(raw))
            except CorruptState:
                skipped += 1
        if skipped and self.logger is not None:
            self.logger.log("corrupt_state", {"room_id": room_id, "record": "message", "skipped": skipped})
        return decoded

    def read(self, room_id: str, after: int = 0, window: int | None = None) -> list[Message]:
        """Entries newer than `after`, oldest first."""
        items = self._decode_tail(room_id, self.window if window is None else window)
        fresh = [item for item in items if item.created_at > after]
        return sorted(fresh, key=lambda item: item.created_at)

    def context(self, room_id: str, *, window: int = 40, limit: int = 12) -> list[dict[str, str]]:
        """Recent prompt/response turns as chat messages for the model."""
        turns = [item for item in self._decode_tail(room_id, window) if item.kind in _CONTEXT_ROLES]
        turns = turns[-limit:] if limit > 0 else []
        return [{"role": _CONTEXT_ROLES[item.kind], "content": item.text} for item in turns]


def next_cursor(messages: list[Message], current: int = 0) -> int:
    return max([current, *(item.created_at for item in messages)])
