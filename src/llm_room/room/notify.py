"""Post-commit notifications on each room's pub/sub channel."""

from __future__ import annotations

import json
from typing import Any

from .keys import resolve_room
from .store import KeyValueStore


class RoomNotifier:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def publish(self, room_id: str, event_type: str, **data: Any) -> int:
        keys = resolve_room(room_id)
        payload = {"type": event_type, "roomId": keys.room_id, **data}
        return self.store.publish(keys.channel, json.dumps(payload, ensure_ascii=True, default=str))
