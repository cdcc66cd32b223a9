"""Host liveness: heartbeats renew the host record's timestamp and TTL.

There is no sweeper. A host that stops sending heartbeats disappears when
the store expires its record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import HostMismatch, HostNotFound
from .host import HostClaimManager, is_online
from .keys import resolve_room
from .logger import EventLogger
from .models import HostRecord


@dataclass
class RoomState:
    room_id: str
    online: bool
    host: HostRecord | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "roomId": self.room_id,
            "online": self.online,
            "host": self.host.public_view() if self.host is not None else None,
        }


class PresenceTracker:
    def __init__(self, claims: HostClaimManager, *, logger: EventLogger | None = None) -> None:
        self.claims = claims
        self.logger = logger

    def _owned_record(self, room_id: str, host_addr: str) -> HostRecord:
        record = self.claims.get_record(room_id)
        if record is None:
            raise HostNotFound("No active host.", room_id=room_id)
        if record.host_addr != host_addr:
            raise HostMismatch("Host mismatch.", room_id=room_id)
        return record

    def heartbeat(self, room_id: str, host_addr: str) -> HostRecord:
        """Renew `last_seen_at` and the record TTL. `connected` is left as it is."""
        room_id = resolve_room(room_id).room_id
        record = self._owned_record(room_id, host_addr)
        updated = record.model_copy(update={"last_seen_at": self.claims.now_ms()})
        self.claims.write_record(room_id, updated)
        if self.logger is not None:
            self.logger.log("heartbeat", {"room_id": room_id, "host_addr": host_addr})
        return updated

    def _set_connected(self, room_id: str, host_addr: str, connected: bool) -> HostRecord:
        room_id = resolve_room(room_id).room_id
        record = self._owned_record(room_id, host_addr)
        updated = record.model_copy(update={"connected": connected, "last_seen_at": self.claims.now_ms()})
        self.claims.write_record(room_id, updated)
        event_type = "host_reconnected" if connected else "host_disconnected"
        if self.logger is not None:
            self.logger.log(event_type, {"room_id": room_id, "host_addr": host_addr})
        if self.claims.notifier is not None:
            self.claims.notifier.publish(room_id, event_type, hostAddr=host_addr)
        return updated

    def disconnect(self, room_id: str, host_addr: str) -> HostRecord:
        """Mark the host's model as unavailable while it keeps the seat."""
        return self._set_connected(room_id, host_addr, False)

    def reconnect(self, room_id: str, host_addr: str) -> HostRecord:
        return self._set_connected(room_id, host_addr, True)

    def is_online(self, record: HostRecord | None) -> bool:
        return is_online(record, self.claims.now_ms(), self.claims.host_ttl_seconds)

    def room_state(self, room_id: str) -> RoomState:
        room_id = resolve_room(room_id).room_id
        record = self.claims.get_record(room_id)
        return RoomState(room_id=room_id, online=self.is_online(record), host=record)
