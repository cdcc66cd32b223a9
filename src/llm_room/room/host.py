"""Exclusive host seat per room."""

from __future__ import annotations

import time
from typing import Callable

from .errors import ClaimBusy, CorruptState, HostMismatch, RoomConflict
from .keys import resolve_room
from .lease import Lease, new_holder_id
from .logger import EventLogger
from .models import HostRecord
from .notify import RoomNotifier
from .store import KeyValueStore


def is_expired(record: HostRecord, now_ms: int, ttl_seconds: float) -> bool:
    return now_ms - record.last_seen_at > ttl_seconds * 1000


def is_online(record: HostRecord | None, now_ms: int, ttl_seconds: float) -> bool:
    return record is not None and record.connected and not is_expired(record, now_ms, ttl_seconds)


class HostClaimManager:
    """Claims, reads and releases the single host record of a room.

    The room lock only serializes the short read-check-write section of a
    claim. It is released before `claim` returns, win or lose; the host
    record itself carries the seat for the lifetime of the session.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        logger: EventLogger | None = None,
        notifier: RoomNotifier | None = None,
        lock_ttl_seconds: float = 10.0,
        host_ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.logger = logger
        self.notifier = notifier
        self.lease = Lease(store)
        self.lock_ttl_seconds = lock_ttl_seconds
        self.host_ttl_seconds = host_ttl_seconds
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _log(self, event_type: str, data: dict[str, object]) -> None:
        if self.logger is not None:
            self.logger.log(event_type, data)

    def get_record(self, room_id: str) -> HostRecord | None:
        keys = resolve_room(room_id)
        raw = self.store.get(keys.host)
        if raw is None:
            return None
        try:
            return HostRecord.from_json(raw)
        except CorruptState as exc:
            self._log("corrupt_state", {"room_id": keys.room_id, "record": "host", "error": exc.message})
            return None

    def write_record(self, room_id: str, record: HostRecord) -> None:
        self.store.set(resolve_room(room_id).host, record.to_json(), self.host_ttl_seconds)

    def claim(self, room_id: str, candidate: HostRecord) -> HostRecord:
        keys = resolve_room(room_id)
        holder_id = new_holder_id(f"lock_{candidate.host_addr}")
        with self.lease.hold(keys.lock, holder_id, self.lock_ttl_seconds) as acquired:
            if not acquired:
                self._log("claim_busy", {"room_id": keys.room_id, "host_addr": candidate.host_addr})
                raise ClaimBusy("Another host claim is in progress. Try again shortly.", room_id=keys.room_id)

            existing = self.get_record(keys.room_id)
            if existing is not None and not is_expired(existing, self.now_ms(), self.host_ttl_seconds):
                self._log(
                    "claim_conflict",
                    {"room_id": keys.room_id, "host_addr": candidate.host_addr, "holder": existing.host_addr},
                )
                raise RoomConflict("Room already has an active host.", room_id=keys.room_id)

            record = candidate.model_copy(update={"connected": True, "last_seen_at": self.now_ms()})
            self.write_record(keys.room_id, record)

        self._log(
            "host_claimed",
            {
                "room_id": keys.room_id,
                "host_addr": record.host_addr,
                "model_id": record.model_id,
                "rate_unit_price": record.rate_unit_price,
                "replaced_stale": existing is not None,
            },
        )
        if self.notifier is not None:
            self.notifier.publish(keys.room_id, "host_claimed", hostAddr=record.host_addr)
        return record

    def release(self, room_id: str, host_addr: str) -> bool:
        """Delete the room's host record. Returns False when there was none."""
        keys = resolve_room(room_id)
        record = self.get_record(keys.room_id)
        if record is None:
            return False
        if record.host_addr != host_addr:
            raise HostMismatch("Host mismatch.", room_id=keys.room_id)
        self.store.delete(keys.host)
        self._log("host_released", {"room_id": keys.room_id, "host_addr": host_addr})
        if self.notifier is not None:
            self.notifier.publish(keys.room_id, "host_released", hostAddr=host_addr)
        return True
