"""Time-bound exclusive leases on top of the shared store."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator

from .store import KeyValueStore


def new_holder_id(prefix: str = "lease") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class Lease:
    """Set-if-absent lock with TTL; only the holder can release it early."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def acquire(self, key: str, holder_id: str, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        return self.store.set_if_absent(key, holder_id, ttl_seconds)

    def release(self, key: str, holder_id: str) -> bool:
        return self.store.delete_if_equals(key, holder_id)

    def holder(self, key: str) -> str | None:
        return self.store.get(key)

    @contextmanager
    def hold(self, key: str, holder_id: str, ttl_seconds: float) -> Iterator[bool]:
        """Yield whether the lease was acquired; release it on exit if so."""
        acquired = self.acquire(key, holder_id, ttl_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key, holder_id)
