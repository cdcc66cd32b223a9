"""Per-room balance ledger in integer micro-units."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import CorruptState, InsufficientFunds
from .keys import resolve_room
from .logger import EventLogger
from .store import KeyValueStore


@dataclass
class BalanceLedger:
    store: KeyValueStore
    logger: EventLogger | None = None

    def _corrupt(self, room_id: str, **data: object) -> None:
        if self.logger is not None:
            self.logger.log("corrupt_state", {"room_id": room_id, "record": "balance", **data})

    def _parse(self, room_id: str, address: str, raw: str | None) -> int:
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            self._corrupt(room_id, address=address)
            return 0

    def get(self, room_id: str, address: str, seed: int | None = None) -> int:
        """Read a balance, seeding it atomically on first read when `seed` is given."""
        key = resolve_room(room_id).balances
        raw = self.store.hget(key, address)
        if raw is None and seed is not None:
            self.store.hsetnx(key, address, str(int(seed)))
            raw = self.store.hget(key, address)
        return self._parse(room_id, address, raw)

    def can_afford(self, room_id: str, address: str, amount: int) -> bool:
        return self.get(room_id, address) >= amount

    def require(self, room_id: str, address: str, amount: int) -> int:
        """Return the balance, or raise InsufficientFunds when it is below `amount`."""
        balance = self.get(room_id, address)
        if balance < amount:
            raise InsufficientFunds("Insufficient balance", available=balance, required=amount)
        return balance

    def adjust(self, room_id: str, address: str, delta: int) -> int:
        return self.store.hincrby(resolve_room(room_id).balances, address, int(delta))

    def transfer(self, room_id: str, payer: str, payee: str, amount: int) -> dict[str, int]:
        """Debit `payer` and credit `payee` in one atomic store call.

        A non-integer stored balance on either side rejects the whole
        transfer with CorruptState; neither side is changed.
        """
        if amount <= 0:
            raise ValueError("amount must be > 0")
        if payer == payee:
            return {payer: self.get(room_id, payer)}
        try:
            return self.store.hincrby_many(
                resolve_room(room_id).balances,
                {payer: -int(amount), payee: int(amount)},
            )
        except ValueError as exc:
            self._corrupt(room_id, payer=payer, payee=payee, error=str(exc))
            raise CorruptState("balance is not an integer", room_id=room_id) from exc
