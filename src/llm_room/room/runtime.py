"""Room runtime: wires the shared store and every coordination component."""

from __future__ import annotations

import time
from typing import Any, Callable

from ..config import AppConfig
from .host import HostClaimManager
from .inference import InferenceClient, LiteLLMInferenceClient
from .keys import normalize_room_id
from .ledger import BalanceLedger
from .logger import EventLogger
from .messages import MessageLog
from .notify import RoomNotifier
from .payments import PaymentGateway, create_gateway
from .presence import PresenceTracker
from .settlement import SettlementCoordinator
from .store import KeyValueStore, close_store, init_store


class RoomRuntime:
    """One per process. Components hold no per-request state of their own."""

    def __init__(
        self,
        config: AppConfig,
        *,
        store: KeyValueStore | None = None,
        inference: InferenceClient | None = None,
        payments: PaymentGateway | None = None,
        run_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._owns_store = store is None
        self.store = store if store is not None else init_store(config.store)

        self.logger = EventLogger(
            logs_dir=config.logging.logs_dir,
            run_id=run_id,
            event_file_name=config.logging.event_file_name,
        )
        self.notifier = RoomNotifier(self.store)
        self.claims = HostClaimManager(
            self.store,
            logger=self.logger,
            notifier=self.notifier,
            lock_ttl_seconds=config.room.lock_ttl_seconds,
            host_ttl_seconds=config.room.host_ttl_seconds,
            clock=clock,
        )
        self.presence = PresenceTracker(self.claims, logger=self.logger)
        self.ledger = BalanceLedger(self.store, self.logger)
        self.messages = MessageLog(self.store, self.logger, window=config.room.message_window)
        self.inference = inference or LiteLLMInferenceClient(
            timeout_seconds=config.inference.timeout_seconds,
            temperature=config.inference.temperature,
        )
        self.payments = payments or create_gateway(config.payments)
        self.settlement = SettlementCoordinator(
            claims=self.claims,
            presence=self.presence,
            ledger=self.ledger,
            messages=self.messages,
            inference=self.inference,
            payments=self.payments,
            room_config=config.room,
            pricing_config=config.pricing,
            payments_config=config.payments,
            notifier=self.notifier,
            logger=self.logger,
        )

        self.logger.log(
            "runtime_started",
            {
                "run_id": self.logger.run_id,
                "store_backend": self.store.backend_name,
                "payments_required": config.payments.required,
                "payment_gateway": config.payments.gateway,
            },
        )

    def room_id(self, raw: str | None) -> str:
        return normalize_room_id(raw, self.config.room.default_room_id)

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "store": self.store.backend_name,
            "store_reachable": self.store.ping(),
            "run_id": self.logger.run_id,
        }

    def close(self) -> None:
        self.payments.close()
        if self._owns_store:
            close_store()
