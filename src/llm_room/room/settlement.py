"""End-to-end handling of one guest prompt.

A request moves through RECEIVED -> ADMITTED -> FORWARDED and ends in
SETTLED, REJECTED or FAILED. The prompt is always recorded first. Host
offline, insufficient balance, an unreachable model, a failed payment and
unreadable stored balances all end as in-band messages rather than errors,
so a polling chat client keeps working. The ledger is only touched after a successful settlement
receipt exists, and never when forwarding failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import PaymentsConfig, PricingConfig, RoomConfig
from .errors import CorruptState, InsufficientFunds, InvalidRequest, UpstreamUnavailable
from .host import HostClaimManager
from .inference import InferenceClient, InferenceRequest, InferenceResult
from .keys import normalize_room_id
from .ledger import BalanceLedger
from .logger import EventLogger
from .messages import MessageLog
from .models import HostRecord, Message, MessageMeta
from .notify import RoomNotifier
from .payments import PaymentGateway, SettlementReceipt, build_payment_terms
from .presence import PresenceTracker
from .pricing import clamp_token_budget, estimate_charge, format_amount

MESSAGE_RESOURCE = "/api/room/message"

HOST_UNREACHABLE_TEXT = "Host model unreachable."
PAYMENT_INCOMPLETE_TEXT = "Payment was not completed. This response was not charged."
LEDGER_UNAVAILABLE_TEXT = "Payment settled, but the room balances could not be updated."


class RequestState(str, Enum):
    RECEIVED = "received"
    ADMITTED = "admitted"
    FORWARDED = "forwarded"
    SETTLED = "settled"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class PromptRequest:
    room_id: str | None
    sender: str | None
    text: str | None
    token_budget: int | float | None = None
    payment_header: str | None = None


@dataclass
class SettlementOutcome:
    state: RequestState
    prompt: Message
    response: Message | None = None
    system: Message | None = None
    receipt: SettlementReceipt | None = None
    estimated_micro_units: int | None = None
    charged_micro_units: int = 0
    trail: list[RequestState] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.trail or self.trail[-1] is not self.state:
            self.trail = [*self.trail, self.state]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": True,
            "state": self.state.value,
            "trail": [step.value for step in self.trail],
            "prompt": self.prompt.to_wire(),
            "chargedMicroUnits": self.charged_micro_units,
        }
        if self.response is not None:
            payload["response"] = self.response.to_wire()
        if self.system is not None:
            payload["system"] = self.system.to_wire()
        if self.estimated_micro_units is not None:
            payload["estimatedMicroUnits"] = self.estimated_micro_units
        if self.receipt is not None:
            payload["receipt"] = self.receipt.to_dict()
        return payload


class SettlementCoordinator:
    def __init__(
        self,
        *,
        claims: HostClaimManager,
        presence: PresenceTracker,
        ledger: BalanceLedger,
        messages: MessageLog,
        inference: InferenceClient,
        payments: PaymentGateway,
        room_config: RoomConfig,
        pricing_config: PricingConfig,
        payments_config: PaymentsConfig,
        notifier: RoomNotifier | None = None,
        logger: EventLogger | None = None,
    ) -> None:
        self.claims = claims
        self.presence = presence
        self.ledger = ledger
        self.messages = messages
        self.inference = inference
        self.payments = payments
        self.room_config = room_config
        self.pricing_config = pricing_config
        self.payments_config = payments_config
        self.notifier = notifier
        self.logger = logger

    def _log(self, event_type: str, data: dict[str, Any]) -> None:
        if self.logger is not None:
            self.logger.log(event_type, data)

    def _notify(self, room_id: str, event_type: str, **data: Any) -> None:
        if self.notifier is not None:
            self.notifier.publish(room_id, event_type, **data)

    def _append(self, room_id: str, message: Message) -> Message:
        self.messages.append(room_id, message)
        self._notify(room_id, "message_appended", messageId=message.id, kind=message.kind.value)
        return message

    def token_budget(self, raw: int | float | None) -> int:
        return clamp_token_budget(
            raw,
            default=self.pricing_config.default_token_budget,
            maximum=self.pricing_config.max_token_budget,
        )

    def quote(self, host: HostRecord, token_budget: int) -> int:
        return estimate_charge(token_budget, host.rate_unit_price, self.pricing_config.unit_block_size)

    def payment_terms(self, room_id: str | None, token_budget: int | float | None) -> dict[str, Any] | None:
        """402 terms for a prompt, or None when the room has no online host to pay."""
        room_id = normalize_room_id(room_id, self.room_config.default_room_id)
        host = self.claims.get_record(room_id)
        if host is None or not self.presence.is_online(host):
            return None
        return build_payment_terms(
            self.payments_config,
            amount=self.quote(host, self.token_budget(token_budget)),
            pay_to=self.payments_config.pay_to or host.recv_addr,
            resource=MESSAGE_RESOURCE,
        )

    def post_message(self, request: PromptRequest) -> SettlementOutcome:
        sender = (request.sender or "").strip()
        text = (request.text or "").strip()
        if not sender or not text:
            raise InvalidRequest("from and text required")

        room_id = normalize_room_id(request.room_id, self.room_config.default_room_id)
        budget = self.token_budget(request.token_budget)

        trail = [RequestState.RECEIVED]
        prompt = self._append(room_id, Message.prompt(room_id, sender, text))

        host = self.claims.get_record(room_id)
        if host is None or not self.presence.is_online(host):
            return SettlementOutcome(RequestState.REJECTED, prompt, trail=trail)

        estimate = self.quote(host, budget)
        try:
            self.ledger.require(room_id, sender, estimate)
        except InsufficientFunds as exc:
            balance = exc.details["available"]
            self._log(
                "admission_rejected",
                {"room_id": room_id, "payer": sender, "balance": balance, "estimate": estimate},
            )
            system = self._append(
                room_id,
                Message.system(
                    room_id,
                    f"Insufficient balance: {format_amount(balance)} available, "
                    f"{format_amount(estimate)} required.",
                    prompt_id=prompt.id,
                ),
            )
            return SettlementOutcome(
                RequestState.REJECTED, prompt, system=system, estimated_micro_units=estimate, trail=trail
            )

        trail.extend([RequestState.ADMITTED, RequestState.FORWARDED])
        try:
            result = self._forward(room_id, host, budget)
        except UpstreamUnavailable as exc:
            self._log(
                "upstream_unavailable",
                {"room_id": room_id, "payer": sender, "model_id": host.model_id, "error": exc.message},
            )
            system = self._append(room_id, Message.system(room_id, HOST_UNREACHABLE_TEXT, prompt_id=prompt.id))
            return SettlementOutcome(
                RequestState.FAILED, prompt, system=system, estimated_micro_units=estimate, trail=trail
            )

        return self._settle(room_id, request, sender, host, prompt, result, estimate, trail)

    def _forward(self, room_id: str, host: HostRecord, budget: int) -> InferenceResult:
        context = self.messages.context(
            room_id,
            window=self.room_config.context_window,
            limit=self.room_config.context_messages,
        )
        return self.inference.complete(
            InferenceRequest(
                endpoint=host.model_endpoint,
                model_id=host.model_id,
                max_output_tokens=budget,
                messages=context,
                token=host.model_token,
            )
        )

    def _settle(
        self,
        room_id: str,
        request: PromptRequest,
        sender: str,
        host: HostRecord,
        prompt: Message,
        result: InferenceResult,
        estimate: int,
        trail: list[RequestState],
    ) -> SettlementOutcome:
        terms = build_payment_terms(
            self.payments_config,
            amount=estimate,
            pay_to=self.payments_config.pay_to or host.recv_addr,
            resource=MESSAGE_RESOURCE,
        )
        receipt = self.payments.settle(
            payer=sender,
            pay_to=host.recv_addr,
            amount=estimate,
            payment_header=request.payment_header,
            requirements=terms["accepts"][0],
        )

        if not receipt.success:
            self._log(
                "settlement_failed",
                {"room_id": room_id, "payer": sender, "estimate": estimate, "error": receipt.error_reason},
            )
            response = self._append(
                room_id,
                Message.response(
                    room_id,
                    host.host_addr,
                    result.text,
                    prompt_id=prompt.id,
                    meta=MessageMeta(token_usage=result.token_usage, tokens_per_second=result.tokens_per_second),
                ),
            )
            system = self._append(room_id, Message.system(room_id, PAYMENT_INCOMPLETE_TEXT, prompt_id=prompt.id))
            return SettlementOutcome(
                RequestState.FAILED,
                prompt,
                response=response,
                system=system,
                receipt=receipt,
                estimated_micro_units=estimate,
                trail=trail,
            )

        charged = receipt.amount if receipt.amount is not None else estimate
        if charged > 0:
            try:
                balances = self.ledger.transfer(room_id, sender, host.recv_addr, charged)
            except CorruptState as exc:
                self._log(
                    "settlement_failed",
                    {
                        "room_id": room_id,
                        "payer": sender,
                        "estimate": estimate,
                        "transaction": receipt.transaction,
                        "error": exc.message,
                    },
                )
                response = self._append(
                    room_id,
                    Message.response(
                        room_id,
                        host.host_addr,
                        result.text,
                        prompt_id=prompt.id,
                        meta=MessageMeta(
                            payment_receipt=receipt.transaction,
                            token_usage=result.token_usage,
                            tokens_per_second=result.tokens_per_second,
                        ),
                    ),
                )
                system = self._append(room_id, Message.system(room_id, LEDGER_UNAVAILABLE_TEXT, prompt_id=prompt.id))
                return SettlementOutcome(
                    RequestState.FAILED,
                    prompt,
                    response=response,
                    system=system,
                    receipt=receipt,
                    estimated_micro_units=estimate,
                    trail=trail,
                )
            self._notify(room_id, "balances_changed", balances=balances)
        self._log(
            "settlement_committed",
            {
                "room_id": room_id,
                "payer": sender,
                "payee": host.recv_addr,
                "estimate": estimate,
                "charged": charged,
                "transaction": receipt.transaction,
            },
        )
        response = self._append(
            room_id,
            Message.response(
                room_id,
                host.host_addr,
                result.text,
                prompt_id=prompt.id,
                meta=MessageMeta(
                    payment_receipt=receipt.transaction,
                    charged_micro_units=charged,
                    token_usage=result.token_usage,
                    tokens_per_second=result.tokens_per_second,
                ),
            ),
        )
        return SettlementOutcome(
            RequestState.SETTLED,
            prompt,
            response=response,
            receipt=receipt,
            estimated_micro_units=estimate,
            charged_micro_units=charged,
            trail=trail,
        )
