"""Payment challenge terms, settlement receipts and settlement gateways.

Paid requests follow the HTTP 402 pattern: a call without a payment artifact
is answered with machine-readable terms; the guest's wallet signs a payment
and retries with it in the `X-PAYMENT` header. After inference succeeds the
gateway settles that payment and returns a receipt, which is echoed back to
the guest base64-encoded in the `PAYMENT-RESPONSE` header.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import PaymentsConfig

X402_VERSION = 1
PAYMENT_HEADER = "X-PAYMENT"
RECEIPT_HEADER = "PAYMENT-RESPONSE"
LEGACY_RECEIPT_HEADER = "X-PAYMENT-RESPONSE"


@dataclass
class SettlementReceipt:
    success: bool
    transaction: str | None = None
    amount: int | None = None
    network: str | None = None
    payer: str | None = None
    error_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "transaction": self.transaction,
            "amount": str(self.amount) if self.amount is not None else None,
            "network": self.network,
            "payer": self.payer,
            "errorReason": self.error_reason,
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettlementReceipt":
        amount_raw = data.get("amount")
        try:
            amount = int(amount_raw) if amount_raw is not None else None
        except (TypeError, ValueError):
            amount = None
        transaction = data.get("transaction") or data.get("txHash")
        return cls(
            success=bool(data.get("success")),
            transaction=str(transaction) if transaction else None,
            amount=amount,
            network=data.get("network"),
            payer=data.get("payer"),
            error_reason=data.get("errorReason") or data.get("error"),
        )


def _b64_json_decode(value: str) -> Any:
    text = value.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("header is not base64-encoded JSON") from exc


def encode_receipt_header(receipt: SettlementReceipt) -> str:
    return base64.b64encode(json.dumps(receipt.to_dict()).encode("utf-8")).decode("ascii")


def decode_receipt_header(value: str) -> SettlementReceipt:
    data = _b64_json_decode(value)
    if not isinstance(data, dict):
        raise ValueError("receipt header must encode a JSON object")
    return SettlementReceipt.from_dict(data)


def decode_payment_header(value: str) -> dict[str, Any]:
    data = _b64_json_decode(value)
    if not isinstance(data, dict):
        raise ValueError("payment header must encode a JSON object")
    return data


def build_payment_terms(
    config: PaymentsConfig,
    *,
    amount: int,
    pay_to: str,
    resource: str,
    description: str = "Paid chat message",
) -> dict[str, Any]:
    return {
        "x402Version": X402_VERSION,
        "error": f"{PAYMENT_HEADER} header is required",
        "accepts": [
            {
                "scheme": "exact",
                "network": config.network,
                "maxAmountRequired": str(amount),
                "asset": config.asset,
                "payTo": pay_to,
                "resource": resource,
                "description": description,
                "mimeType": "application/json",
                "maxTimeoutSeconds": config.max_timeout_seconds,
                "extra": {"symbol": "USDC", "decimals": 6},
            }
        ],
    }


class PaymentGateway:
    def settle(
        self,
        *,
        payer: str,
        pay_to: str,
        amount: int,
        payment_header: str | None = None,
        requirements: dict[str, Any] | None = None,
    ) -> SettlementReceipt:
        raise NotImplementedError

    def close(self) -> None:
        return None


class DemoPaymentGateway(PaymentGateway):
    """Approves every positive amount with a synthetic transaction id."""

    def settle(
        self,
        *,
        payer: str,
        pay_to: str,
        amount: int,
        payment_header: str | None = None,
        requirements: dict[str, Any] | None = None,
    ) -> SettlementReceipt:
        if amount <= 0:
            return SettlementReceipt(success=False, payer=payer, error_reason="Invalid amount")
        return SettlementReceipt(
            success=True,
            transaction=f"demo_{uuid.uuid4().hex[:12]}",
            amount=amount,
            network="demo",
            payer=payer,
        )


class FacilitatorPaymentGateway(PaymentGateway):
    """Settles signed payments through an external x402 facilitator."""

    def __init__(
        self,
        facilitator_url: str,
        *,
        timeout_seconds: float = 20.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.facilitator_url = facilitator_url.strip().rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def settle(
        self,
        *,
        payer: str,
        pay_to: str,
        amount: int,
        payment_header: str | None = None,
        requirements: dict[str, Any] | None = None,
    ) -> SettlementReceipt:
        if not payment_header:
            return SettlementReceipt(success=False, payer=payer, error_reason="missing payment payload")
        try:
            payment_payload = decode_payment_header(payment_header)
        except ValueError as exc:
            return SettlementReceipt(success=False, payer=payer, error_reason=str(exc))

        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payment_payload,
            "paymentRequirements": requirements or {},
        }
        try:
            response = self._client.post(f"{self.facilitator_url}/settle", json=body)
        except httpx.HTTPError as exc:
            return SettlementReceipt(success=False, payer=payer, error_reason=f"facilitator unreachable: {exc}")

        if response.status_code == 402:
            return SettlementReceipt(success=False, payer=payer, error_reason="payment rejected by facilitator")

        header = response.headers.get(RECEIPT_HEADER) or response.headers.get(LEGACY_RECEIPT_HEADER)
        try:
            if header:
                receipt = decode_receipt_header(header)
            elif response.status_code >= 400:
                return SettlementReceipt(
                    success=False,
                    payer=payer,
                    error_reason=f"facilitator responded with {response.status_code}",
                )
            else:
                data = response.json()
                if not isinstance(data, dict):
                    raise ValueError("facilitator body must be a JSON object")
                receipt = SettlementReceipt.from_dict(data)
        except ValueError as exc:
            return SettlementReceipt(success=False, payer=payer, error_reason=f"undecodable receipt: {exc}")

        if receipt.success and receipt.amount is None:
            receipt.amount = amount
        if receipt.payer is None:
            receipt.payer = payer
        return receipt

    def close(self) -> None:
        self._client.close()


def create_gateway(config: PaymentsConfig) -> PaymentGateway:
    if config.gateway == "facilitator":
        return FacilitatorPaymentGateway(config.facilitator_url, timeout_seconds=config.timeout_seconds)
    return DemoPaymentGateway()
