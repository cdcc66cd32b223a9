from __future__ import annotations

import base64
import json

import httpx
import pytest

from llm_room.config import PaymentsConfig
from llm_room.room.payments import (
    RECEIPT_HEADER,
    DemoPaymentGateway,
    FacilitatorPaymentGateway,
    SettlementReceipt,
    build_payment_terms,
    create_gateway,
    decode_payment_header,
    decode_receipt_header,
    encode_receipt_header,
)

REQUIREMENTS = {"scheme": "exact", "maxAmountRequired": "1000", "payTo": "0xrecv"}


def _b64(data: dict) -> str:
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def _gateway(handler) -> FacilitatorPaymentGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return FacilitatorPaymentGateway("https://facilitator.test/", client=client)


def test_receipt_header_decodes_what_it_encodes() -> None:
    receipt = SettlementReceipt(success=True, transaction="0xabc", amount=1000, network="aptos:2", payer="0xguest")
    header = encode_receipt_header(receipt)

    assert json.loads(base64.b64decode(header)) == {
        "success": True,
        "transaction": "0xabc",
        "amount": "1000",
        "network": "aptos:2",
        "payer": "0xguest",
    }
    assert decode_receipt_header(header) == receipt


def test_receipt_accepts_alternate_field_names() -> None:
    receipt = SettlementReceipt.from_dict({"success": False, "txHash": "0x1", "error": "expired", "amount": "n/a"})
    assert receipt.transaction == "0x1"
    assert receipt.error_reason == "expired"
    assert receipt.amount is None


def test_bad_headers_raise_value_error() -> None:
    with pytest.raises(ValueError):
        decode_payment_header("%%% not base64 %%%")
    with pytest.raises(ValueError):
        decode_payment_header(base64.b64encode(b"[1, 2]").decode("ascii"))
    with pytest.raises(ValueError):
        decode_receipt_header(base64.b64encode(b"not json").decode("ascii"))


def test_payment_terms_shape() -> None:
    config = PaymentsConfig(network="aptos:2", asset="0xusdc", max_timeout_seconds=30)
    terms = build_payment_terms(config, amount=1000, pay_to="0xrecv", resource="/api/room/message")

    assert terms["x402Version"] == 1
    assert "X-PAYMENT" in terms["error"]
    (accept,) = terms["accepts"]
    assert accept["network"] == "aptos:2"
    assert accept["asset"] == "0xusdc"
    assert accept["maxAmountRequired"] == "1000"
    assert accept["maxTimeoutSeconds"] == 30


def test_demo_gateway_settles_positive_amounts() -> None:
    gateway = DemoPaymentGateway()
    receipt = gateway.settle(payer="0xguest", pay_to="0xrecv", amount=1000)
    assert receipt.success
    assert receipt.amount == 1000
    assert receipt.transaction.startswith("demo_")
    assert len(receipt.transaction) == len("demo_") + 12

    failed = gateway.settle(payer="0xguest", pay_to="0xrecv", amount=0)
    assert not failed.success
    assert failed.error_reason == "Invalid amount"


def test_create_gateway_selects_backend() -> None:
    assert isinstance(create_gateway(PaymentsConfig()), DemoPaymentGateway)
    gateway = create_gateway(PaymentsConfig(gateway="facilitator"))
    try:
        assert isinstance(gateway, FacilitatorPaymentGateway)
    finally:
        gateway.close()


def test_facilitator_receipt_from_response_header() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        header = _b64({"success": True, "transaction": "0xsettled", "network": "aptos:2"})
        return httpx.Response(200, headers={RECEIPT_HEADER: header}, json={"ignored": True})

    gateway = _gateway(handler)
    receipt = gateway.settle(
        payer="0xguest",
        pay_to="0xrecv",
        amount=1000,
        payment_header=_b64({"signature": "0xsig"}),
        requirements=REQUIREMENTS,
    )

    assert seen["url"] == "https://facilitator.test/settle"
    assert seen["body"] == {
        "x402Version": 1,
        "paymentPayload": {"signature": "0xsig"},
        "paymentRequirements": REQUIREMENTS,
    }
    assert receipt.success
    assert receipt.transaction == "0xsettled"
    assert receipt.amount == 1000
    assert receipt.payer == "0xguest"


def test_facilitator_receipt_from_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "txHash": "0xbody", "amount": "750"})

    receipt = _gateway(handler).settle(
        payer="0xguest", pay_to="0xrecv", amount=1000, payment_header=_b64({"signature": "0xsig"})
    )
    assert receipt.success
    assert receipt.transaction == "0xbody"
    assert receipt.amount == 750


def test_facilitator_rejection_and_errors_are_failed_receipts() -> None:
    payment = _b64({"signature": "0xsig"})

    rejected = _gateway(lambda request: httpx.Response(402, json={"error": "nope"}))
    assert not rejected.settle(payer="a", pay_to="b", amount=1, payment_header=payment).success

    broken = _gateway(lambda request: httpx.Response(500, text="oops"))
    receipt = broken.settle(payer="a", pay_to="b", amount=1, payment_header=payment)
    assert not receipt.success
    assert "500" in receipt.error_reason

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    receipt = _gateway(unreachable).settle(payer="a", pay_to="b", amount=1, payment_header=payment)
    assert not receipt.success
    assert "unreachable" in receipt.error_reason

    declined = _gateway(lambda request: httpx.Response(200, json={"success": False, "errorReason": "expired"}))
    receipt = declined.settle(payer="a", pay_to="b", amount=1, payment_header=payment)
    assert not receipt.success
    assert receipt.amount is None
    assert receipt.error_reason == "expired"


def test_facilitator_requires_payment_header() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("facilitator must not be called")

    gateway = _gateway(handler)
    assert gateway.settle(payer="a", pay_to="b", amount=1).error_reason == "missing payment payload"
    assert not gateway.settle(payer="a", pay_to="b", amount=1, payment_header="***").success
