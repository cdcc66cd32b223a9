"""HTTP surface for room hosting, presence, balances and paid prompts."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..room.errors import InvalidRequest, PaymentRequired, RoomError
from ..room.messages import next_cursor
from ..room.payments import RECEIPT_HEADER, encode_receipt_header
from ..room.runtime import RoomRuntime
from ..room.settlement import PromptRequest
from .schemas import ClaimHostBody, HostActionBody, PostMessageBody


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


def create_app(runtime: RoomRuntime) -> FastAPI:
    """Create the room API bound to one process-wide runtime."""

    app = FastAPI(title="LLM Room", version="0.1.0")
    router = APIRouter(prefix="/api/room")

    @app.exception_handler(RoomError)
    async def room_error_handler(_request: Request, exc: RoomError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        error = InvalidRequest("Invalid request", detail=_validation_details(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.get("/health")
    def health() -> dict[str, Any]:
        return runtime.health()

    @app.get("/events")
    def events(
        limit: int = Query(default=100, ge=1, le=2000),
        event_type: str | None = Query(default=None, alias="type"),
        room_id: str | None = Query(default=None, alias="roomId"),
    ) -> dict[str, Any]:
        limit = min(limit, runtime.config.logging.recent_event_limit)
        if event_type is None and room_id is None:
            items = runtime.logger.read_recent(limit)
        else:
            items = runtime.logger.events_of(event_type, limit, room_id=room_id)
        return {"success": True, "events": items, "count": len(items)}

    @router.post("/claim-host")
    def claim_host(body: ClaimHostBody) -> dict[str, Any]:
        candidate = body.to_record(runtime.config.pricing.default_rate_per_block)
        record = runtime.claims.claim(runtime.room_id(body.room_id), candidate)
        return {"ok": True, "host": record.public_view()}

    @router.post("/heartbeat")
    def heartbeat(body: HostActionBody) -> dict[str, Any]:
        record = runtime.presence.heartbeat(runtime.room_id(body.room_id), body.host_addr)
        return {"ok": True, "host": record.public_view()}

    @router.post("/disconnect")
    def disconnect(body: HostActionBody) -> dict[str, Any]:
        record = runtime.presence.disconnect(runtime.room_id(body.room_id), body.host_addr)
        return {"ok": True, "host": record.public_view()}

    @router.post("/reconnect")
    def reconnect(body: HostActionBody) -> dict[str, Any]:
        record = runtime.presence.reconnect(runtime.room_id(body.room_id), body.host_addr)
        return {"ok": True, "host": record.public_view()}

    @router.post("/release-host")
    def release_host(body: HostActionBody) -> dict[str, Any]:
        released = runtime.claims.release(runtime.room_id(body.room_id), body.host_addr)
        return {"ok": True, "released": released}

    @router.get("/state")
    def room_state(room_id: str | None = Query(default=None, alias="roomId")) -> dict[str, Any]:
        state = runtime.presence.room_state(runtime.room_id(room_id))
        pricing = runtime.config.pricing
        room = runtime.config.room
        return {
            "ok": True,
            **state.to_dict(),
            "presence": {
                "heartbeatIntervalSeconds": room.heartbeat_interval_seconds,
                "hostTtlSeconds": room.host_ttl_seconds,
            },
            "pricing": {
                "unitBlockSize": pricing.unit_block_size,
                "defaultTokenBudget": pricing.default_token_budget,
                "maxTokenBudget": pricing.max_token_budget,
                "defaultGuestSeed": pricing.default_guest_seed,
            },
        }

    @router.post("/message")
    def post_message(
        body: PostMessageBody,
        response: Response,
        x_payment: str | None = Header(default=None),
    ) -> dict[str, Any]:
        structurally_valid = bool((body.sender or "").strip() and (body.text or "").strip())
        if runtime.config.payments.required and structurally_valid and not x_payment:
            terms = runtime.settlement.payment_terms(body.room_id, body.token_budget)
            if terms is not None:
                raise PaymentRequired("Payment required", terms)

        outcome = runtime.settlement.post_message(
            PromptRequest(
                room_id=body.room_id,
                sender=body.sender,
                text=body.text,
                token_budget=body.token_budget,
                payment_header=x_payment,
            )
        )
        if outcome.receipt is not None:
            response.headers[RECEIPT_HEADER] = encode_receipt_header(outcome.receipt)
        return outcome.to_dict()

    @router.get("/messages")
    def list_messages(
        room_id: str | None = Query(default=None, alias="roomId"),
        after: int = Query(default=0, ge=0),
        limit: int | None = Query(default=None, ge=1, le=1000),
    ) -> dict[str, Any]:
        items = runtime.messages.read(runtime.room_id(room_id), after=after, window=limit)
        return {
            "ok": True,
            "messages": [item.to_wire() for item in items],
            "cursor": next_cursor(items, after),
        }

    @router.get("/balance")
    def balance(
        room_id: str | None = Query(default=None, alias="roomId"),
        address: str | None = Query(default=None),
        addr: str | None = Query(default=None),
        seed: int | None = Query(default=None, ge=0),
    ) -> dict[str, Any]:
        resolved = (address or addr or "").strip()
        if not resolved:
            raise InvalidRequest("address required")
        value = runtime.ledger.get(runtime.room_id(room_id), resolved, seed=seed)
        return {"ok": True, "address": resolved, "balanceMicroUnits": value}

    app.include_router(router)
    return app
