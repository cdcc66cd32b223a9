"""Error taxonomy for room coordination."""

from __future__ import annotations

from typing import Any


class RoomError(Exception):
    """Base class for every failure the coordination core reports."""

    code = "room_error"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class InvalidRequest(RoomError):
    code = "invalid_request"
    status_code = 400


class RoomConflict(RoomError):
    """The room already has a live host. Callers must not retry."""

    code = "room_conflict"
    status_code = 409


class ClaimBusy(RoomError):
    """Another claim holds the room lock. Safe to retry."""

    code = "claim_busy"
    status_code = 429


class HostMismatch(RoomError):
    code = "host_mismatch"
    status_code = 403


class HostNotFound(RoomError):
    code = "host_not_found"
    status_code = 404


class UpstreamUnavailable(RoomError):
    """Inference backend timed out, failed, or returned nothing usable."""

    code = "upstream_unavailable"
    status_code = 502


class InsufficientFunds(RoomError):
    code = "insufficient_funds"
    status_code = 402


class CorruptState(RoomError):
    """A stored record could not be decoded."""

    code = "corrupt_state"
    status_code = 500


class PaymentRequired(RoomError):
    """Paid route called without a payment artifact."""

    code = "payment_required"
    status_code = 402

    def __init__(self, message: str, terms: dict[str, Any]) -> None:
        super().__init__(message)
        self.terms = terms

    def to_dict(self) -> dict[str, Any]:
        return dict(self.terms)
