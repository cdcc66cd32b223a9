"""Persisted room records and their JSON wire format."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import CorruptState

T = TypeVar("T", bound="WireModel")


def now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    def to_wire(self, *, exclude: set[str] | None = None) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude=exclude, mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls: type[T], raw: str | bytes) -> T:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptState(f"undecodable {cls.__name__}", errors=exc.error_count()) from exc


class HostRecord(WireModel):
    host_addr: str
    recv_addr: str
    rate_unit_price: float
    model_endpoint: str
    model_token: str | None = None
    model_id: str
    connected: bool = True
    last_seen_at: int = Field(default_factory=now_ms)

    def public_view(self) -> dict[str, Any]:
        return self.to_wire(exclude={"model_token"})


class MessageKind(str, Enum):
    PROMPT = "prompt"
    RESPONSE = "response"
    SYSTEM = "system"


class MessageMeta(WireModel):
    payment_receipt: str | None = None
    charged_micro_units: int | None = None
    token_usage: int | None = None
    tokens_per_second: float | None = None


class Message(WireModel):
    id: str
    room_id: str
    kind: MessageKind
    sender: str = Field(alias="from")
    text: str
    created_at: int
    prompt_id: str | None = None
    meta: MessageMeta | None = None

    @classmethod
    def create(
        cls,
        room_id: str,
        kind: MessageKind,
        sender: str,
        text: str,
        *,
        prompt_id: str | None = None,
        meta: MessageMeta | None = None,
        created_at: int | None = None,
    ) -> "Message":
        return cls(
            id=uuid.uuid4().hex,
            room_id=room_id,
            kind=kind,
            sender=sender,
            text=text,
            created_at=created_at if created_at is not None else now_ms(),
            prompt_id=prompt_id,
            meta=meta,
        )

    @classmethod
    def prompt(cls, room_id: str, sender: str, text: str, **kwargs: Any) -> "Message":
        return cls.create(room_id, MessageKind.PROMPT, sender, text, **kwargs)

    @classmethod
    def response(cls, room_id: str, sender: str, text: str, **kwargs: Any) -> "Message":
        return cls.create(room_id, MessageKind.RESPONSE, sender, text, **kwargs)

    @classmethod
    def system(cls, room_id: str, text: str, **kwargs: Any) -> "Message":
        return cls.create(room_id, MessageKind.SYSTEM, "system", text, **kwargs)
