"""Request bodies accepted by the room API."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from ..room.models import HostRecord

RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class ClaimHostBody(ApiModel):
    room_id: str | None = None
    host_addr: RequiredText
    recv_addr: RequiredText
    model_endpoint: RequiredText
    model_token: str | None = None
    model_id: RequiredText
    rate_unit_price: float | None = Field(default=None, ge=0, allow_inf_nan=False)

    def to_record(self, default_rate: float) -> HostRecord:
        token = (self.model_token or "").strip()
        return HostRecord(
            host_addr=self.host_addr,
            recv_addr=self.recv_addr,
            model_endpoint=self.model_endpoint,
            model_token=token or None,
            model_id=self.model_id,
            rate_unit_price=self.rate_unit_price if self.rate_unit_price is not None else default_rate,
        )


class HostActionBody(ApiModel):
    room_id: str | None = None
    host_addr: RequiredText


class PostMessageBody(ApiModel):
    room_id: str | None = None
    sender: str | None = Field(default=None, alias="from")
    text: str | None = None
    token_budget: float | None = Field(default=None, allow_inf_nan=False)
