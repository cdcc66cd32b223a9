"""Configuration loading and strict validation for LLM Room."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    """Base model that rejects unknown keys."""

    model_config = ConfigDict(extra="forbid")


class StoreConfig(StrictModel):
    backend: Literal["redis", "memory"] = "redis"
    url: str = "redis://127.0.0.1:6379/0"


class RoomConfig(StrictModel):
    default_room_id: str = "global"
    lock_ttl_seconds: float = 10.0
    host_ttl_seconds: float = 30.0
    heartbeat_interval_seconds: float = 10.0
    message_window: int = 200
    context_window: int = 40
    context_messages: int = 12


class PricingConfig(StrictModel):
    unit_block_size: int = 1000
    default_rate_per_block: float = 0.001
    default_token_budget: int = 256
    max_token_budget: int = 2048
    default_guest_seed: int = 100_000_000


class InferenceConfig(StrictModel):
    timeout_seconds: float = 12.0
    temperature: float = 0.2


class PaymentsConfig(StrictModel):
    required: bool = False
    gateway: Literal["demo", "facilitator"] = "demo"
    facilitator_url: str = "https://x402.org/facilitator"
    network: str = "aptos:2"
    asset: str = "0x69091fbab5f7d635ee7ac5098cf0c1efbe31d68fec0f2cd565e8d168daf52832"
    pay_to: str = ""
    timeout_seconds: float = 20.0
    max_timeout_seconds: int = 60


class ApiConfig(StrictModel):
    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(StrictModel):
    logs_dir: str = "logs"
    event_file_name: str = "events.jsonl"
    recent_event_limit: int = 500


class AppConfig(StrictModel):
    store: StoreConfig = Field(default_factory=StoreConfig)
    room: RoomConfig = Field(default_factory=RoomConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Let deployment environment variables win over YAML values."""
    redis_url = os.getenv("REDIS_URL", "").strip()
    if redis_url:
        config.store.url = redis_url
    facilitator_url = os.getenv("FACILITATOR_URL", "").strip()
    if facilitator_url:
        config.payments.facilitator_url = facilitator_url
    pay_to = os.getenv("PAYMENT_RECIPIENT_ADDRESS", "").strip()
    if pay_to:
        config.payments.pay_to = pay_to
    if os.getenv("ENABLE_X402", "").strip().lower() == "true":
        config.payments.required = True
        config.payments.gateway = "facilitator"
    return config


def load_config(config_path: str | Path = "config/config.yaml") -> AppConfig:
    """Load and strictly validate YAML config."""
    path = Path(config_path)
    with path.open("r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    return AppConfig.model_validate(raw)

