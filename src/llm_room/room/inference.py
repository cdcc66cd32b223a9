"""Forwarding prompts to the host's OpenAI-compatible model endpoint."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any

from .errors import UpstreamUnavailable

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_THINK_TAG = re.compile(r"</?think>", re.IGNORECASE)


def normalize_base_url(url: str) -> str:
    return url.strip().rstrip("/")


def strip_thinking_segments(text: str) -> str:
    """Drop `<think>` reasoning blocks; keep the input if nothing else is left."""
    if "<think" not in text.lower():
        return text
    cleaned = _THINK_TAG.sub("", _THINK_BLOCK.sub("", text)).strip()
    return cleaned if cleaned else text


@dataclass
class InferenceRequest:
    endpoint: str
    model_id: str
    max_output_tokens: int
    messages: list[dict[str, str]] = field(default_factory=list)
    token: str | None = None


@dataclass
class InferenceResult:
    text: str
    token_usage: int | None = None
    tokens_per_second: float | None = None


class InferenceClient:
    def complete(self, request: InferenceRequest) -> InferenceResult:
        raise NotImplementedError


def _first_choice_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError):
        return ""
    return content.strip() if isinstance(content, str) else ""


def _completion_tokens(response: Any) -> int | None:
    usage = getattr(response, "usage", None)
    value = getattr(usage, "completion_tokens", None)
    return int(value) if isinstance(value, (int, float)) and value > 0 else None


class LiteLLMInferenceClient(InferenceClient):
    """Calls the host model through litellm's OpenAI-compatible provider."""

    def __init__(self, *, timeout_seconds: float = 12.0, temperature: float = 0.2) -> None:
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature

    def complete(self, request: InferenceRequest) -> InferenceResult:
        start = time.perf_counter()
        try:
            import litellm

            response = litellm.completion(
                model=f"openai/{request.model_id}",
                api_base=normalize_base_url(request.endpoint),
                api_key=request.token or "local",
                messages=request.messages,
                max_tokens=request.max_output_tokens,
                temperature=self.temperature,
                timeout=self.timeout_seconds,
                num_retries=0,
            )
        except Exception as exc:
            raise UpstreamUnavailable(f"model request failed: {exc}", model_id=request.model_id) from exc
        elapsed = time.perf_counter() - start

        text = strip_thinking_segments(_first_choice_text(response))
        if not text:
            raise UpstreamUnavailable("Empty response from model", model_id=request.model_id)

        token_usage = _completion_tokens(response)
        tokens_per_second = round(token_usage / elapsed, 2) if token_usage and elapsed > 0 else None
        return InferenceResult(text=text, token_usage=token_usage, tokens_per_second=tokens_per_second)
