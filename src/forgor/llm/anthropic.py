"""Anthropic messages adapter."""

from __future__ import annotations

from typing import Any

from forgor.llm.base import BaseProvider
from forgor.llm.errors import ErrorType, LLMError
from forgor.llm.types import Usage

API_VERSION = "2023-06-01"

MODELS = (
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-3-7-sonnet-20250219",
    "claude-3-7-sonnet-latest",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-sonnet-latest",
    "claude-3-5-haiku-20241022",
    "claude-3-5-haiku-latest",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
)


class AnthropicProvider(BaseProvider):
    name = "Anthropic"
    tag = "anthropic"
    models = MODELS
    default_base_url = "https://api.anthropic.com/v1"
    stop_confidence = {"end_turn": 0.9, "max_tokens": 0.7, "stop_sequence": 0.8, "refusal": 0.3}
    extra_capabilities = ("advanced_reasoning",)

    def _request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "Content-Type": "application/json",
        }
        return f"{self.base_url}/messages", headers, payload

    def _extract(self, body: dict[str, Any]) -> tuple[str, str, Usage]:
        blocks = body.get("content") or []
        text = "".join(
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        stop_reason = str(body.get("stop_reason") or "")
        if stop_reason == "refusal" and not text.strip():
            raise LLMError(ErrorType.SAFETY, "Anthropic declined to answer", code=stop_reason)
        if not blocks:
            raise LLMError(ErrorType.MODEL, "No response from Anthropic")
        usage = body.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens", 0))
        completion_tokens = int(usage.get("output_tokens", 0))
        return text, stop_reason, Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
