"""OpenAI chat-completions adapter."""

from __future__ import annotations

from typing import Any

from forgor.llm.base import BaseProvider
from forgor.llm.errors import ErrorType, LLMError
from forgor.llm.types import Usage
from forgor.prompt.command import STRUCTURED

MODELS = (
    "gpt-4.1",
    "gpt-4.1-2025-04-14",
    "gpt-4.1-mini",
    "gpt-4.1-nano",
    "gpt-4o",
    "gpt-4o-2024-08-06",
    "gpt-4o-mini",
    "o4-mini",
    "o4-mini-2025-04-16",
    "gpt-4",
    "gpt-4-turbo",
    "gpt-4-turbo-preview",
    "gpt-3.5-turbo",
    "gpt-3.5-turbo-16k",
)


class OpenAIProvider(BaseProvider):
    name = "OpenAI"
    tag = "openai"
    models = MODELS
    grammar = STRUCTURED
    default_base_url = "https://api.openai.com/v1"
    stop_confidence = {"stop": 0.9, "length": 0.7, "content_filter": 0.3}

    def _request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        return f"{self.base_url}/chat/completions", headers, payload

    def _extract(self, body: dict[str, Any]) -> tuple[str, str, Usage]:
        choices = body.get("choices") or []
        if not choices:
            raise LLMError(ErrorType.MODEL, "No response from OpenAI")
        choice = choices[0]
        finish_reason = str(choice.get("finish_reason") or "")
        text = str((choice.get("message") or {}).get("content") or "")
        if finish_reason == "content_filter" and not text.strip():
            raise LLMError(ErrorType.SAFETY, "OpenAI blocked the response (content filter)", code=finish_reason)
        usage = body.get("usage") or {}
        return text, finish_reason, Usage(
            prompt_tokens=int(usage.get("prompt_tokens", 0)),
            completion_tokens=int(usage.get("completion_tokens", 0)),
            total_tokens=int(usage.get("total_tokens", 0)),
        )
