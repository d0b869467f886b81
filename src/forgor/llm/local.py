"""Self-hosted adapter for Ollama-compatible chat servers."""

from __future__ import annotations

from typing import Any

from forgor.llm.base import BaseProvider
from forgor.llm.errors import ErrorType, LLMError
from forgor.llm.types import Usage


class LocalProvider(BaseProvider):
    name = "Local"
    tag = "local"
    models = None
    requires_api_key = False
    requires_endpoint = True
    stop_confidence = {"stop": 0.9, "length": 0.7}

    def _request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return f"{self.base_url}/api/chat", headers, payload

    def _extract(self, body: dict[str, Any]) -> tuple[str, str, Usage]:
        message = body.get("message")
        if not isinstance(message, dict):
            raise LLMError(ErrorType.MODEL, "No response from local model server")
        prompt_tokens = int(body.get("prompt_eval_count", 0))
        completion_tokens = int(body.get("eval_count", 0))
        return str(message.get("content") or ""), str(body.get("done_reason") or ""), Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
