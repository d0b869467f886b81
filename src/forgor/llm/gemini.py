"""Google Gemini generateContent adapter."""

from __future__ import annotations

from typing import Any

from forgor.llm.base import BaseProvider
from forgor.llm.errors import ErrorType, LLMError
from forgor.llm.types import Usage

MODELS = (
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash-lite-preview-06-17",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
    "gemini-2.0-flash-exp",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-1.0-pro",
    "gemini-exp-1114",
)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


class GeminiProvider(BaseProvider):
    name = "Google Gemini"
    tag = "gemini"
    models = MODELS
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    max_tokens_limit = 8192
    stop_confidence = {"STOP": 0.9, "MAX_TOKENS": 0.7, "SAFETY": 0.3, "RECITATION": 0.4}
    extra_capabilities = ("multimodal",)

    def _request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "topP": 0.8,
                "topK": 40,
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
                for category in SAFETY_CATEGORIES
            ],
        }
        url = f"{self.base_url}/models/{self.model}:generateContent?key={self.api_key}"
        return url, {"Content-Type": "application/json"}, payload

    def _extract(self, body: dict[str, Any]) -> tuple[str, str, Usage]:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise LLMError(
                ErrorType.SAFETY,
                f"Gemini blocked the prompt: {feedback['blockReason']}",
                code=str(feedback["blockReason"]),
            )
        candidates = body.get("candidates") or []
        if not candidates:
            raise LLMError(ErrorType.MODEL, "No response from Gemini")
        candidate = candidates[0]
        finish_reason = str(candidate.get("finishReason") or "")
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))
        if finish_reason == "SAFETY" and not text.strip():
            raise LLMError(ErrorType.SAFETY, "Gemini blocked the response for safety reasons", code=finish_reason)
        usage = body.get("usageMetadata") or {}
        return text, finish_reason, Usage(
            prompt_tokens=int(usage.get("promptTokenCount", 0)),
            completion_tokens=int(usage.get("candidatesTokenCount", 0)),
            total_tokens=int(usage.get("totalTokenCount", 0)),
        )
