"""Shared adapter machinery: HTTP, error mapping and answer parsing."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, ClassVar

import httpx

from forgor.llm.errors import ErrorType, LLMError
from forgor.llm.types import DangerLevel, ProviderInfo, Request, Response, Usage
from forgor.prompt.command import SEPARATED, STRUCTURED, build_explain_prompt, build_vendor_prompt
from forgor.prompt.safety import check_command_safety, clean_command
from forgor.prompt.system import EXPLAINER_SYSTEM_PROMPT, build_system_prompt
from forgor.runtime_logging import get_runtime_logger
from forgor.version import __version__

REQUEST_TIMEOUT_SECONDS = 30.0
EXPLAIN_MAX_TOKENS = 300
EXPLAIN_TEMPERATURE = 0.1
DEFAULT_DANGER_REASON = "No specific assessment provided"

CAPABILITIES = (
    "command_generation",
    "command_explanation",
    "context_awareness",
    "safety_filtering",
)

_ERROR_TYPES: dict[str, ErrorType] = {
    "invalid_request_error": ErrorType.INVALID_INPUT,
    "not_found_error": ErrorType.INVALID_INPUT,
    "invalid_argument": ErrorType.INVALID_INPUT,
    "failed_precondition": ErrorType.INVALID_INPUT,
    "authentication_error": ErrorType.AUTH,
    "permission_error": ErrorType.AUTH,
    "invalid_api_key": ErrorType.AUTH,
    "unauthenticated": ErrorType.AUTH,
    "permission_denied": ErrorType.AUTH,
    "rate_limit_error": ErrorType.RATE_LIMIT,
    "rate_limit_exceeded": ErrorType.RATE_LIMIT,
    "quota_exceeded": ErrorType.QUOTA,
    "insufficient_quota": ErrorType.QUOTA,
    "resource_exhausted": ErrorType.RATE_LIMIT,
    "overloaded_error": ErrorType.MODEL,
    "server_error": ErrorType.MODEL,
    "api_error": ErrorType.MODEL,
    "internal": ErrorType.MODEL,
    "unavailable": ErrorType.MODEL,
    "content_filter": ErrorType.SAFETY,
    "content_policy_violation": ErrorType.SAFETY,
}


def status_error_type(status: int) -> ErrorType:
    if status == 400:
        return ErrorType.INVALID_INPUT
    if status in (401, 403):
        return ErrorType.AUTH
    if status == 429:
        return ErrorType.RATE_LIMIT
    if status in (408, 504):
        return ErrorType.TIMEOUT
    if status >= 500:
        return ErrorType.MODEL
    return ErrorType.UNKNOWN


def error_from_response(response: httpx.Response, vendor: str) -> LLMError:
    """Map a non-2xx vendor response onto the common taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = None
    envelope = body.get("error") if isinstance(body, dict) else None
    if not isinstance(envelope, dict):
        snippet = response.text.strip()[:200]
        return LLMError(
            status_error_type(response.status_code),
            f"{vendor} returned HTTP {response.status_code}" + (f": {snippet}" if snippet else ""),
            code=str(response.status_code),
        )

    raw_code = envelope.get("code")
    code = None if raw_code in (None, "") else str(raw_code)
    candidates = [envelope.get("type"), envelope.get("status"), code]
    error_type = None
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.lower() in _ERROR_TYPES:
            error_type = _ERROR_TYPES[candidate.lower()]
            break
    if error_type is None:
        status = raw_code if isinstance(raw_code, int) else response.status_code
        error_type = status_error_type(status)
    message = envelope.get("message") or f"{vendor} returned HTTP {response.status_code}"
    return LLMError(error_type, str(message), code=code)


@dataclass(slots=True)
class ParsedAnswer:
    command: str
    explanation: str = ""
    danger_level: DangerLevel = DangerLevel.SAFE
    danger_reason: str = ""


def parse_structured(content: str) -> ParsedAnswer:
    """Parse ``COMMAND:``/``EXPLANATION:``/``DANGER_LEVEL:``/``DANGER_REASON:`` lines.

    Without a ``COMMAND:`` line the whole text is taken as the command.
    """
    content = content.strip()
    answer = ParsedAnswer(command="", danger_reason=DEFAULT_DANGER_REASON)
    for line in content.splitlines():
        line = line.strip()
        label, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip()
        label = label.strip().upper()
        if label == "COMMAND":
            answer.command = value
        elif label == "EXPLANATION":
            answer.explanation = value
        elif label == "DANGER_LEVEL":
            answer.danger_level = DangerLevel.parse(value)
        elif label == "DANGER_REASON":
            answer.danger_reason = value
    if not answer.command:
        answer.command = content
    answer.command = clean_command(answer.command)
    return answer


def parse_separated(content: str, include_explanation: bool) -> ParsedAnswer:
    """Parse ``command || explanation`` when an explanation was requested."""
    content = clean_command(content)
    if include_explanation and "||" in content:
        command, _, explanation = content.partition("||")
        return ParsedAnswer(command=clean_command(command), explanation=explanation.strip())
    return ParsedAnswer(command=content)


class BaseProvider:
    """One configured vendor endpoint.

    Subclasses describe the wire format through ``_request`` and ``_extract``;
    everything else (deadline handling, error mapping, parsing, the safety
    scan) lives here.
    """

    name: ClassVar[str] = "Provider"
    tag: ClassVar[str] = ""
    version: ClassVar[str] = __version__
    models: ClassVar[tuple[str, ...] | None] = ()
    grammar: ClassVar[str] = SEPARATED
    default_base_url: ClassVar[str] = ""
    requires_api_key: ClassVar[bool] = True
    requires_endpoint: ClassVar[bool] = False
    max_tokens_limit: ClassVar[int] = 4096
    stop_confidence: ClassVar[dict[str, float]] = {}
    extra_capabilities: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        endpoint: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = (endpoint or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def _request(
        self, system_prompt: str, user_prompt: str, max_tokens: int, temperature: float
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def _extract(self, body: dict[str, Any]) -> tuple[str, str, Usage]:
        raise NotImplementedError

    def confidence(self, stop_reason: str) -> float:
        return self.stop_confidence.get(stop_reason, 0.5)

    def _post(
        self,
        url: str,
        headers: dict[str, str],
        payload: dict[str, Any],
        deadline: float | None,
    ) -> dict[str, Any]:
        logger = get_runtime_logger()
        timeout = self.timeout
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LLMError(ErrorType.TIMEOUT, f"{self.name} request cancelled: deadline exceeded")
            timeout = min(timeout, remaining)

        logger.debug("provider.request", provider=self.tag, model=self.model)
        started = time.monotonic()
        # httpx timeouts apply per phase; the total is enforced while reading
        expires = started + timeout
        try:
            with self.client.stream("POST", url, json=payload, headers=headers, timeout=timeout) as streamed:
                chunks: list[bytes] = []
                for chunk in streamed.iter_bytes():
                    if time.monotonic() > expires:
                        raise LLMError(ErrorType.TIMEOUT, f"{self.name} request timed out: deadline exceeded")
                    chunks.append(chunk)
                response = httpx.Response(
                    streamed.status_code,
                    headers={"content-type": streamed.headers.get("content-type", "application/json")},
                    content=b"".join(chunks),
                    request=streamed.request,
                )
        except httpx.TimeoutException as exc:
            raise LLMError(ErrorType.TIMEOUT, f"{self.name} request timed out", cause=exc) from exc
        except httpx.TransportError as exc:
            raise LLMError(ErrorType.NETWORK, f"Failed to call {self.name} API", cause=exc) from exc

        logger.info(
            "provider.response",
            provider=self.tag,
            status=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        if not response.is_success:
            error = error_from_response(response, self.name)
            logger.warning(
                "provider.error",
                provider=self.tag,
                status=response.status_code,
                error_type=error.type.value,
                error_code=error.code,
            )
            raise error
        try:
            body = response.json()
        except ValueError as exc:
            raise LLMError(ErrorType.MODEL, f"{self.name} returned a malformed response", cause=exc) from exc
        if not isinstance(body, dict):
            raise LLMError(ErrorType.MODEL, f"{self.name} returned a malformed response")
        return body

    def _parse(self, text: str, include_explanation: bool) -> ParsedAnswer:
        if self.grammar == STRUCTURED:
            return parse_structured(text)
        return parse_separated(text, include_explanation)

    def generate_command(self, request: Request, *, deadline: float | None = None) -> Response:
        system_prompt = build_system_prompt(request.context.system)
        user_prompt = build_vendor_prompt(request, self.grammar)
        url, headers, payload = self._request(
            system_prompt,
            user_prompt,
            request.options.max_tokens,
            request.options.temperature,
        )
        body = self._post(url, headers, payload, deadline)
        text, stop_reason, usage = self._extract(body)
        if not text.strip():
            raise LLMError(ErrorType.MODEL, f"No response from {self.name}")

        answer = self._parse(text, request.options.include_explanation)
        if not answer.command:
            raise LLMError(ErrorType.MODEL, f"{self.name} returned an empty command")
        return Response(
            command=answer.command,
            explanation=answer.explanation if request.options.include_explanation else "",
            confidence=self.confidence(stop_reason),
            danger_level=answer.danger_level,
            danger_reason=answer.danger_reason,
            warnings=check_command_safety(answer.command),
            usage=usage,
            metadata={
                "provider": self.tag,
                "model": str(body.get("model") or self.model),
                "finish_reason": stop_reason,
                "llm_danger_level": answer.danger_level.value,
            },
        )

    def explain_command(self, command: str, *, deadline: float | None = None) -> Response:
        url, headers, payload = self._request(
            EXPLAINER_SYSTEM_PROMPT,
            build_explain_prompt(command),
            EXPLAIN_MAX_TOKENS,
            EXPLAIN_TEMPERATURE,
        )
        body = self._post(url, headers, payload, deadline)
        text, stop_reason, usage = self._extract(body)
        if not text.strip():
            raise LLMError(ErrorType.MODEL, f"No response from {self.name}")
        return Response(
            command=command,
            explanation=text.strip(),
            confidence=1.0,
            usage=usage,
            metadata={"provider": self.tag, "model": self.model, "finish_reason": stop_reason},
        )

    def provider_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.name,
            version=self.version,
            models=list(self.models or (self.model,)),
            capabilities=[*CAPABILITIES, *self.extra_capabilities],
            limits={
                "max_tokens": self.max_tokens_limit,
                "max_history": 10,
                "timeout_seconds": int(self.timeout),
            },
            metadata={"provider": self.tag, "model": self.model, "endpoint": self.base_url},
        )
