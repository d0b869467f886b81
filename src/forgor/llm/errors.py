"""Provider error taxonomy."""

from __future__ import annotations

from enum import Enum


class ErrorType(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_INPUT = "invalid_input"
    MODEL = "model"
    SAFETY = "safety"
    UNKNOWN = "unknown"


class LLMError(Exception):
    """Error crossing the provider boundary.

    ``code`` is the vendor's own error code when one was sent back; ``cause``
    is the lower-level exception, also chained as ``__cause__``.
    """

    def __init__(
        self,
        type: ErrorType,
        message: str,
        *,
        code: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.type = ErrorType(type)
        self.message = message
        self.code = code
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"LLMError(type={self.type.value!r}, message={self.message!r}, code={self.code!r})"


class ProviderConfigError(LLMError):
    """A profile could not be turned into a provider."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(ErrorType.INVALID_INPUT, message, cause=cause)


def cause_chain(exc: BaseException) -> list[str]:
    """Messages from ``exc`` down through its ``__cause__`` links."""
    chain: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        label = type(current).__name__
        if isinstance(current, LLMError):
            label = f"{label}[{current.type.value}]"
            chain.append(f"{label}: {current.message}")
        else:
            chain.append(f"{label}: {current}")
        current = current.__cause__
    return chain
