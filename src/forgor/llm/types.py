"""Vendor-neutral request/response records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from forgor.system.inventory import SystemContext

_RANKS = {"safe": 0, "low": 1, "medium": 2, "high": 3, "critical": 4}


class DangerLevel(str, Enum):
    """Ordinal risk level: safe < low < medium < high < critical."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    def at_least(self, other: "DangerLevel") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | None, default: "DangerLevel | None" = None) -> "DangerLevel":
        normalized = (value or "").strip().lower()
        if normalized in _RANKS:
            return cls(normalized)
        return default if default is not None else cls.SAFE


def highest(*levels: DangerLevel) -> DangerLevel:
    return max(levels, key=lambda level: level.rank, default=DangerLevel.SAFE)


@dataclass(slots=True)
class HistoryEntry:
    command: str
    exit_code: int = -1


@dataclass(slots=True)
class RequestContext:
    system: SystemContext
    history: list[HistoryEntry] = field(default_factory=list)
    user_hint: str = ""

    @property
    def working_directory(self) -> str:
        return self.system.working_directory


@dataclass(slots=True)
class RequestOptions:
    max_tokens: int = 450
    temperature: float = 0.1
    include_explanation: bool = False
    safety_level: str = "moderate"


@dataclass(slots=True)
class Request:
    query: str
    context: RequestContext
    options: RequestOptions = field(default_factory=RequestOptions)

    def __post_init__(self) -> None:
        if not self.query.strip():
            raise ValueError("query must not be empty")


@dataclass(slots=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class Response:
    command: str
    explanation: str = ""
    alternatives: list[str] = field(default_factory=list)
    confidence: float = 0.5
    danger_level: DangerLevel = DangerLevel.SAFE
    danger_reason: str = ""
    warnings: list[str] = field(default_factory=list)
    usage: Usage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DangerAssessment:
    level: DangerLevel
    confidence: float
    reason: str
    factors: list[str] = field(default_factory=list)
    mitigations: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProviderInfo:
    name: str
    version: str
    models: list[str] = field(default_factory=list)
    capabilities: list[str] = field(default_factory=list)
    limits: dict[str, int] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
