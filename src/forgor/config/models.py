"""Configuration schema for forgor."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from forgor.system.inventory import TOOL_CATEGORIES, unique

OutputFormat = Literal["plain", "json"]


class Profile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider: str
    api_key: str = Field(default="", description="Literal key or ${ENV_VAR} placeholder")
    model: str = Field(default="")
    max_tokens: int = Field(default=450, gt=0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    endpoint: str | None = Field(default=None)

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("api_key", "model", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def masked_api_key(self) -> str:
        if not self.api_key or "$" in self.api_key:
            return self.api_key
        return self.api_key[:4] + "***"


class HistoryPolicy(BaseModel):
    max_commands: int = Field(default=10, ge=0)
    shells: list[str] = Field(default_factory=lambda: ["bash", "zsh", "fish"])


class SecurityPolicy(BaseModel):
    redact_sensitive: bool = Field(default=True)
    filters: list[str] = Field(default_factory=lambda: ["password", "token", "secret", "key", "api_key"])


class OutputPolicy(BaseModel):
    format: OutputFormat = Field(default="plain")
    confirm_before_run: bool = Field(default=False)


class CustomTools(BaseModel):
    package_managers: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    development_tools: list[str] = Field(default_factory=list)
    system_commands: list[str] = Field(default_factory=list)
    container_tools: list[str] = Field(default_factory=list)
    cloud_tools: list[str] = Field(default_factory=list)
    database_tools: list[str] = Field(default_factory=list)
    network_tools: list[str] = Field(default_factory=list)
    other: list[str] = Field(default_factory=list)

    @field_validator(*TOOL_CATEGORIES, mode="before")
    @classmethod
    def dedupe(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return unique(str(item) for item in value)
        return value

    def as_mapping(self) -> dict[str, list[str]]:
        return {category: list(getattr(self, category)) for category in TOOL_CATEGORIES}

    def total(self) -> int:
        return sum(len(names) for names in self.as_mapping().values())


class Configuration(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default_profile: str
    profiles: dict[str, Profile] = Field(default_factory=dict)
    history: HistoryPolicy = Field(default_factory=HistoryPolicy)
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    output: OutputPolicy = Field(default_factory=OutputPolicy)
    custom_tools: CustomTools = Field(default_factory=CustomTools)

    @field_validator("history", "security", "output", "custom_tools", "profiles", mode="before")
    @classmethod
    def empty_sections(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def default_profile_exists(self) -> "Configuration":
        if not self.default_profile:
            raise ValueError("default_profile must be specified")
        if self.default_profile not in self.profiles:
            raise ValueError(f"default profile '{self.default_profile}' not found in profiles")
        return self

    def get_profile(self, name: str | None) -> Profile:
        if not name or name == "default":
            name = self.default_profile
        try:
            return self.profiles[name]
        except KeyError:
            raise KeyError(f"profile '{name}' not found") from None


def default_configuration() -> Configuration:
    """The configuration written by ``forgor config init``."""
    return Configuration(
        default_profile="gemini",
        profiles={
            "openai": Profile(
                provider="openai",
                api_key="${OPENAI_API_KEY}",
                model="gpt-4.1-2025-04-14",
            ),
            "gemini": Profile(
                provider="gemini",
                api_key="${GOOGLE_AI_API_KEY}",
                model="gemini-2.5-flash-lite-preview-06-17",
            ),
            "anthropic": Profile(
                provider="anthropic",
                api_key="${ANTHROPIC_API_KEY}",
                model="claude-3-5-sonnet-20241022",
            ),
            "local": Profile(
                provider="local",
                endpoint="http://localhost:11434",
                model="codellama",
            ),
        },
    )


def fallback_configuration() -> Configuration:
    """Minimal stand-in used when the config file cannot be loaded."""
    return Configuration(
        default_profile="openai",
        profiles={
            "openai": Profile(
                provider="openai",
                api_key="${OPENAI_API_KEY}",
                model="gpt-4.1",
                max_tokens=450,
                temperature=0.1,
            )
        },
    )
