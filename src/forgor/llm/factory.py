"""Profile name -> validated, memoized provider."""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Callable, Mapping

import httpx

from forgor.config.models import Configuration, Profile
from forgor.llm.anthropic import AnthropicProvider
from forgor.llm.base import BaseProvider
from forgor.llm.errors import ProviderConfigError
from forgor.llm.gemini import GeminiProvider
from forgor.llm.local import LocalProvider
from forgor.llm.openai import OpenAIProvider
from forgor.llm.types import ProviderInfo
from forgor.runtime_logging import get_runtime_logger

VENDORS: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "google": GeminiProvider,
    "local": LocalProvider,
}

CREDENTIAL_HINTS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GOOGLE_AI_API_KEY",
    "google": "GOOGLE_AI_API_KEY",
}

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def supported_vendors() -> list[str]:
    return list(VENDORS)


def expand_placeholders(value: str, environ: Mapping[str, str] | None = None) -> str:
    """Replace ``${NAME}``/``$NAME`` with environment values; unset names become empty."""
    environ = os.environ if environ is None else environ

    def substitute(match: re.Match[str]) -> str:
        return environ.get(match.group(1) or match.group(2), "")

    return _PLACEHOLDER.sub(substitute, value or "")


def validate_profile(profile: Profile, environ: Mapping[str, str] | None = None) -> str:
    """Check ``profile`` against its vendor's rules and return the expanded credential."""
    vendor = VENDORS.get(profile.provider)
    if vendor is None:
        raise ProviderConfigError(
            f"unsupported provider: {profile.provider!r} (supported: {', '.join(VENDORS)})"
        )
    api_key = expand_placeholders(profile.api_key, environ)
    if vendor.requires_api_key and not api_key.strip():
        hint = CREDENTIAL_HINTS.get(profile.provider, "the provider's API key variable")
        raise ProviderConfigError(
            f"{vendor.name} API key not found. Set {hint} or add api_key to the profile"
        )
    if vendor.requires_endpoint and not (profile.endpoint or "").strip():
        raise ProviderConfigError(f"endpoint is required for the {profile.provider} provider")
    if not profile.model:
        raise ProviderConfigError("model must be specified")
    if vendor.models is not None and profile.model not in vendor.models:
        raise ProviderConfigError(
            f"invalid {vendor.name} model: {profile.model}. Valid models: {', '.join(vendor.models)}"
        )
    return api_key


class ProviderFactory:
    """Builds providers lazily and hands back the same instance per profile."""

    def __init__(
        self,
        config: Configuration,
        *,
        environ: Mapping[str, str] | None = None,
        client_factory: Callable[[], httpx.Client] | None = None,
    ) -> None:
        self.config = config
        self._environ = environ
        self._client_factory = client_factory
        self._providers: dict[str, BaseProvider] = {}
        self._lock = threading.Lock()

    def resolve_name(self, profile_name: str | None) -> str:
        if not profile_name or profile_name == "default":
            return self.config.default_profile
        return profile_name

    def get_provider(self, profile_name: str | None = None) -> BaseProvider:
        name = self.resolve_name(profile_name)
        with self._lock:
            provider = self._providers.get(name)
            if provider is not None:
                return provider
            provider = self._create(name)
            self._providers[name] = provider
        get_runtime_logger().info(
            "provider.created",
            profile=name,
            provider=provider.tag,
            model=provider.model,
        )
        return provider

    def get_default_provider(self) -> BaseProvider:
        return self.get_provider(self.config.default_profile)

    def _create(self, name: str) -> BaseProvider:
        profile = self.config.profiles.get(name)
        if profile is None:
            available = ", ".join(sorted(self.config.profiles)) or "none"
            raise ProviderConfigError(f"profile '{name}' not found (available: {available})")
        try:
            api_key = validate_profile(profile, self._environ)
        except ProviderConfigError as exc:
            raise ProviderConfigError(f"failed to create provider for profile '{name}': {exc.message}") from exc
        vendor = VENDORS[profile.provider]
        client = self._client_factory() if self._client_factory else None
        return vendor(api_key, profile.model, endpoint=profile.endpoint, client=client)

    def validate_provider(self, profile_name: str | None) -> None:
        name = self.resolve_name(profile_name)
        profile = self.config.profiles.get(name)
        if profile is None:
            raise ProviderConfigError(f"profile '{name}' not found")
        validate_profile(profile, self._environ)

    def list_providers(self) -> dict[str, ProviderInfo]:
        """Info for every profile; a broken profile yields an error entry instead."""
        info: dict[str, ProviderInfo] = {}
        for name in self.config.profiles:
            try:
                info[name] = self.get_provider(name).provider_info()
            except ProviderConfigError as exc:
                info[name] = ProviderInfo(
                    name="Error",
                    version="0.0.0",
                    metadata={"error": exc.message},
                )
        return info

    def close(self) -> None:
        with self._lock:
            for provider in self._providers.values():
                provider.close()
            self._providers.clear()
