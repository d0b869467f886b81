"""One invocation: context -> prompt -> provider -> danger assessment."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

from forgor.config.models import Configuration
from forgor.history import HistoryReader
from forgor.llm.base import REQUEST_TIMEOUT_SECONDS
from forgor.llm.context import build_request_context, current_directory
from forgor.llm.factory import ProviderFactory
from forgor.llm.types import DangerAssessment, Request, RequestOptions, Response
from forgor.runtime_logging import get_runtime_logger
from forgor.security.danger import DangerDetector
from forgor.system.cache import ContextCache, get_context_cache
from forgor.system.probe import SystemProber, os_tag

# First word of queries that read as an existing shell command.
_COMMAND_HEAD = re.compile(
    r"^(sudo|ls|cd|cp|mv|rm|cat|grep|find|awk|sed|tar|git|docker|kubectl|curl|wget|chmod|chown"
    r"|ps|kill|df|du|echo|ssh|scp|rsync|npm|pip|make|systemctl|journalctl|xargs|head|tail)\b"
)


def looks_like_command(query: str) -> bool:
    """Heuristic used by ``-e``: explain instead of generate."""
    stripped = query.strip()
    if not stripped:
        return False
    if any(token in stripped for token in ("|", "&&", "$(", " -", ">")):
        return True
    return bool(_COMMAND_HEAD.match(stripped))


@dataclass(slots=True)
class Outcome:
    query: str
    response: Response
    assessment: DangerAssessment
    profile: str
    explained: bool = False


class CommandPipeline:
    """Strictly sequential request pipeline for a single invocation."""

    def __init__(
        self,
        config: Configuration,
        factory: ProviderFactory | None = None,
        *,
        cache: ContextCache | None = None,
        history: HistoryReader | None = None,
        detector: DangerDetector | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.config = config
        self.factory = factory or ProviderFactory(config)
        self._cache = cache
        self.history = history or HistoryReader(config.history, config.security)
        self.detector = detector or DangerDetector()
        self.timeout = timeout

    @property
    def cache(self) -> ContextCache:
        if self._cache is None:
            prober = SystemProber(custom_tools=self.config.custom_tools.as_mapping())
            self._cache = get_context_cache(prober.build)
        return self._cache

    def generate(
        self,
        query: str,
        *,
        profile: str | None = None,
        include_explanation: bool = False,
        history_limit: int | None = None,
        user_hint: str = "",
    ) -> Outcome:
        logger = get_runtime_logger()
        name = self.factory.resolve_name(profile)
        # Validation errors surface before any probing or network call.
        provider = self.factory.get_provider(name)
        settings = self.config.get_profile(name)

        system = self.cache.get()
        entries = self.history.recent(system.shell, history_limit)
        context = build_request_context(system, entries, user_hint)
        request = Request(
            query=query,
            context=context,
            options=RequestOptions(
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                include_explanation=include_explanation,
            ),
        )
        deadline = time.monotonic() + self.timeout
        response = provider.generate_command(request, deadline=deadline)
        assessment = self.detector.assess(
            response.command,
            working_directory=context.working_directory,
            os_tag=system.os,
        )
        logger.info(
            "danger.assessed",
            profile=name,
            engine_level=assessment.level.value,
            vendor_level=response.danger_level.value,
        )
        return Outcome(query=query, response=response, assessment=assessment, profile=name)

    def explain(self, command: str, *, profile: str | None = None) -> Outcome:
        name = self.factory.resolve_name(profile)
        provider = self.factory.get_provider(name)
        response = provider.explain_command(command, deadline=time.monotonic() + self.timeout)
        assessment = self.detector.assess(command, working_directory=current_directory(), os_tag=os_tag())
        return Outcome(query=command, response=response, assessment=assessment, profile=name, explained=True)

    def close(self) -> None:
        self.factory.close()
