"""RequestContext assembly from a cached SystemContext."""

from __future__ import annotations

import os
from collections.abc import Sequence

from forgor.llm.types import HistoryEntry, RequestContext
from forgor.system.inventory import SystemContext


def current_directory() -> str:
    try:
        return os.getcwd()
    except OSError:
        return "."


def build_request_context(
    system: SystemContext,
    history: Sequence[HistoryEntry] = (),
    user_hint: str = "",
    working_directory: str | None = None,
) -> RequestContext:
    # Cached snapshots carry the cwd of whichever process built them.
    cwd = working_directory if working_directory is not None else current_directory()
    if cwd and cwd != system.working_directory:
        system = system.with_working_directory(cwd)
    return RequestContext(system=system, history=list(history), user_hint=user_hint)
