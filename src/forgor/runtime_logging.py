"""Structured JSONL runtime logging for forgor."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import click

from forgor.paths import state_root

LogLevel = Literal["off", "error", "warning", "info", "debug"]

_LEVEL_VALUES: dict[str, int] = {
    "off": 100,
    "error": 40,
    "warning": 30,
    "info": 20,
    "debug": 10,
}

# Field names whose values never reach the sink.
_SECRET_FIELDS = ("api_key", "apikey", "token", "secret", "password", "authorization")

_runtime_logger: "RuntimeLogger | None" = None


def parse_level(value: str | None, default: LogLevel = "warning") -> LogLevel:
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized in {"warn"}:
        normalized = "warning"
    if normalized in {"none", "disabled", "0"}:
        normalized = "off"
    if normalized not in _LEVEL_VALUES:
        return default
    return normalized  # type: ignore[return-value]


def verbose_from_env() -> bool:
    return os.getenv("FORGOR_VERBOSE", "").strip().lower() in {"1", "true", "yes", "on"}


def resolve_log_file(path: str | Path | None) -> Path:
    if path is None:
        return state_root() / "logs" / "forgor.runtime.jsonl"
    return Path(path).expanduser().resolve()


def _scrub(fields: dict[str, Any]) -> dict[str, Any]:
    clean: dict[str, Any] = {}
    for key, value in fields.items():
        if any(marker in key.lower() for marker in _SECRET_FIELDS):
            clean[key] = "***"
        else:
            clean[key] = value
    return clean


@dataclass(slots=True)
class RuntimeLogger:
    level: LogLevel
    sink_path: Path
    echo: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _sink_failed: bool = False

    def enabled(self, level: str) -> bool:
        current = _LEVEL_VALUES.get(self.level, _LEVEL_VALUES["warning"])
        incoming = _LEVEL_VALUES.get(level, _LEVEL_VALUES["debug"])
        return incoming >= current and current < _LEVEL_VALUES["off"]

    def log(self, level: str, event: str, **fields: Any) -> None:
        if not self.enabled(level):
            return
        fields = _scrub(fields)
        payload = {
            "ts": datetime.now(UTC).isoformat(),
            "level": level,
            "event": event,
            "pid": os.getpid(),
            **fields,
        }
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            if self.echo:
                details = " ".join(f"{key}={value}" for key, value in fields.items())
                click.echo(f"[{level}] {event} {details}".rstrip(), err=True)
            if self._sink_failed:
                return
            try:
                self.sink_path.parent.mkdir(parents=True, exist_ok=True)
                with self.sink_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                # Read-only homes must not break the command itself.
                self._sink_failed = True
                if self.echo:
                    click.echo(f"[warning] logging.sink_unavailable error={exc}", err=True)

    def debug(self, event: str, **fields: Any) -> None:
        self.log("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log("warning", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log("error", event, **fields)


class _DisabledLogger(RuntimeLogger):
    def __init__(self) -> None:
        super().__init__(level="off", sink_path=Path(os.devnull))

    def log(self, level: str, event: str, **fields: Any) -> None:  # noqa: ARG002
        return


def configure_runtime_logging(
    *,
    level: str | None = None,
    log_file: str | Path | None = None,
    verbose: bool | None = None,
) -> RuntimeLogger:
    """Install the process-wide logger.

    Verbose mode echoes every enabled event to stderr and drops the default
    level to ``debug`` unless one is given explicitly or via the environment.
    """
    global _runtime_logger

    env_level = os.getenv("FORGOR_LOG_LEVEL")
    env_file = os.getenv("FORGOR_LOG_FILE")
    echo = verbose_from_env() if verbose is None else verbose
    default_level: LogLevel = "debug" if echo else "warning"
    effective_level = parse_level(level or env_level, default=default_level)
    effective_file = resolve_log_file(log_file or env_file)
    if effective_level == "off":
        _runtime_logger = _DisabledLogger()
    else:
        _runtime_logger = RuntimeLogger(level=effective_level, sink_path=effective_file, echo=echo)
        _runtime_logger.info(
            "logging.configured",
            configured_level=effective_level,
            sink_path=str(effective_file),
        )
    return _runtime_logger


def get_runtime_logger() -> RuntimeLogger:
    global _runtime_logger
    if _runtime_logger is None:
        _runtime_logger = configure_runtime_logging()
    return _runtime_logger
