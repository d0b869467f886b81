"""Recent shell history for prompt context."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

from forgor.config.models import HistoryPolicy, SecurityPolicy
from forgor.llm.types import HistoryEntry
from forgor.paths import command_log_path, shell_history_path
from forgor.runtime_logging import get_runtime_logger

# timestamp|shell|pid|session|tty|pwd|exit_code|command
_COMMAND_LOG_FIELDS = 8


def _read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8", errors="replace").splitlines()


def parse_command_log(lines: Iterable[str]) -> list[HistoryEntry]:
    entries: list[HistoryEntry] = []
    for line in lines:
        parts = line.split("|", _COMMAND_LOG_FIELDS - 1)
        if len(parts) < _COMMAND_LOG_FIELDS:
            continue
        command = parts[7].strip()
        if not command:
            continue
        try:
            exit_code = int(parts[6])
        except ValueError:
            exit_code = -1
        entries.append(HistoryEntry(command=command, exit_code=exit_code))
    return entries


def parse_bash(lines: Iterable[str]) -> list[str]:
    # HISTTIMEFORMAT writes "#<epoch>" marker lines between commands.
    return [
        line.strip()
        for line in lines
        if line.strip() and not (line.startswith("#") and line[1:].strip().isdigit())
    ]


def parse_zsh(lines: Iterable[str]) -> list[str]:
    commands: list[str] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        if line.startswith(": "):
            # extended history: ": <start>:<elapsed>;<command>"
            _, sep, command = line.partition(";")
            command = command.strip()
            if sep and command:
                commands.append(command)
        else:
            commands.append(line)
    return commands


def parse_fish(lines: Iterable[str]) -> list[str]:
    """Commands from ``- cmd:`` lines; any other layout yields nothing."""
    commands: list[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("- cmd:"):
            command = stripped[len("- cmd:"):].strip()
            if command:
                commands.append(command.replace("\\n", "\n").replace("\\\\", "\\"))
    return commands


_NATIVE_PARSERS = {"bash": parse_bash, "zsh": parse_zsh, "fish": parse_fish}


def redact(entries: Sequence[HistoryEntry], filters: Sequence[str]) -> list[HistoryEntry]:
    """Drop entries whose command contains any filter substring, ignoring case."""
    needles = [needle.lower() for needle in filters if needle]
    return [
        entry
        for entry in entries
        if not any(needle in entry.command.lower() for needle in needles)
    ]


class HistoryReader:
    def __init__(
        self,
        policy: HistoryPolicy,
        security: SecurityPolicy,
        *,
        command_log: Path | None = None,
        native_paths: dict[str, Path] | None = None,
    ) -> None:
        self.policy = policy
        self.security = security
        self.command_log = command_log or command_log_path()
        self.native_paths = native_paths

    def _native_path(self, shell: str) -> Path | None:
        if self.native_paths is not None:
            return self.native_paths.get(shell)
        return shell_history_path(shell)

    def _from_command_log(self) -> list[HistoryEntry]:
        if not self.command_log.exists():
            return []
        return parse_command_log(_read_lines(self.command_log))

    def _from_native(self, shell: str) -> list[HistoryEntry]:
        shell = shell.lower()
        allowed = {name.lower() for name in self.policy.shells}
        if allowed and shell not in allowed:
            return []
        parser = _NATIVE_PARSERS.get(shell)
        path = self._native_path(shell)
        if parser is None or path is None or not path.exists():
            return []
        return [HistoryEntry(command=command, exit_code=-1) for command in parser(_read_lines(path))]

    def recent(self, shell: str, limit: int | None = None) -> list[HistoryEntry]:
        """Last ``limit`` entries (capped by policy), redacted per the security policy."""
        count = self.policy.max_commands if limit is None else min(limit, self.policy.max_commands)
        if count <= 0:
            return []
        logger = get_runtime_logger()
        try:
            entries = self._from_command_log()
            source = "command_log"
            if not entries:
                entries = self._from_native(shell)
                source = shell
        except OSError as exc:
            logger.warning("history.read_failed", shell=shell, error=str(exc))
            return []
        if self.security.redact_sensitive:
            entries = redact(entries, self.security.filters)
        logger.debug("history.loaded", source=source, entries=len(entries[-count:]))
        return entries[-count:]
