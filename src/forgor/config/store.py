"""Load/save the YAML configuration and the last-command cache."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from forgor.config.models import Configuration, default_configuration, fallback_configuration
from forgor.paths import config_path, last_command_path
from forgor.runtime_logging import get_runtime_logger

HEADER = "# forgor configuration\n# Credentials may be literal strings or ${ENV_VAR} placeholders.\n"


class ConfigError(Exception):
    """The configuration file is missing, unreadable or invalid."""


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _format_validation(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "config"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)


class ConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or config_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Configuration:
        if not self.path.exists():
            raise ConfigError(f"config file not found: {self.path}")
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to read {self.path}: {exc}") from exc
        try:
            data: Any = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} does not contain a mapping")
        try:
            return Configuration.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"invalid config: {_format_validation(exc)}") from exc

    def load_or_fallback(self) -> tuple[Configuration, ConfigError | None]:
        """Return the stored configuration, or the fallback plus the reason."""
        try:
            return self.load(), None
        except ConfigError as exc:
            get_runtime_logger().warning("config.load_failed", path=str(self.path), error=str(exc))
            return fallback_configuration(), exc

    def dump(self, config: Configuration) -> str:
        payload = config.model_dump(mode="json", exclude_none=True)
        return HEADER + yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)

    def save(self, config: Configuration) -> None:
        try:
            atomic_write_text(self.path, self.dump(config))
        except OSError as exc:
            raise ConfigError(f"failed to save {self.path}: {exc}") from exc
        get_runtime_logger().info("config.saved", path=str(self.path))

    def init(self, *, force: bool = False) -> Configuration:
        if self.path.exists() and not force:
            raise ConfigError(f"config file already exists: {self.path} (use --force to overwrite)")
        config = default_configuration()
        self.save(config)
        return config

    def set_default(self, profile_name: str) -> Configuration:
        config = self.load()
        if profile_name not in config.profiles:
            available = ", ".join(sorted(config.profiles))
            raise ConfigError(f"profile '{profile_name}' not found. Available profiles: {available}")
        updated = config.model_copy(update={"default_profile": profile_name})
        self.save(updated)
        return updated


class LastCommandStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or last_command_path()

    def save(self, command: str) -> None:
        atomic_write_text(self.path, command.strip() + "\n")

    def load(self) -> str | None:
        try:
            command = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return command or None
