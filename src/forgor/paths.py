"""Config and state directory helpers."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "forgor"


def dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=False, roaming=False)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_root() -> Path:
    override = os.getenv("FORGOR_CONFIG_HOME")
    if override:
        return ensure_dir(Path(override).expanduser() / APP_NAME)
    return ensure_dir(Path(dirs().user_config_path))


def state_root() -> Path:
    override = os.getenv("FORGOR_CONFIG_HOME")
    if override:
        return ensure_dir(Path(override).expanduser() / APP_NAME / "state")
    return ensure_dir(Path(dirs().user_state_path))


def config_path() -> Path:
    explicit = os.getenv("FORGOR_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    return config_root() / "config.yaml"


def last_command_path() -> Path:
    return config_root() / "last_command"


def context_cache_path() -> Path:
    return config_root() / "system-context.json"


def context_lock_path() -> Path:
    return config_root() / "system-context.json.lock"


def command_log_path() -> Path:
    return Path.home() / ".command_log"


def shell_history_path(shell: str) -> Path | None:
    home = Path.home()
    return {
        "bash": home / ".bash_history",
        "zsh": home / ".zsh_history",
        "fish": home / ".local" / "share" / "fish" / "fish_history",
    }.get(shell.lower())
