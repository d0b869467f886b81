"""User-declared custom tools, stored under ``custom_tools`` in the config."""

from __future__ import annotations

import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from forgor.config.models import Configuration
from forgor.config.store import ConfigError, ConfigStore
from forgor.system.inventory import TOOL_CATEGORIES, unique


@dataclass(slots=True)
class ToolChange:
    category: str
    changed: list[str] = field(default_factory=list)
    not_in_path: list[str] = field(default_factory=list)


def parse_tool_list(value: str | Iterable[str]) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return unique(value)


def check_category(category: str) -> str:
    if category not in TOOL_CATEGORIES:
        raise ConfigError(
            f"invalid category '{category}'. Valid categories: {', '.join(TOOL_CATEGORIES)}"
        )
    return category


def _with_category(config: Configuration, category: str, names: list[str]) -> Configuration:
    tools = config.custom_tools.model_copy(update={category: names})
    return config.model_copy(update={"custom_tools": tools})


def add_tools(
    store: ConfigStore,
    category: str,
    tools: str | Iterable[str],
    lookup: Callable[[str], str | None] = shutil.which,
) -> ToolChange:
    """Append tools to ``category``; tools missing from PATH are added anyway."""
    check_category(category)
    names = parse_tool_list(tools)
    if not names:
        raise ConfigError("no valid tools to add")
    config = store.load()
    current: list[str] = list(getattr(config.custom_tools, category))
    change = ToolChange(category=category)
    for name in names:
        if lookup(name) is None:
            change.not_in_path.append(name)
        if name not in current:
            current.append(name)
            change.changed.append(name)
    store.save(_with_category(config, category, current))
    return change


def remove_tools(store: ConfigStore, category: str, tools: str | Iterable[str]) -> ToolChange:
    check_category(category)
    names = parse_tool_list(tools)
    if not names:
        raise ConfigError("no tools specified to remove")
    config = store.load()
    current: list[str] = list(getattr(config.custom_tools, category))
    removed = [name for name in current if name in names]
    if not removed:
        raise ConfigError(f"no tools were found to remove from {category}")
    store.save(_with_category(config, category, [name for name in current if name not in names]))
    return ToolChange(category=category, changed=removed)


def clear_tools(store: ConfigStore, target: str) -> int:
    """Empty one category, or every category with ``all``; returns the count removed."""
    config = store.load()
    categories = TOOL_CATEGORIES if target == "all" else (check_category(target),)
    removed = sum(len(getattr(config.custom_tools, category)) for category in categories)
    tools = config.custom_tools.model_copy(update={category: [] for category in categories})
    store.save(config.model_copy(update={"custom_tools": tools}))
    return removed


def list_tools(config: Configuration, category: str | None = None) -> dict[str, list[str]]:
    mapping = config.custom_tools.as_mapping()
    if category:
        check_category(category)
        return {category: mapping[category]}
    return mapping
