"""Immutable snapshot models for the host environment."""

from __future__ import annotations

import hashlib
import json
import shutil
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

TOOL_CATEGORIES: tuple[str, ...] = (
    "package_managers",
    "languages",
    "development_tools",
    "system_commands",
    "container_tools",
    "cloud_tools",
    "database_tools",
    "network_tools",
    "other",
)

OS_NAMES = {
    "darwin": "macOS",
    "linux": "Linux",
    "windows": "Windows",
    "freebsd": "FreeBSD",
    "openbsd": "OpenBSD",
    "netbsd": "NetBSD",
}


def _now() -> datetime:
    return datetime.now(UTC)


def unique(names: Iterable[str]) -> list[str]:
    """Drop blanks and repeats, keeping the first occurrence."""
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        name = name.strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


class LanguageRuntime(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "unknown"
    path: str = ""


class DevTool(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "unknown"
    path: str = ""
    description: str = ""


class ToolInventory(BaseModel):
    """Per-category tool presence.

    ``available`` always holds every name that appears in a category.
    """

    model_config = ConfigDict(frozen=True)

    package_managers: tuple[str, ...] = ()
    languages: tuple[LanguageRuntime, ...] = ()
    development_tools: tuple[DevTool, ...] = ()
    system_commands: tuple[str, ...] = ()
    container_tools: tuple[str, ...] = ()
    cloud_tools: tuple[str, ...] = ()
    database_tools: tuple[str, ...] = ()
    network_tools: tuple[str, ...] = ()
    other: tuple[str, ...] = ()
    available: dict[str, bool] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_availability(self) -> "ToolInventory":
        for names in self.categories().values():
            for name in names:
                # Frozen model: the dict itself is still ours to complete.
                self.available[name] = True
        return self

    def categories(self) -> dict[str, list[str]]:
        return {
            "package_managers": list(self.package_managers),
            "languages": [runtime.name for runtime in self.languages],
            "development_tools": [tool.name for tool in self.development_tools],
            "system_commands": list(self.system_commands),
            "container_tools": list(self.container_tools),
            "cloud_tools": list(self.cloud_tools),
            "database_tools": list(self.database_tools),
            "network_tools": list(self.network_tools),
            "other": list(self.other),
        }

    def is_available(self, tool: str) -> bool:
        return self.available.get(tool, False)

    def fingerprint(self) -> str:
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def summary(self) -> str:
        parts: list[str] = []
        if self.package_managers:
            parts.append("Package managers: " + ", ".join(self.package_managers))
        if self.languages:
            parts.append("Languages: " + ", ".join(runtime.name for runtime in self.languages))
        if self.container_tools:
            parts.append("Containers: " + ", ".join(self.container_tools))
        if self.cloud_tools:
            parts.append("Cloud tools: " + ", ".join(self.cloud_tools))
        if not parts:
            return "Standard system commands available"
        return "; ".join(parts)


class SystemContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    os: str
    shell: str
    architecture: str
    user: str = ""
    home_directory: str = ""
    working_directory: str = ""
    tools: ToolInventory = Field(default_factory=ToolInventory)
    environment: dict[str, str] = Field(default_factory=dict)
    collected_at: datetime = Field(default_factory=_now)

    @property
    def os_name(self) -> str:
        return OS_NAMES.get(self.os, self.os)

    def with_working_directory(self, cwd: str) -> "SystemContext":
        return self.model_copy(update={"working_directory": cwd})


def merge_custom_tools(
    inventory: ToolInventory,
    custom: Mapping[str, Iterable[str]],
    lookup: Callable[[str], str | None] = shutil.which,
) -> ToolInventory:
    """Return ``inventory`` with user-declared tools appended per category.

    Custom names keep their configured order after the detected ones; names
    already present are skipped. Tools missing from PATH are still recorded.
    """
    update: dict[str, Any] = {}
    for category in TOOL_CATEGORIES:
        extra = unique(custom.get(category, ()))
        if not extra:
            continue
        if category == "languages":
            known = {runtime.name for runtime in inventory.languages}
            added = [
                LanguageRuntime(name=name, path=lookup(name) or "")
                for name in extra
                if name not in known
            ]
            update[category] = inventory.languages + tuple(added)
        elif category == "development_tools":
            known = {tool.name for tool in inventory.development_tools}
            added_tools = [
                DevTool(name=name, path=lookup(name) or "", description="Custom tool")
                for name in extra
                if name not in known
            ]
            update[category] = inventory.development_tools + tuple(added_tools)
        else:
            current: tuple[str, ...] = getattr(inventory, category)
            update[category] = tuple(unique([*current, *extra]))

    if not update:
        return inventory
    data = inventory.model_dump()
    data.update(update)
    data["available"] = dict(inventory.available)
    return ToolInventory.model_validate(data)
