"""Rule-based danger assessment for generated shell commands."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable

from forgor.llm.types import DangerAssessment, DangerLevel, highest

TEMP_DIR_MARKERS = ("/tmp", "/temp")

_COMBINATION_TOKENS = (
    re.compile(r"\bsudo\b"),
    re.compile(r"\brm\b"),
    re.compile(r">\s*/dev/"),
    re.compile(r"\bdd\b"),
)
_RM = re.compile(r"\brm\b")
_FORCE_FLAG = re.compile(r"(^|\s)-rf\b")
_DOWNLOAD = re.compile(r"\b(curl|wget)\b")
_PIPE_TO_SHELL = re.compile(r"\|\s*(sudo\s+)?(sh|bash|zsh|fish)\b")


@dataclass(slots=True, frozen=True)
class DangerRule:
    name: str
    pattern: re.Pattern[str]
    level: DangerLevel
    reason: str
    factors: tuple[str, ...] = ()
    mitigations: tuple[str, ...] = ()
    context_safe: tuple[str, ...] = ()


def _rule(name: str, pattern: str, level: DangerLevel, reason: str, factors: Iterable[str],
          mitigations: Iterable[str], context_safe: Iterable[str] = ()) -> DangerRule:
    return DangerRule(
        name=name,
        pattern=re.compile(pattern, re.IGNORECASE),
        level=level,
        reason=reason,
        factors=tuple(factors),
        mitigations=tuple(mitigations),
        context_safe=tuple(context_safe),
    )


DEFAULT_RULES: tuple[DangerRule, ...] = (
    _rule(
        "Recursive Force Delete",
        r"\brm\s+(-[a-z]*[rf][a-z]*|--recursive|--force)\b",
        DangerLevel.HIGH,
        "Recursive force deletion can permanently destroy data",
        ["Data loss", "Irreversible operation"],
        ["Use 'ls' first to preview", "Consider 'trash' command", "Make backups"],
    ),
    _rule(
        "Root Filesystem Operations",
        r"\b(rm|mv|cp|chmod|chown)\b.*\s/(\*|[^/\s]*\*)",
        DangerLevel.CRITICAL,
        "Operations on root filesystem can break the system",
        ["System corruption", "Boot failure"],
        ["Be extremely specific with paths", "Test in VM first"],
    ),
    _rule(
        "Disk Device Operations",
        r"\bdd\s+.*(if|of)=/dev/",
        DangerLevel.CRITICAL,
        "Direct disk operations can destroy data or corrupt systems",
        ["Data corruption", "System failure"],
        ["Double-check device paths", "Unmount devices first", "Use disk imaging tools"],
    ),
    _rule(
        "System Shutdown/Reboot",
        r"\b(shutdown|reboot|halt|poweroff)\b|\binit\s+[06]\b",
        DangerLevel.MEDIUM,
        "System restart will terminate all running processes",
        ["Work loss", "Service interruption"],
        ["Save work first", "Warn other users", "Schedule during maintenance window"],
    ),
    _rule(
        "Permissive Permissions",
        r"\bchmod\s+(-r\s+)?0?777\b",
        DangerLevel.HIGH,
        "777 permissions create security vulnerabilities",
        ["Security risk", "Unauthorized access"],
        ["Use specific permissions", "Apply principle of least privilege"],
    ),
    _rule(
        "Remote Code Execution",
        r"\b(curl|wget)\b.*\|\s*(sudo\s+)?(sh|bash|zsh|fish)\b",
        DangerLevel.CRITICAL,
        "Executing remote code without inspection is extremely dangerous",
        ["Malware execution", "System compromise"],
        ["Download and inspect first", "Use package managers", "Verify sources"],
    ),
    _rule(
        "Process Termination",
        r"\bkill(all)?\s+(-9|-kill|-s\s+kill|--signal[= ]+kill)\b",
        DangerLevel.MEDIUM,
        "Force killing processes can cause data loss",
        ["Data loss", "Corrupted files"],
        ["Try graceful termination first", "Check for important processes"],
    ),
    _rule(
        "Package Management Risks",
        r"\b(npm|pnpm|yarn|pip3?|gem)\s+(install|add)\b.*(--global|\s-g\b)|\bsudo\s+(npm|pip3?|gem|apt|apt-get|yum|dnf|pacman)\b",
        DangerLevel.MEDIUM,
        "Global package installation can affect system stability",
        ["System pollution", "Dependency conflicts"],
        ["Use virtual environments", "Check package reputation"],
    ),
    _rule(
        "Archive Extraction",
        # commands arrive lowercased, so tar's -C is matched as -c next to an extract flag
        r"\btar\s+(?=-?[a-z]*x|.*\s-[a-z]*x|.*--extract|.*--get).*(\s-c\s*/|--directory[= ]*/)"
        r"|\bunzip\b.*\s-d\s*/",
        DangerLevel.MEDIUM,
        "Extracting archives to root directories can overwrite system files",
        ["File overwriting", "System corruption"],
        ["Extract to safe directories", "List contents first"],
    ),
    _rule(
        "Network Service Binding",
        r"(--bind|--host|-b|-h)[= ]+0\.0\.0\.0\b",
        DangerLevel.LOW,
        "Binding to all interfaces exposes services to network",
        ["Security exposure", "Unauthorized access"],
        ["Bind to specific interfaces", "Use firewalls", "Enable authentication"],
    ),
    _rule(
        "Shell History Manipulation",
        r"\bhistory\s+-c\b|>\s*\$histfile|>\s*~?/?\S*\.(bash_|zsh_)?history\b|\brm\b.*\.(bash_|zsh_)?history\b",
        DangerLevel.LOW,
        "Manipulating shell history can hide malicious activity",
        ["Audit trail loss", "Forensic difficulty"],
        ["Keep separate audit logs", "Use centralized logging"],
    ),
)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


@dataclass(slots=True)
class _Verdict:
    level: DangerLevel = DangerLevel.SAFE
    reasons: list[str] = field(default_factory=list)
    factors: list[str] = field(default_factory=list)
    mitigations: list[str] = field(default_factory=list)


class DangerDetector:
    """Classifies a command as safe, low, medium, high or critical.

    Three passes run in order: the rule catalogue, adjustments for where the
    command runs, and heuristics over token combinations. The result never
    depends on anything but the command, the working directory and the OS tag.
    """

    def __init__(self, rules: Iterable[DangerRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def assess(self, command: str, working_directory: str = "", os_tag: str = "") -> DangerAssessment:
        command = command.strip()
        if not command:
            return DangerAssessment(level=DangerLevel.SAFE, confidence=1.0, reason="Empty command")

        lowered = command.lower()
        verdict = self._scan(lowered, working_directory)
        self._adjust_for_context(verdict, lowered, working_directory, os_tag)
        self._adjust_heuristics(verdict, lowered)

        return DangerAssessment(
            level=verdict.level,
            confidence=0.8,
            reason="; ".join(_dedupe(verdict.reasons)) or "Safe command",
            factors=_dedupe(verdict.factors),
            mitigations=_dedupe(verdict.mitigations),
        )

    def _scan(self, lowered: str, working_directory: str) -> _Verdict:
        verdict = _Verdict()
        for rule in self.rules:
            if not rule.pattern.search(lowered):
                continue
            if any(marker in working_directory for marker in rule.context_safe):
                continue
            verdict.level = highest(verdict.level, rule.level)
            verdict.reasons.append(rule.reason)
            verdict.factors.extend(rule.factors)
            verdict.mitigations.extend(rule.mitigations)
        return verdict

    @staticmethod
    def _adjust_for_context(verdict: _Verdict, lowered: str, working_directory: str, os_tag: str) -> None:
        if any(marker in working_directory for marker in TEMP_DIR_MARKERS):
            if verdict.level is DangerLevel.HIGH:
                verdict.level = DangerLevel.MEDIUM
                verdict.mitigations.append("Operating in temporary directory reduces risk")
        if working_directory == "/":
            if verdict.level is DangerLevel.MEDIUM:
                verdict.level = DangerLevel.HIGH
                verdict.factors.append("Operating in root directory")
        if os_tag == "darwin" and _RM.search(lowered):
            verdict.mitigations.append("Consider using 'trash' command instead of rm on macOS")

    @staticmethod
    def _adjust_heuristics(verdict: _Verdict, lowered: str) -> None:
        has_rm = bool(_RM.search(lowered))
        combined = sum(1 for token in _COMBINATION_TOKENS if token.search(lowered))
        # -rf only adds weight on its own; with rm it describes the same operation.
        if not has_rm and _FORCE_FLAG.search(lowered):
            combined += 1
        if combined >= 2 and verdict.level in (DangerLevel.MEDIUM, DangerLevel.HIGH):
            verdict.level = DangerLevel.HIGH if verdict.level is DangerLevel.MEDIUM else DangerLevel.CRITICAL
            verdict.factors.append("Multiple dangerous elements combined")

        if _DOWNLOAD.search(lowered) and _PIPE_TO_SHELL.search(lowered):
            verdict.level = DangerLevel.CRITICAL
            verdict.factors.append("Remote code execution via piped download")
            verdict.mitigations.append("Download and inspect scripts before execution")

        if has_rm and "*" in lowered:
            verdict.level = highest(verdict.level, DangerLevel.HIGH)
            verdict.factors.append("Wildcard deletion")


_default_detector: DangerDetector | None = None


def assess_command(command: str, working_directory: str = "", os_tag: str = "") -> DangerAssessment:
    global _default_detector
    if _default_detector is None:
        _default_detector = DangerDetector()
    return _default_detector.assess(command, working_directory, os_tag)
