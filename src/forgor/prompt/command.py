"""User prompt assembly, with the per-vendor answer format appended."""

from __future__ import annotations

from collections.abc import Sequence

from forgor.llm.types import HistoryEntry, Request

STRUCTURED = "structured"
SEPARATED = "separated"


def format_history(entries: Sequence[HistoryEntry]) -> str:
    if not entries:
        return ""
    lines = ["", "Here is the recent command history (most recent last):"]
    for entry in entries:
        if entry.exit_code > 0:
            status = f" (FAILED with exit code {entry.exit_code})"
        elif entry.exit_code == 0:
            status = " (SUCCESS)"
        else:
            status = ""
        lines.append(f"- `{entry.command}`{status}")
    lines.append("")
    lines.append("Pay special attention to any FAILED commands and try to fix them based on the user's request.")
    return "\n".join(lines)


def build_command_prompt(request: Request) -> str:
    parts = [f"Convert this natural language request to a shell command:\n\n{request.query}"]
    cwd = request.context.working_directory
    if cwd:
        parts.append(f"\nCurrent directory: {cwd}")
    history = format_history(request.context.history)
    if history:
        parts.append(history)
    if request.context.user_hint:
        parts.append(f"\nAdditional context: {request.context.user_hint}")
    return "\n".join(parts)


def structured_instructions(include_explanation: bool) -> str:
    lines = ["", "Please respond in this exact format:", "COMMAND: [the shell command]"]
    if include_explanation:
        lines.append("EXPLANATION: [brief explanation]")
    lines.append("DANGER_LEVEL: [safe/low/medium/high/critical]")
    lines.append("DANGER_REASON: [reason for the danger level assessment]")
    return "\n".join(lines)


def separated_instructions(include_explanation: bool) -> str:
    if include_explanation:
        return "\nRespond with the command followed by a brief explanation separated by '||'."
    return "\nRespond with only the shell command, no explanation."


def build_vendor_prompt(request: Request, grammar: str) -> str:
    """Combined user prompt for a vendor speaking ``grammar``."""
    base = build_command_prompt(request)
    include = request.options.include_explanation
    if grammar == STRUCTURED:
        return base + "\n" + structured_instructions(include)
    return base + separated_instructions(include)


def build_explain_prompt(command: str) -> str:
    return (
        f"Explain what this shell command does:\n\n{command}\n\n"
        "Provide a clear, concise explanation of what this command accomplishes."
    )
