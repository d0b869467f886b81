"""Fast substring safety scan and code-fence cleanup for model output."""

from __future__ import annotations

import re

DANGEROUS_SUBSTRINGS = (
    "rm -rf /",
    "sudo rm",
    "dd if=",
    "mkfs",
    "format",
    "> /dev/",
    "shutdown",
    "reboot",
    ":(){ :|:& };:",
)

_OPENING_FENCE = re.compile(r"^```[\w+#.-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")


def check_command_safety(command: str) -> list[str]:
    lowered = command.lower()
    return [
        f"Potentially dangerous command detected: {pattern}"
        for pattern in DANGEROUS_SUBSTRINGS
        if pattern in lowered
    ]


def clean_command(command: str) -> str:
    """Strip surrounding Markdown code fences and whitespace."""
    text = command.strip()
    if "\n" not in text and text.startswith("```") and text.endswith("```") and len(text) > 6:
        return text[3:-3].strip()
    text = _OPENING_FENCE.sub("", text, count=1)
    text = _CLOSING_FENCE.sub("", text, count=1)
    text = text.strip()
    # Single backtick wrapping, e.g. `ls -la`
    if len(text) > 1 and text.startswith("`") and text.endswith("`") and "`" not in text[1:-1]:
        text = text[1:-1].strip()
    return text
