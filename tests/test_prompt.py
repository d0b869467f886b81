from __future__ import annotations

import os
import unittest

from forgor.llm.context import build_request_context
from forgor.llm.types import HistoryEntry, Request, RequestOptions
from forgor.prompt.command import SEPARATED, STRUCTURED, build_vendor_prompt, format_history
from forgor.prompt.system import build_system_prompt
from forgor.system.inventory import LanguageRuntime, SystemContext, ToolInventory


def make_system() -> SystemContext:
    return SystemContext(
        os="darwin",
        shell="zsh",
        architecture="arm64",
        user="dev",
        working_directory="/Users/dev/cache-builder",
        tools=ToolInventory(
            package_managers=("brew",),
            languages=(LanguageRuntime(name="python", version="3.12.1"),),
            container_tools=("docker",),
        ),
    )


class SystemPromptTests(unittest.TestCase):
    def test_includes_system_information(self) -> None:
        prompt = build_system_prompt(make_system())
        self.assertIn("for macOS using zsh", prompt)
        self.assertIn("- OS: macOS (arm64 architecture)", prompt)
        self.assertIn("- Package Managers: brew", prompt)
        self.assertIn("- Programming Languages: python", prompt)
        self.assertIn("Available Tools: Package managers: brew; Languages: python; Containers: docker", prompt)
        self.assertIn("alias gs='git status'", prompt)

    def test_minimal_inventory_summary(self) -> None:
        system = SystemContext(os="linux", shell="bash", architecture="x86_64")
        self.assertIn("Standard system commands available", build_system_prompt(system))


class CommandPromptTests(unittest.TestCase):
    def test_history_formatting(self) -> None:
        text = format_history([HistoryEntry("ls", 0), HistoryEntry("gti", 127), HistoryEntry("pwd", -1)])
        self.assertIn("- `ls` (SUCCESS)", text)
        self.assertIn("- `gti` (FAILED with exit code 127)", text)
        self.assertIn("- `pwd`\n", text)
        self.assertEqual(format_history([]), "")

    def test_vendor_instructions(self) -> None:
        context = build_request_context(make_system(), [], "inside a git repo", working_directory="/Users/dev/app")
        request = Request("list files", context, RequestOptions(include_explanation=True))

        structured = build_vendor_prompt(request, STRUCTURED)
        self.assertIn("list files", structured)
        self.assertIn("Current directory: /Users/dev/app", structured)
        self.assertIn("Additional context: inside a git repo", structured)
        self.assertIn("EXPLANATION: [brief explanation]", structured)
        self.assertIn("DANGER_REASON:", structured)

        separated = build_vendor_prompt(request, SEPARATED)
        self.assertIn("separated by '||'", separated)
        self.assertNotIn("DANGER_LEVEL", separated)

        request.options.include_explanation = False
        self.assertIn("Respond with only the shell command", build_vendor_prompt(request, SEPARATED))
        self.assertNotIn("EXPLANATION:", build_vendor_prompt(request, STRUCTURED))

    def test_request_context_uses_current_directory(self) -> None:
        context = build_request_context(make_system())
        self.assertEqual(context.working_directory, os.getcwd())

    def test_empty_query_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Request("  ", build_request_context(make_system()))


if __name__ == "__main__":
    unittest.main()
