from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import PropertyMock, patch

import httpx
from click.testing import CliRunner

from forgor.cli import main
from forgor.llm.base import BaseProvider
from forgor.system.cache import ContextCache, DiskStore, set_context_cache
from forgor.system.inventory import SystemContext, ToolInventory

CONFIG = """
default_profile: gpt
profiles:
  gpt:
    provider: openai
    api_key: sk-abcdef123
    model: gpt-4.1
  claude:
    provider: anthropic
    api_key: ak-test
    model: claude-3-5-sonnet-20241022
  broken:
    provider: cohere
    api_key: x
    model: command
"""


def openai_reply(content: str) -> dict[str, Any]:
    return {"model": "gpt-4.1", "choices": [{"finish_reason": "stop", "message": {"content": content}}]}


class CliE2ETests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        env = patch.dict(
            os.environ,
            {
                "FORGOR_CONFIG_HOME": str(self.root),
                "HOME": str(self.root),
                "SHELL": "/bin/bash",
                "FORGOR_LOG_LEVEL": "off",
            },
        )
        env.start()
        self.addCleanup(env.stop)
        for name in ("FORGOR_CONFIG", "FORGOR_VERBOSE", "OPENAI_API_KEY"):
            os.environ.pop(name, None)

        self.config_file = self.root / "forgor" / "config.yaml"
        self.config_file.parent.mkdir(parents=True)
        self.config_file.write_text(CONFIG, encoding="utf-8")

        self.builds = 0
        self.cache = ContextCache(self._build_context, DiskStore(self.root / "forgor" / "system-context.json"))
        set_context_cache(self.cache)
        self.addCleanup(set_context_cache, None)

        self.requests: list[httpx.Request] = []
        self.reply: tuple[int, Any] = (200, openai_reply("COMMAND: ls\nDANGER_LEVEL: safe\nDANGER_REASON: read-only\n"))
        client = httpx.Client(transport=httpx.MockTransport(self._handle))
        self.addCleanup(client.close)
        client_patch = patch.object(BaseProvider, "client", new_callable=PropertyMock, return_value=client)
        client_patch.start()
        self.addCleanup(client_patch.stop)

        self.runner = CliRunner()
        self.addCleanup(self._tmp.cleanup)

    def _build_context(self) -> SystemContext:
        self.builds += 1
        return SystemContext(
            os="linux",
            shell="bash",
            architecture="x86_64",
            user="dev",
            working_directory=str(self.root),
            tools=ToolInventory(system_commands=("grep", "find")),
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.reply
        return httpx.Response(status, json=body)

    def test_help(self) -> None:
        result = self.runner.invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Commands:", result.output)
        self.assertIn("config", result.output)

    def test_version_json(self) -> None:
        result = self.runner.invoke(main, ["version", "--json"])
        self.assertEqual(result.exit_code, 0)
        payload = json.loads(result.output)
        self.assertEqual(payload["name"], "forgor")
        self.assertIn("python", payload)

    def test_query_generates_command(self) -> None:
        self.reply = (
            200,
            openai_reply(
                'COMMAND: grep -rl "hello" --include="*.txt" .\nDANGER_LEVEL: safe\nDANGER_REASON: read-only search\n'
            ),
        )
        result = self.runner.invoke(main, ["find all txt files with hello in them"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(result.output.strip(), 'grep -rl "hello" --include="*.txt" .')
        self.assertEqual(len(self.requests), 1)
        last = (self.root / "forgor" / "last_command").read_text(encoding="utf-8").strip()
        self.assertEqual(last, 'grep -rl "hello" --include="*.txt" .')
        self.assertEqual(self.builds, 1)

    def test_json_output_includes_engine_assessment(self) -> None:
        self.reply = (200, openai_reply("COMMAND: rm -rf build\nDANGER_LEVEL: low\nDANGER_REASON: cleanup\n"))
        with patch("forgor.llm.context.current_directory", return_value="/home/dev/project"):
            result = self.runner.invoke(main, ["-f", "json", "clean the build dir"])

        self.assertEqual(result.exit_code, 0, result.output)
        payload = json.loads(result.output)
        self.assertEqual(payload["command"], "rm -rf build")
        self.assertEqual(payload["danger_level"], "low")
        self.assertEqual(payload["assessment"]["level"], "high")
        self.assertEqual(payload["profile"], "gpt")

    def test_rate_limit_exits_non_zero(self) -> None:
        self.reply = (429, {"error": {"type": "rate_limit_error", "message": "slow down"}})
        result = self.runner.invoke(main, ["-p", "claude", "list files"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: slow down", result.output)
        self.assertEqual(self.requests[0].url.path, "/v1/messages")

    def test_critical_command_needs_typed_confirmation_even_with_force(self) -> None:
        self.reply = (200, openai_reply("COMMAND: rm -rf /*\nDANGER_LEVEL: critical\nDANGER_REASON: wipes disk\n"))
        with patch("forgor.execution.run_command") as run_mock:
            result = self.runner.invoke(main, ["-R", "remove everything under root"], input="no\n")

        self.assertEqual(result.exit_code, 0, result.output)
        run_mock.assert_not_called()
        self.assertIn("Danger level: CRITICAL", result.output)
        self.assertIn("Cancelled", result.output)

    def test_allow_critical_runs_under_force(self) -> None:
        self.reply = (200, openai_reply("COMMAND: rm -rf /*\nDANGER_LEVEL: critical\nDANGER_REASON: wipes disk\n"))
        with patch("forgor.execution.run_command", return_value=0) as run_mock:
            result = self.runner.invoke(main, ["-R", "--allow-critical", "remove everything under root"])

        self.assertEqual(result.exit_code, 0, result.output)
        run_mock.assert_called_once_with("rm -rf /*")
        self.assertIn("Danger level: CRITICAL", result.output)

    def test_force_run_propagates_exit_status(self) -> None:
        with patch("forgor.execution.run_command", return_value=3) as run_mock:
            result = self.runner.invoke(main, ["-R", "list files"])

        self.assertEqual(result.exit_code, 3, result.output)
        run_mock.assert_called_once_with("ls")

    def test_local_only_fails_without_network(self) -> None:
        result = self.runner.invoke(main, ["--local-only", "list files"])
        self.assertNotEqual(result.exit_code, 0)
        self.assertEqual(self.requests, [])

    def test_explain_existing_command(self) -> None:
        self.reply = (200, openai_reply("Lists all files, including hidden ones."))
        result = self.runner.invoke(main, ["-e", "ls -la"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Lists all files, including hidden ones.", result.output)
        self.assertFalse((self.root / "forgor" / "last_command").exists())

    def test_explain_uses_host_os_for_mitigations(self) -> None:
        self.reply = (200, openai_reply("Deletes the build directory recursively."))
        with patch("forgor.pipeline.os_tag", return_value="darwin"):
            result = self.runner.invoke(main, ["-e", "-f", "json", "rm -rf build"])

        self.assertEqual(result.exit_code, 0, result.output)
        payload = json.loads(result.output)
        self.assertIn(
            "Consider using 'trash' command instead of rm on macOS",
            payload["assessment"]["mitigations"],
        )

    def test_missing_credential_is_reported(self) -> None:
        self.config_file.write_text(
            "default_profile: gpt\nprofiles:\n  gpt: {provider: openai, api_key: '${OPENAI_API_KEY}', model: gpt-4.1}\n",
            encoding="utf-8",
        )
        result = self.runner.invoke(main, ["list files"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("OPENAI_API_KEY", result.output)
        self.assertEqual(self.requests, [])

    def test_config_init_and_show(self) -> None:
        result = self.runner.invoke(main, ["config", "init"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("already exists", result.output)

        result = self.runner.invoke(main, ["config", "show"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("sk-a***", result.output)
        self.assertNotIn("sk-abcdef123", result.output)

        fresh = self.root / "other.yaml"
        result = self.runner.invoke(main, ["--config", str(fresh), "config", "init"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(fresh.exists())

    def test_set_default(self) -> None:
        result = self.runner.invoke(main, ["config", "set-default", "claude"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("default_profile: claude", self.config_file.read_text(encoding="utf-8"))

        result = self.runner.invoke(main, ["config", "set-default", "nope"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Available profiles", result.output)

    def test_list_providers(self) -> None:
        result = self.runner.invoke(main, ["config", "list-providers"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("* gpt: OpenAI", result.output)
        self.assertIn("broken: cohere (error:", result.output)
        self.assertIn("unsupported provider", result.output)

    def test_tools_add_refreshes_context(self) -> None:
        result = self.runner.invoke(main, ["config", "tools", "add", "cloud_tools", "terraform,pulumi"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Added to cloud_tools: terraform, pulumi", result.output)
        self.assertEqual(self.builds, 1)
        self.assertFalse(self.cache.refreshing)

        result = self.runner.invoke(main, ["config", "tools", "list", "cloud_tools"])
        self.assertIn("cloud_tools: terraform, pulumi", result.output)

        result = self.runner.invoke(main, ["config", "tools", "remove", "cloud_tools", "terraform"])
        self.assertEqual(result.exit_code, 0, result.output)
        result = self.runner.invoke(main, ["config", "tools", "clear", "all"])
        self.assertIn("Cleared 1 custom tool(s)", result.output)

        result = self.runner.invoke(main, ["config", "tools", "add", "gadgets", "x"])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("invalid category", result.output)

    def test_cache_commands(self) -> None:
        result = self.runner.invoke(main, ["config", "cache", "status"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Freshness: missing", result.output)

        result = self.runner.invoke(main, ["config", "cache", "refresh"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("System context refreshed", result.output)
        self.assertTrue((self.root / "forgor" / "system-context.json").exists())

        result = self.runner.invoke(main, ["config", "cache", "refresh", "--background"])
        self.assertIn("Background refresh started", result.output)
        self.assertEqual(self.builds, 2)

        result = self.runner.invoke(main, ["config", "cache", "location"])
        self.assertIn("Exists: yes", result.output)

        result = self.runner.invoke(main, ["config", "cache", "clear"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertFalse((self.root / "forgor" / "system-context.json").exists())

    def test_run_last_command(self) -> None:
        result = self.runner.invoke(main, ["run"])
        self.assertEqual(result.exit_code, 1)

        (self.root / "forgor" / "last_command").write_text("echo hi\n", encoding="utf-8")
        with patch("forgor.execution.run_command", return_value=0) as run_mock:
            result = self.runner.invoke(main, ["run"], input="y\n")
        self.assertEqual(result.exit_code, 0, result.output)
        run_mock.assert_called_once_with("echo hi")


if __name__ == "__main__":
    unittest.main()
