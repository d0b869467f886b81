from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from forgor.config.models import Configuration, Profile, default_configuration
from forgor.config.store import ConfigError, ConfigStore, LastCommandStore
from forgor.config.tools import add_tools, clear_tools, list_tools, parse_tool_list, remove_tools
from forgor.paths import config_path
from forgor.system.inventory import ToolInventory, merge_custom_tools

SAMPLE = """
default_profile: work
profiles:
  work:
    provider: OpenAI
    api_key: sk-abcdef123456
    model: gpt-4.1
  home:
    provider: local
    endpoint: http://localhost:11434
    model: llama3
history:
  max_commands: 5
unknown_section: true
"""


class ConfigStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "config.yaml"
        self.store = ConfigStore(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_load_applies_defaults_and_ignores_unknown_keys(self) -> None:
        self.path.write_text(SAMPLE, encoding="utf-8")
        config = self.store.load()
        self.assertEqual(config.default_profile, "work")
        self.assertEqual(config.profiles["work"].provider, "openai")
        self.assertEqual(config.profiles["work"].max_tokens, 450)
        self.assertEqual(config.history.max_commands, 5)
        self.assertEqual(config.history.shells, ["bash", "zsh", "fish"])
        self.assertTrue(config.security.redact_sensitive)
        self.assertEqual(config.output.format, "plain")
        self.assertEqual(config.custom_tools.total(), 0)

    def test_invalid_files(self) -> None:
        with self.assertRaises(ConfigError):
            self.store.load()
        self.path.write_text("default_profile: [unclosed", encoding="utf-8")
        with self.assertRaises(ConfigError):
            self.store.load()
        self.path.write_text("default_profile: nope\nprofiles: {}\n", encoding="utf-8")
        with self.assertRaises(ConfigError) as caught:
            self.store.load()
        self.assertIn("default profile 'nope' not found", str(caught.exception))
        self.path.write_text(
            "default_profile: a\nprofiles:\n  a: {provider: openai, temperature: 3}\n",
            encoding="utf-8",
        )
        with self.assertRaises(ConfigError):
            self.store.load()

    def test_fallback_when_missing(self) -> None:
        config, error = self.store.load_or_fallback()
        self.assertIsInstance(error, ConfigError)
        self.assertEqual(config.default_profile, "openai")
        self.assertEqual(config.profiles["openai"].api_key, "${OPENAI_API_KEY}")
        self.assertEqual(config.profiles["openai"].model, "gpt-4.1")

    def test_init_refuses_to_overwrite(self) -> None:
        config = self.store.init()
        self.assertEqual(config.default_profile, "gemini")
        self.assertEqual(set(config.profiles), {"openai", "anthropic", "gemini", "local"})
        with self.assertRaises(ConfigError):
            self.store.init()
        self.store.init(force=True)
        self.assertEqual(self.store.load(), default_configuration())

    def test_saved_file_is_yaml_with_placeholders(self) -> None:
        self.store.init()
        data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        self.assertEqual(data["profiles"]["anthropic"]["api_key"], "${ANTHROPIC_API_KEY}")
        self.assertNotIn("endpoint", data["profiles"]["openai"])
        self.assertEqual(list(self.path.parent.glob("*.tmp")), [])

    def test_set_default(self) -> None:
        self.path.write_text(SAMPLE, encoding="utf-8")
        self.assertEqual(self.store.set_default("home").default_profile, "home")
        self.assertEqual(self.store.load().default_profile, "home")
        with self.assertRaises(ConfigError) as caught:
            self.store.set_default("missing")
        self.assertIn("home, work", str(caught.exception))

    def test_masked_api_key(self) -> None:
        self.assertEqual(Profile(provider="openai", api_key="sk-abcdef").masked_api_key(), "sk-a***")
        self.assertEqual(Profile(provider="openai", api_key="${KEY}").masked_api_key(), "${KEY}")

    def test_config_path_environment(self) -> None:
        with patch.dict(os.environ, {"FORGOR_CONFIG": str(self.path)}):
            self.assertEqual(config_path(), self.path)
        with patch.dict(os.environ, {"FORGOR_CONFIG_HOME": self._tmp.name}):
            os.environ.pop("FORGOR_CONFIG", None)
            self.assertEqual(config_path(), Path(self._tmp.name) / "forgor" / "config.yaml")

    def test_last_command_roundtrip(self) -> None:
        store = LastCommandStore(Path(self._tmp.name) / "last_command")
        self.assertIsNone(store.load())
        store.save("ls -la\n")
        self.assertEqual(store.load(), "ls -la")


class CustomToolsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = ConfigStore(Path(self._tmp.name) / "config.yaml")
        self.store.init()
        self.lookup = {"terraform": "/usr/bin/terraform"}.get

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_parse_tool_list(self) -> None:
        self.assertEqual(parse_tool_list(" a, b,,a ,c"), ["a", "b", "c"])

    def test_add_keeps_tools_missing_from_path(self) -> None:
        change = add_tools(self.store, "cloud_tools", "terraform,pulumi", lookup=self.lookup)
        self.assertEqual(change.changed, ["terraform", "pulumi"])
        self.assertEqual(change.not_in_path, ["pulumi"])
        self.assertEqual(self.store.load().custom_tools.cloud_tools, ["terraform", "pulumi"])

        again = add_tools(self.store, "cloud_tools", "terraform", lookup=self.lookup)
        self.assertEqual(again.changed, [])

    def test_add_rejects_bad_input(self) -> None:
        with self.assertRaises(ConfigError):
            add_tools(self.store, "gadgets", "x", lookup=self.lookup)
        with self.assertRaises(ConfigError):
            add_tools(self.store, "other", " , ", lookup=self.lookup)

    def test_remove_and_clear(self) -> None:
        add_tools(self.store, "other", "jq,yq,fx", lookup=self.lookup)
        add_tools(self.store, "languages", "zig", lookup=self.lookup)
        change = remove_tools(self.store, "other", "yq")
        self.assertEqual(change.changed, ["yq"])
        self.assertEqual(list_tools(self.store.load(), "other"), {"other": ["jq", "fx"]})
        with self.assertRaises(ConfigError):
            remove_tools(self.store, "other", "yq")

        self.assertEqual(clear_tools(self.store, "other"), 2)
        self.assertEqual(self.store.load().custom_tools.languages, ["zig"])
        self.assertEqual(clear_tools(self.store, "all"), 1)
        self.assertEqual(self.store.load().custom_tools.total(), 0)

    def test_merge_into_inventory(self) -> None:
        config = Configuration.model_validate(
            {
                "default_profile": "a",
                "profiles": {"a": {"provider": "openai"}},
                "custom_tools": {"languages": ["zig"], "other": ["jq", "jq"], "development_tools": ["just"]},
            }
        )
        inventory = ToolInventory(other=("fzf",))
        merged = merge_custom_tools(inventory, config.custom_tools.as_mapping(), lookup=lambda name: None)
        self.assertEqual(merged.other, ("fzf", "jq"))
        self.assertEqual(merged.languages[0].name, "zig")
        self.assertEqual(merged.development_tools[0].description, "Custom tool")
        self.assertTrue(merged.is_available("just"))
        self.assertNotEqual(merged.fingerprint(), inventory.fingerprint())


if __name__ == "__main__":
    unittest.main()
