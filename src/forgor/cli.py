"""CLI entrypoint for forgor."""

from __future__ import annotations

import json
import platform
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
import yaml

from forgor.config.models import Configuration
from forgor.config.store import ConfigError, ConfigStore, LastCommandStore
from forgor.config.tools import add_tools, clear_tools, list_tools, remove_tools
from forgor.execution import Executor
from forgor.llm.context import current_directory
from forgor.llm.errors import LLMError, ProviderConfigError, cause_chain
from forgor.llm.factory import ProviderFactory
from forgor.pipeline import CommandPipeline, looks_like_command
from forgor.render import render
from forgor.runtime_logging import configure_runtime_logging, get_runtime_logger, verbose_from_env
from forgor.security.danger import DangerDetector
from forgor.system.cache import ContextCache, get_context_cache
from forgor.system.inventory import TOOL_CATEGORIES
from forgor.system.probe import SystemProber, os_tag
from forgor.updates import UPGRADE_HINT, UpdateError, latest_release
from forgor.version import __version__

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
GROUP_FLAGS = ("-h", "--help", "--version")


class AppState:
    """Per-invocation state shared by every command."""

    def __init__(self, config_path: Path | None, verbose: bool) -> None:
        self.store = ConfigStore(config_path)
        self.verbose = verbose
        self._config: Configuration | None = None

    @property
    def config(self) -> Configuration:
        if self._config is None:
            config, error = self.store.load_or_fallback()
            if error is not None and self.verbose:
                click.echo(f"Note: {error}; using built-in defaults (run 'forgor config init')", err=True)
            self._config = config
        return self._config

    def reload_config(self) -> Configuration:
        self._config = None
        return self.config

    def context_cache(self) -> ContextCache:
        prober = SystemProber(custom_tools=self.config.custom_tools.as_mapping())
        return get_context_cache(prober.build)


@contextmanager
def error_boundary(state: AppState) -> Iterator[None]:
    """Turn domain errors into a single ``Error:`` line (plus causes when verbose)."""
    try:
        yield
    except (LLMError, ConfigError, UpdateError) as exc:
        get_runtime_logger().error("cli.failed", error=str(exc), error_class=type(exc).__name__)
        if state.verbose:
            for line in cause_chain(exc):
                click.echo(f"  cause: {line}", err=True)
        raise click.ClickException(str(exc)) from exc


class QueryGroup(click.Group):
    """Routes ``forgor "<query>"`` to the ``ask`` command."""

    default_command = "ask"

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        rest = list(args)
        index = 0
        while index < len(rest):
            token = rest[index]
            if token == "--config":
                index += 2
            elif token.startswith("--config="):
                index += 1
            else:
                break
        if index < len(rest):
            head = rest[index]
            if head not in self.commands and head not in GROUP_FLAGS:
                rest.insert(index, self.default_command)
        return super().parse_args(ctx, rest)


@click.group(cls=QueryGroup, invoke_without_command=True, context_settings=CONTEXT_SETTINGS)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (default: FORGOR_CONFIG or the user config directory)",
)
@click.version_option(__version__, "--version", prog_name="forgor")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None) -> None:
    """forgor: turn plain-English requests into shell commands."""
    verbose = verbose_from_env()
    configure_runtime_logging(verbose=verbose)
    ctx.obj = AppState(config_path, verbose)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command("ask")
@click.argument("query", nargs=-1, required=True)
@click.option("-p", "--profile", help="Profile to use (default: default_profile)")
@click.option("-e", "--explain", "include_explanation", is_flag=True, help="Include an explanation")
@click.option("-f", "--format", "fmt", type=click.Choice(["plain", "json"]), help="Output format")
@click.option("-c", "--confirm", is_flag=True, help="Ask before running the command")
@click.option("-R", "--run", "force", is_flag=True, help="Run the command without a [Y/n] prompt")
@click.option("--allow-critical", is_flag=True, help="With -R, also run critical commands unprompted")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output and error causes")
@click.option("--history", "history_limit", type=click.IntRange(min=0), help="Recent commands to include")
@click.option("--local-only", is_flag=True, help="Refuse any network call")
@click.pass_obj
def ask(
    state: AppState,
    query: tuple[str, ...],
    profile: str | None,
    include_explanation: bool,
    fmt: str | None,
    confirm: bool,
    force: bool,
    allow_critical: bool,
    verbose: bool,
    history_limit: int | None,
    local_only: bool,
) -> None:
    """Generate a shell command for QUERY."""
    if verbose and not state.verbose:
        state.verbose = True
        configure_runtime_logging(verbose=True)
    if local_only:
        raise click.ClickException("--local-only: every configured provider needs a network call")
    text = " ".join(query).strip()
    if not text:
        raise click.UsageError("query must not be empty")

    config = state.config
    executor = Executor(
        force=force,
        confirm=confirm or config.output.confirm_before_run,
        allow_critical=allow_critical,
    )
    pipeline = CommandPipeline(config, cache=state.context_cache())
    with error_boundary(state):
        try:
            if include_explanation and looks_like_command(text):
                outcome = pipeline.explain(text, profile=profile)
            else:
                outcome = pipeline.generate(
                    text,
                    profile=profile,
                    include_explanation=include_explanation,
                    history_limit=history_limit,
                )
        finally:
            pipeline.close()

    render(
        outcome,
        fmt or config.output.format,
        verbose=state.verbose,
        show_assessment=not executor.wants_execution(),
    )
    if outcome.explained:
        return
    try:
        LastCommandStore().save(outcome.response.command)
    except OSError as exc:
        get_runtime_logger().warning("last_command.save_failed", error=str(exc))

    status = executor.handle(outcome.response.command, outcome.assessment)
    if status:
        sys.exit(status)


@main.command("run")
@click.option("-R", "--run", "force", is_flag=True, help="Skip the [Y/n] prompt")
@click.option("--allow-critical", is_flag=True, help="With -R, also run critical commands unprompted")
def run_last(force: bool, allow_critical: bool) -> None:
    """Run the most recently generated command."""
    command = LastCommandStore().load()
    if not command:
        raise click.ClickException("no previously generated command to run")
    click.echo(command)
    assessment = DangerDetector().assess(command, working_directory=current_directory(), os_tag=os_tag())
    status = Executor(force=force, confirm=True, allow_critical=allow_critical).handle(command, assessment)
    if status:
        sys.exit(status)


@main.group("config")
def config_group() -> None:
    """Manage the configuration file."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_obj
def config_init(state: AppState, force: bool) -> None:
    """Write the default configuration."""
    with error_boundary(state):
        state.store.init(force=force)
    click.echo(f"Configuration written to {state.store.path}")
    click.echo("Set OPENAI_API_KEY, ANTHROPIC_API_KEY or GOOGLE_AI_API_KEY, or edit the file.")


@config_group.command("show")
@click.pass_obj
def config_show(state: AppState) -> None:
    """Print the configuration with credentials masked."""
    with error_boundary(state):
        config = state.store.load()
    payload = config.model_dump(mode="json", exclude_none=True)
    for name, profile in config.profiles.items():
        payload["profiles"][name]["api_key"] = profile.masked_api_key()
    click.echo(f"# {state.store.path}")
    click.echo(yaml.safe_dump(payload, sort_keys=False, default_flow_style=False).rstrip())


@config_group.command("set-default")
@click.argument("profile")
@click.pass_obj
def config_set_default(state: AppState, profile: str) -> None:
    """Make PROFILE the default."""
    with error_boundary(state):
        config = state.store.set_default(profile)
    click.echo(f"Default profile set to '{profile}'")
    try:
        ProviderFactory(config).validate_provider(profile)
    except ProviderConfigError as exc:
        click.echo(f"Warning: profile '{profile}' does not validate yet: {exc.message}", err=True)


@config_group.command("list-providers")
@click.pass_obj
def config_list_providers(state: AppState) -> None:
    """List every profile and the provider behind it."""
    config = state.config
    factory = ProviderFactory(config)
    try:
        infos = factory.list_providers()
    finally:
        factory.close()
    for name, info in infos.items():
        marker = "*" if name == config.default_profile else " "
        profile = config.profiles[name]
        if "error" in info.metadata:
            click.echo(f"{marker} {name}: {profile.provider} (error: {info.metadata['error']})")
        else:
            click.echo(f"{marker} {name}: {info.name} model={profile.model}")


@config_group.group("tools")
def tools_group() -> None:
    """Manage custom tools added to the system context."""


def _refresh_after_change(state: AppState) -> None:
    state.reload_config()
    cache = state.context_cache()
    if cache.trigger_background_refresh():
        click.echo("Refreshing system context in the background...")
    cache.wait_for_refresh()


@tools_group.command("categories")
def tools_categories() -> None:
    """List valid tool categories."""
    for category in TOOL_CATEGORIES:
        click.echo(category)


@tools_group.command("list")
@click.argument("category", required=False)
@click.pass_obj
def tools_list(state: AppState, category: str | None) -> None:
    """List custom tools, optionally for one CATEGORY."""
    with error_boundary(state):
        mapping = list_tools(state.store.load(), category)
    shown = {name: tools for name, tools in mapping.items() if tools or category}
    if not shown:
        click.echo("No custom tools configured.")
        return
    for name, tools in shown.items():
        click.echo(f"{name}: {', '.join(tools) if tools else '(none)'}")


@tools_group.command("add")
@click.argument("category")
@click.argument("tools")
@click.pass_obj
def tools_add(state: AppState, category: str, tools: str) -> None:
    """Add comma-separated TOOLS to CATEGORY."""
    with error_boundary(state):
        change = add_tools(state.store, category, tools)
    if change.changed:
        click.echo(f"Added to {category}: {', '.join(change.changed)}")
    else:
        click.echo(f"All tools already present in {category}")
    for name in change.not_in_path:
        click.echo(f"Warning: '{name}' was not found in PATH", err=True)
    _refresh_after_change(state)


@tools_group.command("remove")
@click.argument("category")
@click.argument("tools")
@click.pass_obj
def tools_remove(state: AppState, category: str, tools: str) -> None:
    """Remove comma-separated TOOLS from CATEGORY."""
    with error_boundary(state):
        change = remove_tools(state.store, category, tools)
    click.echo(f"Removed from {category}: {', '.join(change.changed)}")
    _refresh_after_change(state)


@tools_group.command("clear")
@click.argument("target")
@click.pass_obj
def tools_clear(state: AppState, target: str) -> None:
    """Clear one category, or every category with 'all'."""
    with error_boundary(state):
        removed = clear_tools(state.store, target)
    click.echo(f"Cleared {removed} custom tool(s) from {target}")
    _refresh_after_change(state)


@config_group.group("cache")
def cache_group() -> None:
    """Inspect and manage the system-context cache."""


def _format_age(seconds: float | None) -> str:
    if seconds is None:
        return "n/a"
    if seconds < 60:
        return f"{seconds:.0f}s"
    return f"{int(seconds // 60)}m{int(seconds % 60):02d}s"


@cache_group.command("status")
@click.pass_obj
def cache_status(state: AppState) -> None:
    """Show cache age, freshness and refresh state."""
    cache = state.context_cache()
    status = cache.status()
    click.echo(f"Source: {status.source}")
    click.echo(f"Age: {_format_age(status.age_seconds)}")
    click.echo(f"Freshness: {status.freshness.value}")
    click.echo(f"Refresh in progress: {'yes' if status.refreshing else 'no'}")
    click.echo(f"Expiry: {status.expiry_seconds:.0f}s (grace {status.grace_seconds:.0f}s)")
    if status.expires_in is not None:
        click.echo(f"Expires in: {_format_age(max(0.0, status.expires_in))}")
    if cache.store is not None:
        info = cache.store.info()
        click.echo(f"Cache file: {info['file_path']}")
        if info["file_exists"]:
            click.echo(f"File size: {info['file_size']} bytes")
            click.echo(f"Modified: {time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(info['file_mtime']))}")


@cache_group.command("refresh")
@click.option("-b", "--background", is_flag=True, help="Refresh in a background thread")
@click.pass_obj
def cache_refresh(state: AppState, background: bool) -> None:
    """Rebuild the system context now."""
    cache = state.context_cache()
    if background:
        if cache.trigger_background_refresh():
            click.echo("Background refresh started")
        else:
            click.echo("A refresh is already in progress")
        cache.wait_for_refresh()
        return
    started = time.monotonic()
    context = cache.refresh()
    elapsed = time.monotonic() - started
    click.echo(f"System context refreshed in {elapsed:.2f}s ({len(context.tools.available)} tools)")


@cache_group.command("clear")
@click.pass_obj
def cache_clear(state: AppState) -> None:
    """Remove the in-memory and on-disk cache."""
    cache = state.context_cache()
    try:
        cache.clear()
    except OSError as exc:
        raise click.ClickException(f"failed to clear cache: {exc}") from exc
    click.echo("System context cache cleared")


@cache_group.command("location")
@click.pass_obj
def cache_location(state: AppState) -> None:
    """Show where the persistent cache lives."""
    cache = state.context_cache()
    if cache.store is None:
        click.echo("Persistent cache disabled")
        return
    info = cache.store.info()
    click.echo(f"Cache directory: {info['cache_dir']}")
    click.echo(f"Cache file: {info['file_path']}")
    click.echo(f"Lock file: {info['lock_file']}")
    click.echo(f"Exists: {'yes' if info['file_exists'] else 'no'}")
    if info["file_exists"]:
        click.echo(f"Size: {info['file_size']} bytes")


@main.command()
@click.option("--check", is_flag=True, help="Only report whether an update exists")
@click.pass_obj
def update(state: AppState, check: bool) -> None:
    """Check for a newer forgor release."""
    with error_boundary(state):
        release = latest_release()
    if not release.update_available:
        click.echo(f"forgor {release.current} is up to date")
        return
    click.echo(f"forgor {release.latest} is available (installed: {release.current})")
    if release.url:
        click.echo(release.url)
    if not check:
        click.echo(f"Upgrade with: {UPGRADE_HINT}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
def version(as_json: bool) -> None:
    """Show version information."""
    payload = {
        "name": "forgor",
        "version": __version__,
        "python": platform.python_version(),
        "platform": f"{sys.platform}/{platform.machine().lower()}",
    }
    if as_json:
        click.echo(json.dumps(payload, indent=2))
        return
    click.echo(f"forgor {payload['version']} (python {payload['python']}, {payload['platform']})")


if __name__ == "__main__":
    main()
