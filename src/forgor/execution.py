"""Confirmation gating and hand-off to the user's shell."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from enum import Enum
from pathlib import Path

import click

from forgor.llm.types import DangerAssessment, DangerLevel
from forgor.runtime_logging import get_runtime_logger
from forgor.system.probe import shell_executable


class Gate(str, Enum):
    RUN = "run"
    CONFIRM = "confirm"
    TYPED_YES = "typed_yes"
    SKIP = "skip"


def decide(
    level: DangerLevel,
    *,
    force: bool = False,
    confirm: bool = False,
    allow_critical: bool = False,
) -> Gate:
    """How an execution request for a command at ``level`` must be gated.

    ``force`` (``-R``) skips prompts up to ``high``; ``critical`` still asks
    for a typed ``yes`` unless ``allow_critical`` is set as well.
    Without either ``force`` or ``confirm`` nothing is run.
    """
    if not (force or confirm):
        return Gate.SKIP
    if level is DangerLevel.CRITICAL:
        return Gate.RUN if force and allow_critical else Gate.TYPED_YES
    if level is DangerLevel.HIGH:
        return Gate.RUN if force else Gate.TYPED_YES
    return Gate.RUN if force else Gate.CONFIRM


def danger_banner(assessment: DangerAssessment) -> list[str]:
    lines = [f"Danger level: {assessment.level.value.upper()} - {assessment.reason}"]
    lines.extend(f"  factor: {factor}" for factor in assessment.factors)
    lines.extend(f"  mitigation: {mitigation}" for mitigation in assessment.mitigations)
    return lines


def ask(gate: Gate, command: str) -> bool:
    """Prompt on the terminal; an aborted prompt counts as a refusal."""
    try:
        if gate is Gate.CONFIRM:
            return click.confirm(f"Run `{command}`?", default=True, err=True)
        if gate is Gate.TYPED_YES:
            answer = click.prompt(
                "This command is dangerous. Type 'yes' to run it",
                default="",
                show_default=False,
                err=True,
            )
            return answer.strip().lower() == "yes"
    except click.Abort:
        return False
    return gate is Gate.RUN


def shell_argv(command: str, shell: str | None = None) -> list[str]:
    shell = shell or shell_executable()
    if Path(shell).name.lower() in ("cmd", "cmd.exe"):
        return [shell, "/c", command]
    return [shell, "-c", command]


def run_command(command: str, shell: str | None = None) -> int:
    argv = shell_argv(command, shell)
    get_runtime_logger().info("command.execute", shell=argv[0])
    try:
        completed = subprocess.run(argv, check=False)
    except OSError as exc:
        raise click.ClickException(f"failed to start {argv[0]}: {exc}") from exc
    return completed.returncode


class Executor:
    """Applies the gate for one command and runs it when allowed."""

    def __init__(
        self,
        *,
        force: bool = False,
        confirm: bool = False,
        allow_critical: bool = False,
        runner: Callable[[str], int] | None = None,
    ) -> None:
        self.force = force
        self.confirm = confirm
        self.allow_critical = allow_critical
        self.runner = runner or run_command

    def wants_execution(self) -> bool:
        return self.force or self.confirm

    def handle(self, command: str, assessment: DangerAssessment) -> int:
        """Exit status for the process: the command's, or 0 when skipped or declined."""
        logger = get_runtime_logger()
        gate = decide(
            assessment.level,
            force=self.force,
            confirm=self.confirm,
            allow_critical=self.allow_critical,
        )
        if gate is Gate.SKIP:
            return 0
        for line in danger_banner(assessment):
            click.echo(line, err=True)
        if gate is not Gate.RUN and not ask(gate, command):
            logger.info("command.cancelled", danger_level=assessment.level.value, gate=gate.value)
            click.echo("Cancelled; command not executed.", err=True)
            return 0
        status = self.runner(command)
        logger.info("command.finished", exit_code=status)
        return status
