"""Plain and JSON output for a pipeline outcome."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import click

from forgor.execution import danger_banner
from forgor.llm.types import DangerLevel
from forgor.pipeline import Outcome


def outcome_payload(outcome: Outcome) -> dict[str, Any]:
    response = outcome.response
    assessment = outcome.assessment
    payload: dict[str, Any] = {
        "command": response.command,
        "explanation": response.explanation,
        "confidence": response.confidence,
        "danger_level": response.danger_level.value,
        "danger_reason": response.danger_reason,
        "assessment": {
            "level": assessment.level.value,
            "confidence": assessment.confidence,
            "reason": assessment.reason,
            "factors": list(assessment.factors),
            "mitigations": list(assessment.mitigations),
        },
        "warnings": list(response.warnings),
        "usage": asdict(response.usage) if response.usage else None,
        "profile": outcome.profile,
        "metadata": dict(response.metadata),
    }
    return payload


def render_json(outcome: Outcome) -> None:
    click.echo(json.dumps(outcome_payload(outcome), indent=2))


def render_plain(outcome: Outcome, *, verbose: bool = False, show_assessment: bool = True) -> None:
    response = outcome.response
    for warning in response.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if show_assessment and outcome.assessment.level.at_least(DangerLevel.MEDIUM):
        for line in danger_banner(outcome.assessment):
            click.echo(line, err=True)

    if outcome.explained:
        click.echo(response.explanation)
        return

    click.echo(response.command)
    if response.explanation:
        click.echo("")
        click.echo(f"Explanation: {response.explanation}")
    if verbose:
        click.echo(
            f"[{outcome.profile}] model={response.metadata.get('model', '')} "
            f"confidence={response.confidence:.2f}",
            err=True,
        )
        if response.usage:
            click.echo(
                f"tokens: prompt={response.usage.prompt_tokens} "
                f"completion={response.usage.completion_tokens} total={response.usage.total_tokens}",
                err=True,
            )


def render(outcome: Outcome, fmt: str, *, verbose: bool = False, show_assessment: bool = True) -> None:
    if fmt == "json":
        render_json(outcome)
    else:
        render_plain(outcome, verbose=verbose, show_assessment=show_assessment)
