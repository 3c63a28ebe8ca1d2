from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import discord

from services.outcomes import OperationOutcome, OutcomeKind


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def warning_embed(message: str, warnings: list[str]) -> discord.Embed:
    embed = make_embed(title="Done, with warnings", description=message, color=discord.Color.orange())
    embed.add_field(name="Warnings", value="\n".join(f"- {warning}" for warning in warnings)[:1024], inline=False)
    return embed


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def outcome_embed(outcome: OperationOutcome[Any]) -> discord.Embed:
    if outcome.kind is OutcomeKind.FAILURE:
        return error_embed(outcome.message)
    if outcome.kind is OutcomeKind.PARTIAL:
        return warning_embed(outcome.message, outcome.warnings)
    return success_embed(outcome.message)
