from __future__ import annotations

import io
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import discord

from services.channels import ControlSpec, MessageContent
from utils.constants import ButtonStyle
from utils.validators import color_to_int

ViewFactory = Callable[[list[ControlSpec]], discord.ui.View | None]

_STYLE_MAP: dict[ButtonStyle, discord.ButtonStyle] = {
    ButtonStyle.PRIMARY: discord.ButtonStyle.primary,
    ButtonStyle.SECONDARY: discord.ButtonStyle.secondary,
    ButtonStyle.SUCCESS: discord.ButtonStyle.success,
    ButtonStyle.DANGER: discord.ButtonStyle.danger,
}


def to_discord_style(style: ButtonStyle) -> discord.ButtonStyle:
    return _STYLE_MAP[style]


@dataclass(slots=True)
class RenderedMessage:
    content: str | None
    embed: discord.Embed | None
    view: discord.ui.View | None
    allowed_mentions: discord.AllowedMentions
    files: list[discord.File] = field(default_factory=list)


def render_embed(content: MessageContent) -> discord.Embed | None:
    if not (content.title or content.description or content.fields):
        return None
    embed = discord.Embed(
        title=content.title,
        description=content.description,
        color=color_to_int(content.color),
        timestamp=datetime.now(UTC),
    )
    for name, value in content.fields:
        embed.add_field(name=name, value=value or "-", inline=len(value or "") < 40)
    if content.footer:
        embed.set_footer(text=content.footer)
    return embed


def render_allowed_mentions(content: MessageContent) -> discord.AllowedMentions:
    return discord.AllowedMentions(
        everyone=False,
        users=[discord.Object(id=user_id) for user_id in content.mention_user_ids],
        roles=[discord.Object(id=role_id) for role_id in content.mention_role_ids],
    )


def render_message(content: MessageContent, view_factory: ViewFactory | None = None) -> RenderedMessage:
    view = view_factory(content.controls) if view_factory is not None and content.controls else None
    return RenderedMessage(
        content=content.content,
        embed=render_embed(content),
        view=view,
        allowed_mentions=render_allowed_mentions(content),
        files=render_files(content),
    )


def render_files(content: MessageContent) -> list[discord.File]:
    # discord.File consumes its buffer, so build fresh ones for every send.
    return [discord.File(io.BytesIO(item.data), filename=item.filename) for item in content.files]
