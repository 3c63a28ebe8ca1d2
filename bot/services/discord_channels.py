"""discord.py implementation of the channel and notification boundary."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import discord

from core.errors import ExternalResourceError
from services.channels import HistoryMessage, MessageContent, PermissionGrant, PermissionState, Principal, PrincipalKind
from views.rendering import ViewFactory, render_message

if TYPE_CHECKING:
    from discord.ext import commands

LOGGER = logging.getLogger(__name__)

_STATE_VALUE: dict[PermissionState, bool | None] = {
    PermissionState.ALLOW: True,
    PermissionState.DENY: False,
    PermissionState.INHERIT: None,
}


@contextmanager
def _discord_call(operation: str) -> Iterator[None]:
    try:
        yield
    except discord.NotFound as exc:
        raise ExternalResourceError(
            f"Discord could not find the resource ({operation}).", operation=operation, not_found=True
        ) from exc
    except discord.Forbidden as exc:
        raise ExternalResourceError(
            f"The bot is missing permissions to {operation.replace('_', ' ')}.", operation=operation
        ) from exc
    except discord.HTTPException as exc:
        raise ExternalResourceError(
            f"Discord rejected the request ({operation}, HTTP {exc.status}).", operation=operation
        ) from exc


def build_overwrite(grant: PermissionGrant) -> discord.PermissionOverwrite:
    view = _STATE_VALUE[grant.view]
    send = _STATE_VALUE[grant.send]
    manage = _STATE_VALUE[grant.manage]
    return discord.PermissionOverwrite(
        view_channel=view,
        read_message_history=view,
        send_messages=send,
        attach_files=send,
        embed_links=send,
        manage_channels=manage,
        manage_messages=manage,
    )


def _is_inherit_only(grant: PermissionGrant) -> bool:
    return all(state is PermissionState.INHERIT for state in (grant.view, grant.send, grant.manage))


class DiscordChannelManager:
    """Maps plain channel operations onto discord.py calls.

    Every failure surfaces as ``ExternalResourceError``; ``not_found`` is set when the
    target was removed out-of-band. Deleting a channel that is already gone succeeds.
    """

    def __init__(self, bot: commands.Bot, view_factory: ViewFactory | None = None) -> None:
        self.bot = bot
        self.view_factory = view_factory

    @property
    def bot_user_id(self) -> int:
        if self.bot.user is None:
            raise ExternalResourceError("The bot is not connected to Discord yet.", operation="bot_user")
        return self.bot.user.id

    async def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is not None:
            return guild
        with _discord_call("fetch_guild"):
            return await self.bot.fetch_guild(guild_id)

    async def _text_channel(self, channel_id: int) -> discord.TextChannel:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            with _discord_call("fetch_channel"):
                channel = await self.bot.fetch_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            raise ExternalResourceError(
                "That channel is not a text channel.", operation="fetch_channel", not_found=True
            )
        return channel

    async def _target(self, guild: discord.Guild, principal: Principal) -> discord.Role | discord.Member:
        if principal.kind is PrincipalKind.ROLE:
            role = guild.get_role(principal.id)
            if role is None:
                raise ExternalResourceError(
                    "That role no longer exists.", operation="resolve_role", not_found=True
                )
            return role
        member = guild.get_member(principal.id)
        if member is not None:
            return member
        with _discord_call("fetch_member"):
            return await guild.fetch_member(principal.id)

    async def create_channel(
        self,
        guild_id: int,
        name: str,
        parent_id: int | None,
        grants: list[PermissionGrant],
        reason: str | None = None,
    ) -> int:
        guild = await self._guild(guild_id)
        overwrites: dict[discord.Role | discord.Member | discord.Object, discord.PermissionOverwrite] = {}
        for grant in grants:
            if grant.principal.kind is PrincipalKind.ROLE:
                role = guild.get_role(grant.principal.id)
                if role is None:
                    LOGGER.warning(
                        "Skipping overwrite for missing role %s", grant.principal.id, extra={"guild_id": guild_id}
                    )
                    continue
                overwrites[role] = build_overwrite(grant)
            else:
                overwrites[guild.get_member(grant.principal.id) or discord.Object(id=grant.principal.id)] = (
                    build_overwrite(grant)
                )

        parent = guild.get_channel(parent_id) if parent_id else None
        if parent_id and not isinstance(parent, discord.CategoryChannel):
            LOGGER.warning(
                "Configured parent %s is not a channel category, creating at top level",
                parent_id,
                extra={"guild_id": guild_id},
            )
            parent = None

        with _discord_call("create_channel"):
            channel = await guild.create_text_channel(
                name=name,
                category=parent,
                overwrites=overwrites,
                reason=reason,
            )
        return channel.id

    async def rename_channel(self, channel_id: int, name: str) -> None:
        channel = await self._text_channel(channel_id)
        if channel.name == name:
            return
        with _discord_call("rename_channel"):
            await channel.edit(name=name)

    async def set_permission(self, channel_id: int, grant: PermissionGrant) -> None:
        channel = await self._text_channel(channel_id)
        target = await self._target(channel.guild, grant.principal)
        with _discord_call("set_permission"):
            if _is_inherit_only(grant):
                await channel.set_permissions(target, overwrite=None)
            else:
                await channel.set_permissions(target, overwrite=build_overwrite(grant))

    async def post_message(self, channel_id: int, content: MessageContent) -> int:
        channel = await self._text_channel(channel_id)
        rendered = render_message(content, self.view_factory)
        with _discord_call("post_message"):
            message = await channel.send(
                content=rendered.content,
                embed=rendered.embed,
                view=rendered.view,
                allowed_mentions=rendered.allowed_mentions,
                files=rendered.files,
            )
        return message.id

    async def edit_message(self, channel_id: int, message_id: int, content: MessageContent) -> None:
        channel = await self._text_channel(channel_id)
        rendered = render_message(content, self.view_factory)
        with _discord_call("edit_message"):
            await channel.get_partial_message(message_id).edit(
                content=rendered.content,
                embed=rendered.embed,
                view=rendered.view,
                allowed_mentions=rendered.allowed_mentions,
            )

    async def fetch_message(self, channel_id: int, message_id: int) -> int:
        channel = await self._text_channel(channel_id)
        with _discord_call("fetch_message"):
            message = await channel.fetch_message(message_id)
        return message.id

    async def fetch_history(self, channel_id: int, limit: int | None = None) -> list[HistoryMessage]:
        channel = await self._text_channel(channel_id)
        history: list[HistoryMessage] = []
        with _discord_call("read_message_history"):
            async for message in channel.history(limit=limit, oldest_first=True):
                history.append(
                    HistoryMessage(
                        author_id=message.author.id,
                        author_name=message.author.display_name,
                        content=message.clean_content,
                        created_at=message.created_at.isoformat(),
                        attachment_urls=[attachment.url for attachment in message.attachments],
                    )
                )
        return history

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> None:
        try:
            channel = await self._text_channel(channel_id)
        except ExternalResourceError as exc:
            if exc.not_found:
                return
            raise
        try:
            with _discord_call("delete_channel"):
                await channel.delete(reason=reason)
        except ExternalResourceError as exc:
            if not exc.not_found:
                raise

    async def channel_exists(self, channel_id: int) -> bool:
        if self.bot.get_channel(channel_id) is not None:
            return True
        try:
            await self.bot.fetch_channel(channel_id)
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            # Unknown is not the same as gone; keep treating the ticket as live.
            LOGGER.warning("Could not verify channel %s: %s", channel_id, exc)
        return True

    async def notify_user(self, user_id: int, content: MessageContent) -> bool:
        rendered = render_message(content)
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(content=rendered.content, embed=rendered.embed, files=rendered.files)
        except discord.HTTPException as exc:
            LOGGER.info("Direct message to %s failed: %s", user_id, exc)
            return False
        return True
