"""Chat-platform boundary used by the ticket engine.

The engine only ever talks to the platform through :class:`ChannelResourceManager`
and :class:`Notifier`, passing plain data. The discord.py implementation lives in
``services.discord_channels``; tests use an in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from utils.constants import ButtonStyle


class PermissionState(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    INHERIT = "inherit"


class PrincipalKind(StrEnum):
    ROLE = "role"
    MEMBER = "member"


@dataclass(frozen=True, slots=True)
class Principal:
    id: int
    kind: PrincipalKind

    @classmethod
    def member(cls, user_id: int) -> Principal:
        return cls(id=user_id, kind=PrincipalKind.MEMBER)

    @classmethod
    def role(cls, role_id: int) -> Principal:
        return cls(id=role_id, kind=PrincipalKind.ROLE)

    @classmethod
    def everyone(cls, guild_id: int) -> Principal:
        # Discord's @everyone role shares the guild's id.
        return cls(id=guild_id, kind=PrincipalKind.ROLE)


@dataclass(frozen=True, slots=True)
class PermissionGrant:
    principal: Principal
    view: PermissionState = PermissionState.INHERIT
    send: PermissionState = PermissionState.INHERIT
    manage: PermissionState = PermissionState.INHERIT


@dataclass(slots=True)
class ControlSpec:
    key: str
    label: str
    emoji: str | None = None
    style: ButtonStyle = ButtonStyle.SECONDARY


@dataclass(slots=True)
class FileAttachment:
    filename: str
    data: bytes


@dataclass(slots=True)
class HistoryMessage:
    """One message read back from a ticket channel, oldest first."""

    author_id: int
    author_name: str
    content: str
    created_at: str
    attachment_urls: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MessageContent:
    """Platform-neutral message body; the presentation layer decides how it looks."""

    title: str | None = None
    description: str | None = None
    color: str | None = None
    content: str | None = None
    fields: list[tuple[str, str]] = field(default_factory=list)
    footer: str | None = None
    controls: list[ControlSpec] = field(default_factory=list)
    mention_role_ids: list[int] = field(default_factory=list)
    mention_user_ids: list[int] = field(default_factory=list)
    files: list[FileAttachment] = field(default_factory=list)


class ChannelResourceManager(Protocol):
    """External channel operations. Every method raises ``ExternalResourceError`` on failure."""

    @property
    def bot_user_id(self) -> int: ...

    async def create_channel(
        self,
        guild_id: int,
        name: str,
        parent_id: int | None,
        grants: list[PermissionGrant],
        reason: str | None = None,
    ) -> int: ...

    async def rename_channel(self, channel_id: int, name: str) -> None: ...

    async def set_permission(self, channel_id: int, grant: PermissionGrant) -> None: ...

    async def post_message(self, channel_id: int, content: MessageContent) -> int: ...

    async def edit_message(self, channel_id: int, message_id: int, content: MessageContent) -> None: ...

    async def fetch_message(self, channel_id: int, message_id: int) -> int: ...

    async def fetch_history(self, channel_id: int, limit: int | None = None) -> list[HistoryMessage]: ...

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> None: ...

    async def channel_exists(self, channel_id: int) -> bool: ...


class Notifier(Protocol):
    async def notify_user(self, user_id: int, content: MessageContent) -> bool: ...
