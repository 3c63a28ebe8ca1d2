from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import discord
from discord.ext import commands

from core.errors import PermissionDeniedError

F = TypeVar("F", bound=Callable[..., Any])


def is_admin(member: discord.Member) -> bool:
    return member.guild_permissions.administrator


def has_elevated_privilege(member: discord.Member) -> bool:
    """Deleting tickets needs Manage Channels (administrators have it implicitly)."""
    permissions = member.guild_permissions
    return permissions.administrator or permissions.manage_channels


def is_staff(
    member: discord.Member,
    staff_role_names: Iterable[str] = (),
    support_role_id: int | None = None,
) -> bool:
    if has_elevated_privilege(member):
        return True
    names = {name.lower() for name in staff_role_names}
    for role in member.roles:
        if role.name.lower() in names or (support_role_id is not None and role.id == support_role_id):
            return True
    return False


def guild_admin_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[Any]) -> bool:
        if ctx.guild is None or not isinstance(ctx.author, discord.Member):
            raise commands.NoPrivateMessage()
        if is_admin(ctx.author) or ctx.author.guild_permissions.manage_guild:
            return True
        raise PermissionDeniedError("You need Manage Server permission to configure tickets.")

    return commands.check(predicate)
