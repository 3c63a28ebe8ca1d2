from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import CategoryNotFoundError, InvalidInputError, PermissionDeniedError
from database.models import TicketCategory, TicketRecord
from services.channels import MessageContent
from services.outcomes import OperationOutcome
from services.ticket_service import ticket_label
from utils.constants import TicketStatus
from utils.embeds import make_embed, outcome_embed, success_embed
from utils.permissions import has_elevated_privilege, is_staff
from views.rendering import render_files
from views.ticket_controls import TicketControlsView
from views.ticket_panel import TicketPanelView

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        # Persistent views: resolved by custom id, so one registration covers every message.
        self.bot.add_view(TicketPanelView(self.bot))
        self.bot.add_view(TicketControlsView(self.bot))

    async def _member(self, ctx: commands.Context[TicketBot]) -> discord.Member:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise InvalidInputError("Guild context is required.")
        return ctx.author

    async def _current_ticket(self, ctx: commands.Context[TicketBot]) -> tuple[TicketRecord, discord.Member]:
        member = await self._member(ctx)
        ticket = await self.bot.ticket_service.get_ticket_by_channel(ctx.channel.id)
        return ticket, member

    async def _require_staff(self, member: discord.Member, ticket: TicketRecord | None = None) -> None:
        support_role_id = None
        if ticket is not None and ticket.category_id is not None:
            try:
                support_role_id = (await self.bot.categories.get(ticket.category_id)).support_role_id
            except CategoryNotFoundError:
                support_role_id = None
        if not is_staff(member, self.bot.config.tickets.staff_role_names, support_role_id):
            raise PermissionDeniedError("Staff permission required.")

    async def _reply(self, ctx: commands.Context[TicketBot], outcome: OperationOutcome[Any]) -> None:
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False, ephemeral=not outcome.ok)

    async def _resolve_category(self, guild_id: int, query: str | None) -> TicketCategory:
        categories = await self.bot.categories.list(guild_id, enabled_only=True)
        if not categories:
            raise InvalidInputError("No ticket categories are available right now.")
        if query is None:
            if len(categories) > 1:
                names = ", ".join(f"`{category.name}`" for category in categories)
                raise InvalidInputError(f"Pick a category: {names}.", "category")
            return categories[0]
        wanted = query.strip().lower()
        for category in categories:
            if category.id == query or category.name.lower() == wanted:
                return category
        raise InvalidInputError(f"No enabled category named `{query}`.", "category")

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Ticket command group.")
    async def ticket(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/ticket create [category]` to open\n"
                    "`/ticket close [reason]` to close\n"
                    "`/ticket claim` to claim or release\n"
                    "`/ticket transcript` to export the conversation\n"
                    "`/ticket info` for details",
                ),
                mention_author=False,
            )

    @ticket.command(name="create", description="Open a ticket without using the panel.")
    async def ticket_create(self, ctx: commands.Context[TicketBot], *, category: str | None = None) -> None:
        member = await self._member(ctx)
        resolved = await self._resolve_category(member.guild.id, category)
        await ctx.defer(ephemeral=True)
        outcome = await self.bot.ticket_service.create_ticket(member.guild.id, member.id, resolved.id)
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False, ephemeral=True)

    @ticket.command(name="close", description="Close the current ticket.")
    async def ticket_close(self, ctx: commands.Context[TicketBot], *, reason: str | None = None) -> None:
        ticket, member = await self._current_ticket(ctx)
        if member.id != ticket.creator_id:
            await self._require_staff(member, ticket)
        await self._reply(ctx, await self.bot.ticket_service.close_ticket(ticket.id, member.id, reason))

    @ticket.command(name="reopen", description="Reopen the current ticket.")
    async def ticket_reopen(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, member = await self._current_ticket(ctx)
        await self._require_staff(member, ticket)
        await self._reply(ctx, await self.bot.ticket_service.reopen_ticket(ticket.id, member.id))

    @ticket.command(name="archive", description="Archive the current ticket.")
    async def ticket_archive(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, member = await self._current_ticket(ctx)
        await self._require_staff(member, ticket)
        await self._reply(ctx, await self.bot.ticket_service.archive_ticket(ticket.id, member.id))

    @ticket.command(name="delete", description="Delete the current ticket channel.")
    async def ticket_delete(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, member = await self._current_ticket(ctx)
        outcome = await self.bot.ticket_service.delete_ticket(
            ticket.id, member.id, privileged=has_elevated_privilege(member)
        )
        await self._reply(ctx, outcome)

    @ticket.command(name="claim", description="Claim the current ticket, or release your claim.")
    async def ticket_claim(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, member = await self._current_ticket(ctx)
        await self._require_staff(member, ticket)
        await self._reply(ctx, await self.bot.ticket_service.claim_ticket(ticket.id, member.id))

    @ticket.command(name="add", description="Give a member access to the current ticket.")
    async def ticket_add(self, ctx: commands.Context[TicketBot], member: discord.Member) -> None:
        ticket, actor = await self._current_ticket(ctx)
        await self._require_staff(actor, ticket)
        await self._reply(ctx, await self.bot.ticket_service.add_participant(ticket.id, member.id, actor.id))

    @ticket.command(name="remove", description="Remove a member from the current ticket.")
    async def ticket_remove(self, ctx: commands.Context[TicketBot], member: discord.Member) -> None:
        ticket, actor = await self._current_ticket(ctx)
        await self._require_staff(actor, ticket)
        await self._reply(ctx, await self.bot.ticket_service.remove_participant(ticket.id, member.id, actor.id))

    @ticket.command(name="transfer", description="Transfer ticket ownership.")
    async def ticket_transfer(self, ctx: commands.Context[TicketBot], member: discord.Member) -> None:
        ticket, actor = await self._current_ticket(ctx)
        await self._require_staff(actor, ticket)
        await self._reply(ctx, await self.bot.ticket_service.transfer_ownership(ticket.id, member.id, actor.id))

    @ticket.command(name="transcript", description="Export a transcript of the current ticket.")
    async def ticket_transcript(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, member = await self._current_ticket(ctx)
        if member.id != ticket.creator_id:
            await self._require_staff(member, ticket)
        await ctx.defer(ephemeral=True)
        outcome = await self.bot.ticket_service.generate_transcript(ticket.id)
        if not outcome.ok or outcome.value is None:
            await self._reply(ctx, outcome)
            return
        await ctx.reply(
            embed=outcome_embed(outcome),
            files=render_files(MessageContent(files=outcome.value.files)),
            mention_author=False,
            ephemeral=True,
        )

    @ticket.command(name="info", description="Show ticket info.")
    async def ticket_info(self, ctx: commands.Context[TicketBot]) -> None:
        ticket, _ = await self._current_ticket(ctx)
        category_name = "None"
        if ticket.category_id is not None:
            try:
                category_name = (await self.bot.categories.get(ticket.category_id)).name
            except CategoryNotFoundError:
                category_name = "Deleted category"
        embed = make_embed(
            title=f"Ticket {ticket_label(ticket)}",
            description=f"ID: `{ticket.id}`",
            color=discord.Color.blurple(),
        )
        embed.add_field(name="Status", value=ticket.status.value, inline=True)
        embed.add_field(name="Category", value=category_name, inline=True)
        embed.add_field(name="Owner", value=f"<@{ticket.creator_id}>", inline=True)
        embed.add_field(
            name="Claimed By", value=f"<@{ticket.claimed_by_id}>" if ticket.claimed_by_id else "None", inline=True
        )
        if ticket.closed_by_id:
            embed.add_field(name="Closed By", value=f"<@{ticket.closed_by_id}>", inline=True)
        if ticket.close_reason:
            embed.add_field(name="Close Reason", value=ticket.close_reason[:1000], inline=False)
        await ctx.reply(embed=embed, mention_author=False)

    @ticket.command(name="list", description="List tickets in this server.")
    async def ticket_list(self, ctx: commands.Context[TicketBot], status: str = TicketStatus.OPEN.value) -> None:
        member = await self._member(ctx)
        await self._require_staff(member)
        try:
            wanted = TicketStatus(status.lower())
        except ValueError:
            raise InvalidInputError("Status must be open, closed or archived.", "status") from None
        tickets = await self.bot.ticket_service.list_tickets(member.guild.id, wanted, limit=25)
        if not tickets:
            await ctx.reply(embed=success_embed(f"No {wanted.value} tickets found."), mention_author=False)
            return
        lines = [
            f"`{ticket_label(ticket)}` <#{ticket.channel_id}> | <@{ticket.creator_id}>"
            + (f" | claimed by <@{ticket.claimed_by_id}>" if ticket.claimed_by_id else "")
            for ticket in tickets
        ]
        await ctx.reply(
            embed=make_embed(f"{wanted.value.title()} Tickets", "\n".join(lines), color=discord.Color.blurple()),
            mention_author=False,
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
