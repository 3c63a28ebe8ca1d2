from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from core.errors import BotError, CategoryNotFoundError, PermissionDeniedError, TimedOutError, send_error_response
from database.models import TicketRecord
from services.channels import ControlSpec
from services.ticket_service import CLOSED_CONTROLS, WELCOME_CONTROLS
from utils.constants import CONTROL_CUSTOM_IDS
from utils.embeds import error_embed, make_embed, outcome_embed
from utils.permissions import has_elevated_privilege, is_staff
from views.prompts import CONFIRM_ID, confirm_view
from views.rendering import to_discord_style
from views.ticket_panel import TicketPanelView

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)

ALL_CONTROLS: list[ControlSpec] = [*WELCOME_CONTROLS, *CLOSED_CONTROLS]


class CloseReasonModal(discord.ui.Modal, title="Close Ticket"):
    reason = discord.ui.TextInput(
        label="Close Reason",
        placeholder="Leave empty for no reason",
        style=discord.TextStyle.long,
        max_length=500,
        required=False,
    )

    def __init__(self, bot: TicketBot, ticket_id: str) -> None:
        super().__init__(timeout=bot.config.tickets.close_modal_timeout_seconds)
        self.bot = bot
        self.ticket_id = ticket_id

    async def on_submit(self, interaction: discord.Interaction) -> None:
        outcome = await self.bot.ticket_service.close_ticket(
            self.ticket_id, interaction.user.id, str(self.reason.value or "")
        )
        await interaction.response.send_message(embed=outcome_embed(outcome), ephemeral=not outcome.ok)


class TicketControlButton(discord.ui.Button["TicketControlsView"]):
    def __init__(self, control: ControlSpec) -> None:
        super().__init__(
            label=control.label,
            emoji=control.emoji,
            style=to_discord_style(control.style),
            custom_id=CONTROL_CUSTOM_IDS[control.key],
        )
        self.key = control.key

    async def callback(self, interaction: discord.Interaction) -> None:
        assert self.view is not None
        await self.view.handle(self.key, interaction)


class TicketControlsView(discord.ui.View):
    """Buttons posted inside ticket channels.

    Registered once without a message so the custom ids keep working after restarts; the
    ticket is always resolved from the channel the button was pressed in.
    """

    def __init__(self, bot: TicketBot, controls: list[ControlSpec] | None = None) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        for control in controls or ALL_CONTROLS:
            self.add_item(TicketControlButton(control))

    async def _support_role_id(self, ticket: TicketRecord) -> int | None:
        if ticket.category_id is None:
            return None
        try:
            category = await self.bot.categories.get(ticket.category_id)
        except CategoryNotFoundError:
            return None
        return category.support_role_id

    async def handle(self, key: str, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member) or interaction.channel_id is None:
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        member = interaction.user
        ticket = await self.bot.ticket_service.get_ticket_by_channel(interaction.channel_id)
        staff = is_staff(member, self.bot.config.tickets.staff_role_names, await self._support_role_id(ticket))

        if key == "close":
            if not staff and member.id != ticket.creator_id:
                raise PermissionDeniedError("Only staff or the ticket owner can close this ticket.")
            await interaction.response.send_modal(CloseReasonModal(self.bot, ticket.id))
            return
        if not staff:
            raise PermissionDeniedError("You must be staff to do that.")

        service = self.bot.ticket_service
        if key == "reopen":
            outcome = await service.reopen_ticket(ticket.id, member.id)
        elif key == "claim":
            outcome = await service.claim_ticket(ticket.id, member.id)
        elif key == "archive":
            outcome = await service.archive_ticket(ticket.id, member.id)
        elif key == "delete":
            await self._confirm_delete(interaction, member, ticket)
            return
        else:
            raise BotError(f"Unknown ticket control `{key}`.")
        await interaction.response.send_message(embed=outcome_embed(outcome), ephemeral=not outcome.ok)

    async def _confirm_delete(
        self, interaction: discord.Interaction, member: discord.Member, ticket: TicketRecord
    ) -> None:
        if not has_elevated_privilege(member):
            raise PermissionDeniedError("Only staff with Manage Channels can delete tickets.")
        timeout = self.bot.config.tickets.confirm_timeout_seconds
        await interaction.response.send_message(
            embed=make_embed(
                f"Delete ticket #{ticket.ticket_number:04d}?",
                "The channel will be removed. The ticket stays on record as closed.",
                color=discord.Color.red(),
            ),
            view=confirm_view(timeout, "Delete"),
            ephemeral=True,
        )
        prompt = await interaction.original_response()
        try:
            reply = await self.bot.collector.wait_for(str(prompt.id), member.id, timeout=timeout)
        except TimedOutError:
            await interaction.edit_original_response(embed=error_embed("Deletion cancelled: no response."), view=None)
            return

        answer: discord.Interaction = reply.raw
        if reply.value != CONFIRM_ID:
            await answer.response.edit_message(embed=error_embed("Deletion cancelled."), view=None)
            return
        outcome = await self.bot.ticket_service.delete_ticket(ticket.id, member.id, privileged=True)
        await answer.response.edit_message(embed=outcome_embed(outcome), view=None)

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        if isinstance(error, BotError):
            await send_error_response(interaction, error.user_message)
            return
        LOGGER.exception("Ticket control %s failed", getattr(item, "custom_id", None), exc_info=error)
        await send_error_response(interaction, "Action failed due to an unexpected error.")


def build_control_view(bot: TicketBot, controls: list[ControlSpec]) -> discord.ui.View | None:
    """View factory for rendered messages: the create control gets the panel view."""
    create = next((control for control in controls if control.key == "create"), None)
    if create is not None:
        return TicketPanelView(bot, create)
    ticket_controls = [control for control in controls if control.key in CONTROL_CUSTOM_IDS]
    return TicketControlsView(bot, ticket_controls) if ticket_controls else None
