from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from core.errors import BotError, send_error_response
from database.models import TicketCategory
from services.channels import ControlSpec
from services.panel_service import CategoryPrompt
from utils.constants import CUSTOM_ID_CREATE, DEFAULT_BUTTON_EMOJI, DEFAULT_BUTTON_LABEL, ButtonStyle
from utils.embeds import error_embed, outcome_embed
from views.rendering import render_embed, to_discord_style

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)

DEFAULT_CREATE_CONTROL = ControlSpec(
    key="create", label=DEFAULT_BUTTON_LABEL, emoji=DEFAULT_BUTTON_EMOJI, style=ButtonStyle.PRIMARY
)


async def _create_and_report(bot: TicketBot, interaction: discord.Interaction, category_id: str) -> None:
    assert interaction.guild is not None
    await interaction.response.defer(ephemeral=True, thinking=True)
    outcome = await bot.ticket_service.create_ticket(interaction.guild.id, interaction.user.id, category_id)
    await interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)


class CategorySelect(discord.ui.Select["CategorySelectView"]):
    def __init__(self, bot: TicketBot, prompt: CategoryPrompt) -> None:
        categories = prompt.categories[:25]
        options = [
            discord.SelectOption(
                label=category.name[:100],
                value=category.id,
                description=category.description[:100] if category.description else None,
                emoji=category.emoji or None,
            )
            for category in categories
        ]
        max_values = max(1, min(prompt.menu.max_values, len(options)))
        super().__init__(
            placeholder=prompt.menu.placeholder,
            options=options,
            min_values=min(prompt.menu.min_values, max_values),
            max_values=max_values,
        )
        self.bot = bot

    async def callback(self, interaction: discord.Interaction) -> None:
        # One ticket per requester, so only the first pick matters.
        await _create_and_report(self.bot, interaction, self.values[0])


class CategorySelectView(discord.ui.View):
    def __init__(self, bot: TicketBot, prompt: CategoryPrompt) -> None:
        super().__init__(timeout=bot.config.tickets.menu_timeout_seconds)
        self.add_item(CategorySelect(bot, prompt))


class TicketCreateButton(discord.ui.Button["TicketPanelView"]):
    def __init__(self, bot: TicketBot, control: ControlSpec) -> None:
        super().__init__(
            label=control.label,
            emoji=control.emoji,
            style=to_discord_style(control.style),
            custom_id=CUSTOM_ID_CREATE,
        )
        self.bot = bot

    async def callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return

        prompt = await self.bot.panel_service.category_prompt(interaction.guild.id)
        categories: list[TicketCategory] = prompt.categories
        if not categories:
            await interaction.response.send_message(
                embed=error_embed("No ticket categories are available right now."),
                ephemeral=True,
            )
            return
        if len(categories) == 1:
            await _create_and_report(self.bot, interaction, categories[0].id)
            return

        embed = render_embed(prompt.content) if prompt.content else None
        await interaction.response.send_message(
            content=None if embed else "Select a category to continue:",
            embed=embed,
            view=CategorySelectView(self.bot, prompt),
            ephemeral=True,
        )


class TicketPanelView(discord.ui.View):
    def __init__(self, bot: TicketBot, control: ControlSpec | None = None) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        self.add_item(TicketCreateButton(bot, control or DEFAULT_CREATE_CONTROL))

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        if isinstance(error, BotError):
            await send_error_response(interaction, error.user_message)
            return
        LOGGER.exception("Ticket panel interaction failed", exc_info=error)
        await send_error_response(interaction, "Could not open a ticket due to an unexpected error.")
