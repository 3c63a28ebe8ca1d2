from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from views.prompts import collect_interaction

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.config_store.ensure(guild.id)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.config_store.ensure(guild.id)
        await self.bot.categories.ensure_default(guild.id)
        LOGGER.info("Bootstrapped defaults for new guild %s", guild.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        # Tickets and configuration are kept so a rejoin picks up where it left off.
        LOGGER.info("Removed from guild %s", guild.id)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        collected = collect_interaction(interaction)
        if collected is None:
            return
        if self.bot.collector.dispatch(collected):
            LOGGER.debug("Routed interaction on %s to its waiter", collected.surface)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(EventsCog(bot))
