from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import TicketBot
from core.errors import InvalidInputError
from core.extensions import reload_extensions
from utils.embeds import make_embed, outcome_embed, success_embed
from utils.permissions import guild_admin_only
from views.config_wizard import DiscordWizardSurface

LOGGER = logging.getLogger(__name__)


class AdminCog(commands.Cog):
    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot

    @commands.hybrid_group(name="admin", with_app_command=True, description="Ticket system administration.")
    @guild_admin_only()
    async def admin(self, ctx: commands.Context[TicketBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Admin Commands",
                    "`/admin setup [channel]`\n"
                    "`/admin config`\n"
                    "`/admin deploy [channel]`\n"
                    "`/admin enable` / `/admin disable`\n"
                    "`/admin stats`\n"
                    "`/admin reload`",
                ),
                mention_author=False,
            )

    @admin.command(name="setup", description="Create the default configuration and post the ticket panel.")
    @guild_admin_only()
    async def admin_setup(self, ctx: commands.Context[TicketBot], channel: discord.TextChannel | None = None) -> None:
        assert ctx.guild is not None
        target = channel or ctx.channel
        if not isinstance(target, discord.TextChannel):
            raise InvalidInputError("The panel needs a text channel.", "channel")
        await ctx.defer(ephemeral=True)
        await self.bot.config_store.ensure(ctx.guild.id)
        await self.bot.categories.ensure_default(ctx.guild.id)
        outcome = await self.bot.panel_service.deploy(ctx.guild.id, target.id)
        LOGGER.info("Ticket system set up by %s in %s", ctx.author.id, target.id, extra={"guild_id": ctx.guild.id})
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False, ephemeral=True)

    @admin.command(name="config", description="Open the interactive configuration menu.")
    @guild_admin_only()
    async def admin_config(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        if ctx.interaction is None:
            raise InvalidInputError("Run `/admin config` as a slash command; it uses forms.")
        await self.bot.config_store.ensure(ctx.guild.id)
        surface = DiscordWizardSurface(ctx.interaction, timeout=self.bot.config.tickets.form_timeout_seconds)
        await self.bot.wizard.run(ctx.guild.id, ctx.author.id, surface)

    @admin.command(name="deploy", description="Post the ticket panel to a channel.")
    @guild_admin_only()
    async def admin_deploy(self, ctx: commands.Context[TicketBot], channel: discord.TextChannel | None = None) -> None:
        assert ctx.guild is not None
        target = channel or ctx.channel
        if not isinstance(target, discord.TextChannel):
            raise InvalidInputError("The panel needs a text channel.", "channel")
        outcome = await self.bot.panel_service.deploy(ctx.guild.id, target.id)
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False, ephemeral=True)

    @admin.command(name="enable", description="Allow new tickets on this server.")
    @guild_admin_only()
    async def admin_enable(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        await self.bot.config_store.set_enabled(ctx.guild.id, True)
        await ctx.reply(embed=success_embed("Ticket creation enabled."), mention_author=False)

    @admin.command(name="disable", description="Stop accepting new tickets on this server.")
    @guild_admin_only()
    async def admin_disable(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        await self.bot.config_store.set_enabled(ctx.guild.id, False)
        await ctx.reply(
            embed=success_embed("Ticket creation disabled. Existing tickets keep working."),
            mention_author=False,
        )

    @admin.command(name="stats", description="Show ticket counts for this server.")
    @guild_admin_only()
    async def admin_stats(self, ctx: commands.Context[TicketBot]) -> None:
        assert ctx.guild is not None
        stats = await self.bot.ticket_service.get_stats(ctx.guild.id)
        embed = make_embed("Ticket Statistics", f"{stats.total} tickets in total.")
        embed.add_field(name="Open", value=str(stats.open), inline=True)
        embed.add_field(name="Closed", value=str(stats.closed), inline=True)
        embed.add_field(name="Archived", value=str(stats.archived), inline=True)
        if stats.category_counts:
            lines = [f"{name}: {count}" for name, count in sorted(stats.category_counts.items())]
            embed.add_field(name="By Category", value="\n".join(lines)[:1024], inline=False)
        await ctx.reply(embed=embed, mention_author=False)

    @admin.command(name="reload", description="Reload all enabled extensions.")
    @guild_admin_only()
    async def admin_reload(self, ctx: commands.Context[TicketBot]) -> None:
        await reload_extensions(self.bot, self.bot.config.enabled_extensions)
        await ctx.reply(embed=success_embed("Extensions reloaded."), mention_author=False)


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(AdminCog(bot))
