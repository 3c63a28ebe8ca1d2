from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    CategoryRepository,
    EventRepository,
    GuildConfigRepository,
    MessageTemplateRepository,
    TicketRepository,
)
from services.cache import CacheBackend, build_cache
from services.category_registry import CategoryRegistry
from services.collector import InteractionCollector
from services.config_store import ConfigStore
from services.config_wizard import ConfigurationWizard
from services.discord_channels import DiscordChannelManager
from services.message_templates import MessageTemplateStore
from services.panel_service import PanelService
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService
from views.ticket_controls import build_control_view

LOGGER = logging.getLogger(__name__)


class TicketBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=config.discord.allowed_mentions_everyone,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None
        self.collector = InteractionCollector()

        # Repositories and services are initialized during setup_hook.
        self.guild_config_repo: GuildConfigRepository
        self.category_repo: CategoryRepository
        self.template_repo: MessageTemplateRepository
        self.ticket_repo: TicketRepository
        self.event_repo: EventRepository

        self.config_store: ConfigStore
        self.categories: CategoryRegistry
        self.templates: MessageTemplateStore
        self.channels: DiscordChannelManager
        self.panel_service: PanelService
        self.ticket_service: TicketService
        self.wizard: ConfigurationWizard

    async def setup_hook(self) -> None:
        await self.database.connect()
        applied = await run_migrations(self.database, self.root_dir / "database" / "migrations")
        if applied:
            LOGGER.info("Applied migrations: %s", ", ".join(applied))
        self.cache = await build_cache(self.config.redis)

        self.guild_config_repo = GuildConfigRepository(self.database)
        self.category_repo = CategoryRepository(self.database)
        self.template_repo = MessageTemplateRepository(self.database)
        self.ticket_repo = TicketRepository(self.database)
        self.event_repo = EventRepository(self.database)

        tickets = self.config.tickets
        self.config_store = ConfigStore(self.guild_config_repo)
        self.categories = CategoryRegistry(
            self.category_repo,
            self.template_repo,
            self.cache,
            confirmation_ttl=tickets.confirm_timeout_seconds,
        )
        self.templates = MessageTemplateStore(self.template_repo)
        self.channels = DiscordChannelManager(self, view_factory=lambda controls: build_control_view(self, controls))
        self.panel_service = PanelService(self.config_store, self.categories, self.channels)
        self.ticket_service = TicketService(
            tickets,
            TicketServiceDeps(
                config_store=self.config_store,
                categories=self.categories,
                templates=self.templates,
                ticket_repo=self.ticket_repo,
                event_repo=self.event_repo,
                channels=self.channels,
                notifier=self.channels,
                cache=self.cache,
                transcripts=TranscriptService(self.config.transcripts, self.channels),
            ),
        )
        self.wizard = ConfigurationWizard(
            self.config_store,
            self.categories,
            self.templates,
            self.panel_service,
            self.collector,
            tickets,
        )

        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        self.collector.stop_all()
        if hasattr(self, "ticket_service"):
            # Let scheduled channel deletions finish while the gateway is still up.
            await self.ticket_service.wait_for_background_tasks()
        await super().close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
