from __future__ import annotations

from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import pytest_asyncio

from core.config import TicketConfig, TranscriptConfig
from core.errors import ExternalResourceError
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    CategoryRepository,
    EventRepository,
    GuildConfigRepository,
    MessageTemplateRepository,
    TicketRepository,
)
from services.cache import MemoryCache
from services.category_registry import CategoryRegistry
from services.channels import HistoryMessage, MessageContent, PermissionGrant, PermissionState
from services.collector import InteractionCollector
from services.config_store import ConfigStore
from services.message_templates import MessageTemplateStore
from services.panel_service import PanelService
from services.ticket_service import TicketService, TicketServiceDeps
from services.transcript_service import TranscriptService

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "database" / "migrations"

GUILD_ID = 111
BOT_ID = 999
REQUESTER_ID = 201
STAFF_ID = 301


class FakeChannelManager:
    """In-memory channel platform. Operations listed in ``failing`` raise ``ExternalResourceError``."""

    def __init__(self) -> None:
        self.bot_user_id = BOT_ID
        self.channels: dict[int, str] = {}
        self.permissions: defaultdict[int, dict[int, PermissionGrant]] = defaultdict(dict)
        self.messages: defaultdict[int, list[MessageContent]] = defaultdict(list)
        self.edits: list[tuple[int, int, MessageContent]] = []
        self.deleted: list[int] = []
        self.failing: set[str] = set()
        self.missing_messages: set[int] = set()
        self._next_id = 5000

    def _allocate(self) -> int:
        self._next_id += 1
        return self._next_id

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise ExternalResourceError(f"Simulated {operation} failure.", operation=operation)

    async def create_channel(
        self,
        guild_id: int,
        name: str,
        parent_id: int | None,
        grants: list[PermissionGrant],
        reason: str | None = None,
    ) -> int:
        self._check("create_channel")
        channel_id = self._allocate()
        self.channels[channel_id] = name
        for grant in grants:
            self.permissions[channel_id][grant.principal.id] = grant
        return channel_id

    async def rename_channel(self, channel_id: int, name: str) -> None:
        self._check("rename_channel")
        self.channels[channel_id] = name

    async def set_permission(self, channel_id: int, grant: PermissionGrant) -> None:
        self._check("set_permission")
        inherit = PermissionState.INHERIT
        if grant.view is inherit and grant.send is inherit and grant.manage is inherit:
            self.permissions[channel_id].pop(grant.principal.id, None)
            return
        self.permissions[channel_id][grant.principal.id] = grant

    async def post_message(self, channel_id: int, content: MessageContent) -> int:
        self._check("post_message")
        self.messages[channel_id].append(content)
        return self._allocate()

    async def edit_message(self, channel_id: int, message_id: int, content: MessageContent) -> None:
        self._check("edit_message")
        if message_id in self.missing_messages:
            raise ExternalResourceError("Message is gone.", operation="edit_message", not_found=True)
        self.edits.append((channel_id, message_id, content))

    async def fetch_message(self, channel_id: int, message_id: int) -> int:
        if message_id in self.missing_messages:
            raise ExternalResourceError("Message is gone.", operation="fetch_message", not_found=True)
        return message_id

    async def fetch_history(self, channel_id: int, limit: int | None = None) -> list[HistoryMessage]:
        self._check("fetch_history")
        history = [
            HistoryMessage(
                author_id=self.bot_user_id,
                author_name="Ticket Bot",
                content=content.content or content.description or content.title or "",
                created_at=f"2026-01-01T00:00:{index:02d}+00:00",
            )
            for index, content in enumerate(self.messages[channel_id])
        ]
        return history[-limit:] if limit else history

    async def delete_channel(self, channel_id: int, reason: str | None = None) -> None:
        self._check("delete_channel")
        self.channels.pop(channel_id, None)
        self.deleted.append(channel_id)

    async def channel_exists(self, channel_id: int) -> bool:
        return channel_id in self.channels


@dataclass
class FakeNotifier:
    delivered: bool = True
    sent: list[tuple[int, MessageContent]] = field(default_factory=list)

    async def notify_user(self, user_id: int, content: MessageContent) -> bool:
        self.sent.append((user_id, content))
        return self.delivered


@dataclass
class Engine:
    db: Database
    cache: MemoryCache
    channels: FakeChannelManager
    notifier: FakeNotifier
    config_store: ConfigStore
    categories: CategoryRegistry
    templates: MessageTemplateStore
    tickets: TicketService
    panels: PanelService
    ticket_repo: TicketRepository
    event_repo: EventRepository
    collector: InteractionCollector


def build_engine(db: Database, config: TicketConfig | None = None) -> Engine:
    cache = MemoryCache()
    channels = FakeChannelManager()
    notifier = FakeNotifier()
    config = config or TicketConfig(delete_grace_seconds=0.01)
    template_repo = MessageTemplateRepository(db)
    ticket_repo = TicketRepository(db)
    event_repo = EventRepository(db)
    config_store = ConfigStore(GuildConfigRepository(db))
    categories = CategoryRegistry(CategoryRepository(db), template_repo, cache, confirmation_ttl=30)
    templates = MessageTemplateStore(template_repo)
    tickets = TicketService(
        config,
        TicketServiceDeps(
            config_store=config_store,
            categories=categories,
            templates=templates,
            ticket_repo=ticket_repo,
            event_repo=event_repo,
            channels=channels,
            notifier=notifier,
            cache=cache,
            transcripts=TranscriptService(TranscriptConfig(), channels),
        ),
    )
    return Engine(
        db=db,
        cache=cache,
        channels=channels,
        notifier=notifier,
        config_store=config_store,
        categories=categories,
        templates=templates,
        tickets=tickets,
        panels=PanelService(config_store, categories, channels),
        ticket_repo=ticket_repo,
        event_repo=event_repo,
        collector=InteractionCollector(),
    )


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(url=f"sqlite:///{tmp_path / 'tickets.db'}")
    await database.connect()
    await run_migrations(database, MIGRATIONS_DIR)
    yield database
    await database.close()


@pytest.fixture
def engine(db: Database) -> Engine:
    return build_engine(db)


@pytest_asyncio.fixture
async def tenant(engine: Engine) -> Engine:
    """Engine with the test guild configured and its default category created."""
    await engine.config_store.ensure(GUILD_ID)
    await engine.categories.ensure_default(GUILD_ID)
    return engine
