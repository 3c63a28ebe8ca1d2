from __future__ import annotations

import logging
from dataclasses import dataclass, field

from core.errors import ExternalResourceError
from database.models import SelectMenuConfig, TicketCategory
from services.category_registry import CategoryRegistry
from services.channels import ChannelResourceManager, ControlSpec, MessageContent
from services.config_store import ConfigStore
from services.outcomes import OperationOutcome, guarded
from utils.constants import (
    DEFAULT_PANEL_COLOR,
    DEFAULT_PANEL_DESCRIPTION,
    DEFAULT_PANEL_TITLE,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CategoryPrompt:
    """What the create button shows when the requester has to pick a category."""

    menu: SelectMenuConfig
    categories: list[TicketCategory] = field(default_factory=list)
    content: MessageContent | None = None


class PanelService:
    def __init__(
        self,
        config_store: ConfigStore,
        categories: CategoryRegistry,
        channels: ChannelResourceManager,
    ) -> None:
        self.config_store = config_store
        self.categories = categories
        self.channels = channels

    async def build_panel_content(self, guild_id: int) -> MessageContent:
        button = await self.config_store.get_button(guild_id)
        enabled = await self.categories.list(guild_id, enabled_only=True)
        content = MessageContent(
            title=button.embed_title or DEFAULT_PANEL_TITLE,
            description=button.embed_description or DEFAULT_PANEL_DESCRIPTION,
            color=button.embed_color or DEFAULT_PANEL_COLOR,
            controls=[ControlSpec(key="create", label=button.label, emoji=button.emoji, style=button.style)],
        )
        if len(enabled) > 1:
            lines = [
                f"{category.display_name}: {category.description}" if category.description else category.display_name
                for category in enabled
            ]
            content.fields.append(("Categories", "\n".join(lines)))
        return content

    async def category_prompt(self, guild_id: int) -> CategoryPrompt:
        menu = await self.config_store.get_select_menu(guild_id)
        enabled = await self.categories.list(guild_id, enabled_only=True)
        content = None
        if menu.embed_title or menu.embed_description:
            content = MessageContent(
                title=menu.embed_title,
                description=menu.embed_description,
                color=menu.embed_color or DEFAULT_PANEL_COLOR,
            )
        return CategoryPrompt(menu=menu, categories=enabled, content=content)

    async def deploy(self, guild_id: int, channel_id: int) -> OperationOutcome[int]:
        return await guarded(self._deploy(guild_id, channel_id))

    async def _deploy(self, guild_id: int, channel_id: int) -> OperationOutcome[int]:
        content = await self.build_panel_content(guild_id)
        button = await self.config_store.get_button(guild_id)
        message_id = button.message_id
        if button.channel_id == channel_id and message_id is not None and await self._panel_exists(channel_id, message_id):
            await self.channels.edit_message(channel_id, message_id, content)
        else:
            message_id = await self.channels.post_message(channel_id, content)
        await self.config_store.configure_button(guild_id, {"channel_id": channel_id, "message_id": message_id})
        if len(await self.categories.list(guild_id, enabled_only=True)) > 1:
            await self.config_store.configure_select_menu(guild_id, {"message_id": message_id})
        LOGGER.info("Deployed ticket panel to channel %s", channel_id, extra={"guild_id": guild_id})
        return OperationOutcome.done(f"Ticket panel posted in <#{channel_id}>.", message_id)

    async def _panel_exists(self, channel_id: int, message_id: int) -> bool:
        try:
            await self.channels.fetch_message(channel_id, message_id)
        except ExternalResourceError as exc:
            if exc.not_found:
                return False
            raise
        return True

    async def refresh(self, guild_id: int) -> list[str]:
        """Re-render the deployed panel in place. Failures come back as warnings."""
        button = await self.config_store.get_button(guild_id)
        if button.channel_id is None or button.message_id is None:
            return []
        content = await self.build_panel_content(guild_id)
        try:
            await self.channels.edit_message(button.channel_id, button.message_id, content)
        except ExternalResourceError as exc:
            if exc.not_found:
                LOGGER.info("Ticket panel message is gone, clearing reference", extra={"guild_id": guild_id})
                await self.config_store.configure_button(guild_id, {"message_id": None})
                await self.config_store.configure_select_menu(guild_id, {"message_id": None})
                return ["The ticket panel message no longer exists. Deploy it again."]
            LOGGER.warning("Could not refresh ticket panel: %s", exc, extra={"guild_id": guild_id})
            return ["The ticket panel could not be updated."]
        return []
