from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from core.errors import (
    CategoryNotFoundError,
    ConfirmationRequiredError,
    InvalidInputError,
    LastCategoryError,
)
from database.models import TicketCategory
from database.repositories import CategoryRepository, MessageTemplateRepository
from services.cache import CacheBackend
from utils.constants import (
    CATEGORY_NAME_MAX_LENGTH,
    DEFAULT_SETUP_CATEGORY,
    DEFAULT_SETUP_CATEGORY_DESCRIPTION,
    SELECT_MENU_MAX_OPTIONS,
)
from utils.validators import optional_text, parse_int, parse_snowflake, require_text

LOGGER = logging.getLogger(__name__)

CATEGORY_DESCRIPTION_MAX_LENGTH = 100
CONFIRMATION_KEY = "category:delete:{token}"


class CategoryRegistry:
    """Owns ticket categories and their message templates.

    A tenant always keeps at least one category. Deleting a category that has issued
    tickets needs a single-use confirmation token from :meth:`request_delete_confirmation`;
    the tickets themselves survive with their category reference cleared.
    """

    def __init__(
        self,
        category_repo: CategoryRepository,
        template_repo: MessageTemplateRepository,
        cache: CacheBackend,
        *,
        confirmation_ttl: int = 30,
    ) -> None:
        self.category_repo = category_repo
        self.template_repo = template_repo
        self.cache = cache
        self.confirmation_ttl = confirmation_ttl

    async def create(
        self,
        guild_id: int,
        name: str,
        *,
        description: str | None = None,
        emoji: str | None = None,
        support_role_id: int | str | None = None,
        parent_channel_id: int | str | None = None,
        is_enabled: bool = True,
    ) -> TicketCategory:
        if await self.category_repo.count_by_guild(guild_id) >= SELECT_MENU_MAX_OPTIONS:
            raise InvalidInputError(f"A server can have at most {SELECT_MENU_MAX_OPTIONS} ticket categories.")
        category = TicketCategory(
            id=str(uuid4()),
            guild_id=guild_id,
            name=require_text(name, "name", CATEGORY_NAME_MAX_LENGTH),
            description=optional_text(description, "description", CATEGORY_DESCRIPTION_MAX_LENGTH),
            emoji=optional_text(emoji, "emoji", 64),
            support_role_id=parse_snowflake(support_role_id, "support_role_id"),
            parent_channel_id=parse_snowflake(parent_channel_id, "parent_channel_id"),
            is_enabled=bool(is_enabled),
            position=await self.category_repo.next_position(guild_id),
        )
        await self.category_repo.create(category)
        await self.template_repo.ensure(category.id, None, None)
        LOGGER.info("Created ticket category %s (%s)", category.name, category.id, extra={"guild_id": guild_id})
        return category

    async def get(self, category_id: str, guild_id: int | None = None) -> TicketCategory:
        category = await self.category_repo.get(category_id)
        if category is None or (guild_id is not None and category.guild_id != guild_id):
            raise CategoryNotFoundError()
        return category

    async def list(self, guild_id: int, *, enabled_only: bool = False) -> list[TicketCategory]:
        return await self.category_repo.list_by_guild(guild_id, enabled_only=enabled_only)

    async def update(
        self, category_id: str, changes: Mapping[str, Any], guild_id: int | None = None
    ) -> TicketCategory:
        unknown = set(changes) - set(CategoryRepository.UPDATABLE_COLUMNS)
        if unknown:
            raise InvalidInputError(f"Unknown category setting(s): {', '.join(sorted(unknown))}.")
        await self.get(category_id, guild_id)

        values: dict[str, Any] = {}
        if "name" in changes:
            values["name"] = require_text(changes["name"], "name", CATEGORY_NAME_MAX_LENGTH)
        if "description" in changes:
            values["description"] = optional_text(
                changes["description"], "description", CATEGORY_DESCRIPTION_MAX_LENGTH
            )
        if "emoji" in changes:
            values["emoji"] = optional_text(changes["emoji"], "emoji", 64)
        for key in ("support_role_id", "parent_channel_id"):
            if key in changes:
                values[key] = parse_snowflake(changes[key], key)
        if "is_enabled" in changes:
            values["is_enabled"] = bool(changes["is_enabled"])
        if "position" in changes:
            values["position"] = parse_int(changes["position"], "position", minimum=0)

        await self.category_repo.update(category_id, values)
        updated = await self.get(category_id)
        LOGGER.info("Updated ticket category %s: %s", category_id, sorted(values), extra={"guild_id": updated.guild_id})
        return updated

    async def request_delete_confirmation(self, category_id: str) -> str:
        """Issue a single-use token that authorises deleting ``category_id``."""
        token = secrets.token_urlsafe(16)
        await self.cache.set(CONFIRMATION_KEY.format(token=token), category_id, ttl=self.confirmation_ttl)
        return token

    async def delete(
        self, category_id: str, guild_id: int, confirmation: str | None = None
    ) -> TicketCategory:
        category = await self.get(category_id, guild_id)
        if await self.category_repo.count_by_guild(guild_id) <= 1:
            raise LastCategoryError()

        if category.ticket_count > 0:
            if not confirmation:
                raise ConfirmationRequiredError()
            redeemed = await self.cache.pop(CONFIRMATION_KEY.format(token=confirmation))
            if redeemed != category_id:
                raise ConfirmationRequiredError("That confirmation expired. Confirm the deletion again.")

        if not await self.category_repo.delete_unless_last(category_id, guild_id):
            # Lost a race: either someone else deleted it or it became the last one.
            if await self.category_repo.get(category_id) is None:
                raise CategoryNotFoundError()
            raise LastCategoryError()

        LOGGER.info(
            "Deleted ticket category %s with %s issued ticket(s)",
            category_id,
            category.ticket_count,
            extra={"guild_id": guild_id},
        )
        return category

    async def ensure_default(self, guild_id: int, name: str = DEFAULT_SETUP_CATEGORY) -> TicketCategory:
        existing = await self.list(guild_id)
        if existing:
            return existing[0]
        return await self.create(guild_id, name, description=DEFAULT_SETUP_CATEGORY_DESCRIPTION, emoji="📩")
