from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from core.errors import InvalidInputError, PersistenceError
from database.models import ButtonConfig, SelectMenuConfig, TenantConfig
from database.repositories import GuildConfigRepository
from utils.constants import (
    BUTTON_LABEL_MAX_LENGTH,
    CATEGORY_NAME_MAX_LENGTH,
    EMBED_DESCRIPTION_MAX_LENGTH,
    EMBED_TITLE_MAX_LENGTH,
    SELECT_PLACEHOLDER_MAX_LENGTH,
)
from utils.validators import (
    normalize_color,
    optional_text,
    parse_button_style,
    parse_int,
    parse_snowflake,
    require_text,
    validate_select_bounds,
)

LOGGER = logging.getLogger(__name__)


def _clean_embed_fields(changes: dict[str, Any], source: Mapping[str, Any]) -> None:
    if "embed_title" in source:
        changes["embed_title"] = optional_text(source["embed_title"], "embed_title", EMBED_TITLE_MAX_LENGTH)
    if "embed_description" in source:
        changes["embed_description"] = optional_text(
            source["embed_description"], "embed_description", EMBED_DESCRIPTION_MAX_LENGTH
        )
    if "embed_color" in source:
        changes["embed_color"] = normalize_color(source["embed_color"])


class ConfigStore:
    """Per-tenant settings plus the tenant's button and select-menu appearance.

    All ``configure_*`` calls are partial merges: keys absent from ``changes`` keep their
    stored value. Passing ``None`` for an optional field clears it.
    """

    def __init__(self, repo: GuildConfigRepository) -> None:
        self.repo = repo

    async def get(self, guild_id: int) -> TenantConfig | None:
        return await self.repo.get(guild_id)

    async def ensure(self, guild_id: int) -> TenantConfig:
        if await self.repo.ensure(guild_id):
            LOGGER.info("Created ticket configuration", extra={"guild_id": guild_id})
        config = await self.repo.get(guild_id)
        if config is None:
            raise PersistenceError()
        return config

    async def update(self, guild_id: int, changes: Mapping[str, Any]) -> TenantConfig:
        values: dict[str, Any] = {}
        if "default_category_name" in changes:
            values["default_category_name"] = require_text(
                changes["default_category_name"], "default_category_name", CATEGORY_NAME_MAX_LENGTH
            )
        if "is_enabled" in changes:
            values["is_enabled"] = bool(changes["is_enabled"])
        self._reject_unknown(changes, {"default_category_name", "is_enabled"})
        await self.ensure(guild_id)
        await self.repo.update(guild_id, values)
        return await self.ensure(guild_id)

    async def set_enabled(self, guild_id: int, enabled: bool) -> TenantConfig:
        config = await self.update(guild_id, {"is_enabled": enabled})
        LOGGER.info("Ticket system %s", "enabled" if enabled else "disabled", extra={"guild_id": guild_id})
        return config

    async def get_button(self, guild_id: int) -> ButtonConfig:
        button = await self.repo.get_button(guild_id)
        if button is None:
            await self.ensure(guild_id)
            button = await self.repo.get_button(guild_id)
        if button is None:
            raise PersistenceError()
        return button

    async def configure_button(self, guild_id: int, changes: Mapping[str, Any]) -> ButtonConfig:
        self._reject_unknown(changes, set(GuildConfigRepository.BUTTON_COLUMNS))
        values: dict[str, Any] = {}
        if "label" in changes:
            values["label"] = require_text(changes["label"], "label", BUTTON_LABEL_MAX_LENGTH)
        if "emoji" in changes:
            values["emoji"] = require_text(changes["emoji"], "emoji", 64)
        if "style" in changes:
            values["style"] = parse_button_style(changes["style"])
        for key in ("message_id", "channel_id", "log_channel_id"):
            if key in changes:
                values[key] = parse_snowflake(changes[key], key)
        _clean_embed_fields(values, changes)

        await self.ensure(guild_id)
        await self.repo.update_button(guild_id, values)
        LOGGER.info("Updated ticket button: %s", sorted(values), extra={"guild_id": guild_id})
        return await self.get_button(guild_id)

    async def get_select_menu(self, guild_id: int) -> SelectMenuConfig:
        menu = await self.repo.get_select_menu(guild_id)
        if menu is None:
            await self.ensure(guild_id)
            menu = await self.repo.get_select_menu(guild_id)
        if menu is None:
            raise PersistenceError()
        return menu

    async def configure_select_menu(self, guild_id: int, changes: Mapping[str, Any]) -> SelectMenuConfig:
        self._reject_unknown(changes, set(GuildConfigRepository.SELECT_MENU_COLUMNS))
        current = await self.get_select_menu(guild_id)
        values: dict[str, Any] = {}
        if "placeholder" in changes:
            values["placeholder"] = require_text(
                changes["placeholder"], "placeholder", SELECT_PLACEHOLDER_MAX_LENGTH
            )
        if "message_id" in changes:
            values["message_id"] = parse_snowflake(changes["message_id"], "message_id")
        if "min_values" in changes or "max_values" in changes:
            min_values = parse_int(changes.get("min_values", current.min_values), "min_values")
            max_values = parse_int(changes.get("max_values", current.max_values), "max_values")
            validate_select_bounds(min_values, max_values)
            values["min_values"] = min_values
            values["max_values"] = max_values
        _clean_embed_fields(values, changes)

        await self.repo.update_select_menu(guild_id, values)
        LOGGER.info("Updated select menu: %s", sorted(values), extra={"guild_id": guild_id})
        return await self.get_select_menu(guild_id)

    async def delete(self, guild_id: int) -> bool:
        deleted = await self.repo.delete(guild_id)
        if deleted:
            LOGGER.info("Deleted ticket configuration", extra={"guild_id": guild_id})
        return deleted

    @staticmethod
    def _reject_unknown(changes: Mapping[str, Any], allowed: set[str]) -> None:
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidInputError(f"Unknown setting(s): {', '.join(sorted(unknown))}.")
