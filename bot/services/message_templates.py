from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from core.errors import InvalidInputError
from database.models import MessageTemplate, TicketCategory
from database.repositories import MessageTemplateRepository
from utils.constants import DEFAULT_CLOSE_MESSAGE, DEFAULT_WELCOME_MESSAGE, TEMPLATE_MAX_LENGTH
from utils.validators import optional_text

LOGGER = logging.getLogger(__name__)

PLACEHOLDERS = ("{category}", "{user}", "{ticket}")


def render_template(text: str, *, category: str, user_id: int | None = None, ticket_number: int | None = None) -> str:
    # Plain replacement: stray braces typed by admins must never break rendering.
    rendered = text.replace("{category}", category)
    rendered = rendered.replace("{user}", f"<@{user_id}>" if user_id is not None else "")
    rendered = rendered.replace("{ticket}", f"#{ticket_number:04d}" if ticket_number is not None else "")
    return rendered


class MessageTemplateStore:
    def __init__(self, repo: MessageTemplateRepository) -> None:
        self.repo = repo

    async def get(self, category_id: str) -> MessageTemplate:
        template = await self.repo.get(category_id)
        return template if template is not None else MessageTemplate(category_id=category_id)

    async def configure(self, category_id: str, changes: Mapping[str, Any]) -> MessageTemplate:
        unknown = set(changes) - set(MessageTemplateRepository.UPDATABLE_COLUMNS)
        if unknown:
            raise InvalidInputError(f"Unknown message setting(s): {', '.join(sorted(unknown))}.")
        values: dict[str, Any] = {}
        for key in ("welcome_message", "close_message"):
            if key in changes:
                values[key] = optional_text(changes[key], key, TEMPLATE_MAX_LENGTH)
        if "include_support_team" in changes:
            values["include_support_team"] = bool(changes["include_support_team"])

        await self.repo.ensure(category_id, None, None)
        await self.repo.update(category_id, values)
        LOGGER.info("Updated message template for category %s: %s", category_id, sorted(values))
        return await self.get(category_id)

    def render_welcome(self, template: MessageTemplate, category: TicketCategory, user_id: int, ticket_number: int) -> str:
        return render_template(
            template.welcome_message or DEFAULT_WELCOME_MESSAGE,
            category=category.name,
            user_id=user_id,
            ticket_number=ticket_number,
        )

    def render_close(self, template: MessageTemplate, category_name: str, user_id: int | None, ticket_number: int) -> str:
        return render_template(
            template.close_message or DEFAULT_CLOSE_MESSAGE,
            category=category_name,
            user_id=user_id,
            ticket_number=ticket_number,
        )
