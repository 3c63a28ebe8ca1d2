from __future__ import annotations

import pytest
from conftest import GUILD_ID, Engine

from core.errors import InvalidInputError
from database.models import MessageTemplate, TicketCategory
from services.message_templates import render_template
from utils.constants import DEFAULT_WELCOME_MESSAGE


def test_render_template_substitutes_placeholders() -> None:
    text = render_template("{user} opened {ticket} in {category}", category="Billing", user_id=42, ticket_number=7)
    assert text == "<@42> opened #0007 in Billing"


def test_render_template_leaves_unknown_braces_alone() -> None:
    assert render_template("{unknown} {category} {", category="Help") == "{unknown} Help {"


@pytest.mark.asyncio
async def test_missing_template_falls_back_to_defaults(engine: Engine) -> None:
    template = await engine.templates.get("no-such-category")
    category = TicketCategory(id="c", guild_id=GUILD_ID, name="Help")

    assert template == MessageTemplate(category_id="no-such-category")
    assert engine.templates.render_welcome(template, category, 1, 1) == DEFAULT_WELCOME_MESSAGE.replace(
        "{category}", "Help"
    )


@pytest.mark.asyncio
async def test_configure_template(tenant: Engine) -> None:
    category = (await tenant.categories.list(GUILD_ID))[0]

    template = await tenant.templates.configure(
        category.id, {"welcome_message": "Hi {user}", "include_support_team": False}
    )
    assert template.welcome_message == "Hi {user}"
    assert template.include_support_team is False
    assert template.close_message is None

    template = await tenant.templates.configure(category.id, {"welcome_message": ""})
    assert template.welcome_message is None

    with pytest.raises(InvalidInputError):
        await tenant.templates.configure(category.id, {"close_message": "x" * 2001})
    with pytest.raises(InvalidInputError):
        await tenant.templates.configure(category.id, {"footer": "nope"})
