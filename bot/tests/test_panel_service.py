from __future__ import annotations

import pytest
from conftest import GUILD_ID, Engine

from services.outcomes import OutcomeKind

PANEL_CHANNEL_ID = 777


@pytest.mark.asyncio
async def test_panel_content_follows_button_config(tenant: Engine) -> None:
    await tenant.config_store.configure_button(GUILD_ID, {"label": "Open", "embed_title": "Help desk"})

    content = await tenant.panels.build_panel_content(GUILD_ID)

    assert content.title == "Help desk"
    assert [(control.key, control.label) for control in content.controls] == [("create", "Open")]
    assert content.fields == []

    await tenant.categories.create(GUILD_ID, "Billing", description="Invoices")
    content = await tenant.panels.build_panel_content(GUILD_ID)
    assert content.fields[0][0] == "Categories"
    assert "Billing: Invoices" in content.fields[0][1]


@pytest.mark.asyncio
async def test_category_prompt_lists_enabled_categories_only(tenant: Engine) -> None:
    billing = await tenant.categories.create(GUILD_ID, "Billing")
    await tenant.categories.create(GUILD_ID, "Hidden", is_enabled=False)

    prompt = await tenant.panels.category_prompt(GUILD_ID)

    assert [category.id for category in prompt.categories][-1] == billing.id
    assert len(prompt.categories) == 2
    assert prompt.content is None


@pytest.mark.asyncio
async def test_deploy_records_message_and_refresh_edits_it(tenant: Engine) -> None:
    outcome = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)

    assert outcome.kind is OutcomeKind.SUCCESS
    button = await tenant.config_store.get_button(GUILD_ID)
    assert (button.channel_id, button.message_id) == (PANEL_CHANNEL_ID, outcome.value)

    assert await tenant.panels.refresh(GUILD_ID) == []
    assert tenant.channels.edits[-1][:2] == (PANEL_CHANNEL_ID, outcome.value)


@pytest.mark.asyncio
async def test_redeploy_reuses_the_live_panel(tenant: Engine) -> None:
    first = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)
    again = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)

    assert again.value == first.value
    assert len(tenant.channels.messages[PANEL_CHANNEL_ID]) == 1

    assert first.value is not None
    tenant.channels.missing_messages.add(first.value)
    replaced = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)
    assert replaced.value != first.value
    assert len(tenant.channels.messages[PANEL_CHANNEL_ID]) == 2


@pytest.mark.asyncio
async def test_refresh_clears_a_vanished_panel(tenant: Engine) -> None:
    outcome = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)
    assert outcome.value is not None
    tenant.channels.missing_messages.add(outcome.value)

    warnings = await tenant.panels.refresh(GUILD_ID)

    assert len(warnings) == 1
    assert (await tenant.config_store.get_button(GUILD_ID)).message_id is None


@pytest.mark.asyncio
async def test_deploy_failure_is_reported(tenant: Engine) -> None:
    tenant.channels.failing = {"post_message"}
    outcome = await tenant.panels.deploy(GUILD_ID, PANEL_CHANNEL_ID)
    assert outcome.kind is OutcomeKind.FAILURE
    assert (await tenant.config_store.get_button(GUILD_ID)).message_id is None
