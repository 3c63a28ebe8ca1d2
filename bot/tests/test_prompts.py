from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from core.errors import BotError
from services.config_wizard import FormField, ScreenKind, WizardOption, WizardScreen
from views.config_wizard import CHOICE_ID, DiscordWizardSurface, screen_embed, screen_view
from views.prompts import collect_interaction


def _interaction(kind: discord.InteractionType, data: dict, message_id: int | None = 700) -> SimpleNamespace:
    return SimpleNamespace(
        type=kind,
        data=data,
        user=SimpleNamespace(id=42),
        message=SimpleNamespace(id=message_id) if message_id is not None else None,
    )


def test_button_press_is_keyed_by_message() -> None:
    collected = collect_interaction(
        _interaction(discord.InteractionType.component, {"custom_id": "finish", "component_type": 2})
    )

    assert collected is not None
    assert collected.surface == "700"
    assert collected.principal_id == 42
    assert collected.value == "finish"
    assert collected.values == []


def test_select_reports_first_value() -> None:
    collected = collect_interaction(
        _interaction(discord.InteractionType.component, {"custom_id": CHOICE_ID, "values": ["category:a", "category:b"]})
    )

    assert collected is not None
    assert collected.value == "category:a"
    assert collected.values == ["category:a", "category:b"]


def test_modal_submit_is_keyed_by_custom_id() -> None:
    data = {
        "custom_id": "wizard:abc",
        "components": [
            {"type": 1, "components": [{"type": 4, "custom_id": "label", "value": "Help"}]},
            {"type": 18, "component": {"type": 4, "custom_id": "emoji", "value": None}},
        ],
    }
    collected = collect_interaction(_interaction(discord.InteractionType.modal_submit, data, message_id=None))

    assert collected is not None
    assert collected.surface == "wizard:abc"
    assert collected.form == {"label": "Help", "emoji": ""}


def test_other_interactions_are_ignored() -> None:
    assert collect_interaction(_interaction(discord.InteractionType.application_command, {"name": "ticket"})) is None
    assert collect_interaction(_interaction(discord.InteractionType.component, {"custom_id": "x"}, None)) is None


def test_screen_embed_reports_previous_step() -> None:
    screen = WizardScreen(kind=ScreenKind.MENU, title="Ticket categories", status="Saved it.", warnings=["Panel gone"])
    embed = screen_embed(screen)

    assert embed.color == discord.Color.orange()
    assert [field.name for field in embed.fields] == ["Saved", "Warnings"]

    screen.error = "Nope."
    assert screen_embed(screen).color == discord.Color.red()


@pytest.mark.asyncio
async def test_screen_view_components() -> None:
    screen = WizardScreen(
        kind=ScreenKind.MENU,
        title="Ticket categories",
        choices=[WizardOption(key="category:1", label="General Support")],
        options=[WizardOption(key="create", label="Create category"), WizardOption(key="back", label="Back")],
    )
    view = screen_view(screen, timeout=30)

    assert view is not None
    assert [item.custom_id for item in view.children] == [CHOICE_ID, "create", "back"]
    assert screen_view(WizardScreen(kind=ScreenKind.NOTICE, title="Done"), timeout=30) is None


def _slash_interaction() -> MagicMock:
    interaction = MagicMock()
    interaction.type = discord.InteractionType.application_command
    interaction.response.is_done.return_value = False
    interaction.response.send_message = AsyncMock()
    interaction.response.send_modal = AsyncMock()
    interaction.original_response = AsyncMock(return_value=SimpleNamespace(id=800))
    return interaction


@pytest.mark.asyncio
async def test_surface_sends_then_edits_with_fresh_interactions() -> None:
    first = _slash_interaction()
    surface = DiscordWizardSurface(first, timeout=30)
    menu = WizardScreen(kind=ScreenKind.MENU, title="Ticket configuration", options=[WizardOption("finish", "Finish")])

    assert surface.recovery_key() is None
    assert await surface.show(menu) == "800"
    first.response.send_message.assert_awaited_once()
    assert surface.recovery_key() == "800"

    press = _slash_interaction()
    press.type = discord.InteractionType.component
    press.response.edit_message = AsyncMock()
    surface.acknowledge(SimpleNamespace(raw=press))

    assert await surface.show(menu) == "800"
    press.response.edit_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_surface_opens_forms_from_component_presses_only() -> None:
    press = _slash_interaction()
    press.type = discord.InteractionType.component
    surface = DiscordWizardSurface(press, timeout=30)
    form = WizardScreen(kind=ScreenKind.FORM, title="New category", fields=[FormField(key="name", label="Name")])

    key = await surface.show(form)

    assert key.startswith("wizard:")
    modal = press.response.send_modal.await_args.args[0]
    assert modal.custom_id == key

    submitted = _slash_interaction()
    submitted.type = discord.InteractionType.modal_submit
    surface.acknowledge(SimpleNamespace(raw=submitted))
    with pytest.raises(BotError):
        await surface.show(form)
