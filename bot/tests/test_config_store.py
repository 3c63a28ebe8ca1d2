from __future__ import annotations

import pytest
from conftest import GUILD_ID, Engine

from core.errors import InvalidInputError
from utils.constants import DEFAULT_BUTTON_LABEL, ButtonStyle


@pytest.mark.asyncio
async def test_ensure_creates_tenant_with_defaults(engine: Engine) -> None:
    assert await engine.config_store.get(GUILD_ID) is None

    config = await engine.config_store.ensure(GUILD_ID)
    again = await engine.config_store.ensure(GUILD_ID)

    assert config.is_enabled is True
    assert config.ticket_counter == 0
    assert again.created_at == config.created_at
    button = await engine.config_store.get_button(GUILD_ID)
    assert button.label == DEFAULT_BUTTON_LABEL
    assert button.style is ButtonStyle.PRIMARY


@pytest.mark.asyncio
async def test_configure_button_merges_and_validates(engine: Engine) -> None:
    await engine.config_store.ensure(GUILD_ID)

    button = await engine.config_store.configure_button(
        GUILD_ID, {"label": "Get help", "style": "Danger", "embed_color": "ff0000"}
    )
    assert button.label == "Get help"
    assert button.style is ButtonStyle.DANGER
    assert button.embed_color == "#FF0000"

    button = await engine.config_store.configure_button(GUILD_ID, {"embed_title": "Support"})
    assert button.label == "Get help"
    assert button.embed_title == "Support"

    button = await engine.config_store.configure_button(GUILD_ID, {"embed_title": None})
    assert button.embed_title is None

    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_button(GUILD_ID, {"style": "blurple"})
    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_button(GUILD_ID, {"label": "x" * 81})
    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_button(GUILD_ID, {"embed_color": "red"})
    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_button(GUILD_ID, {"colour": "#fff"})
    assert (await engine.config_store.get_button(GUILD_ID)).label == "Get help"


@pytest.mark.asyncio
async def test_select_menu_bounds(engine: Engine) -> None:
    await engine.config_store.ensure(GUILD_ID)

    menu = await engine.config_store.configure_select_menu(GUILD_ID, {"max_values": "3", "placeholder": "Pick one"})
    assert (menu.min_values, menu.max_values) == (1, 3)
    assert menu.placeholder == "Pick one"

    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_select_menu(GUILD_ID, {"min_values": 4})
    with pytest.raises(InvalidInputError):
        await engine.config_store.configure_select_menu(GUILD_ID, {"max_values": 26})
    assert (await engine.config_store.get_select_menu(GUILD_ID)).max_values == 3


@pytest.mark.asyncio
async def test_toggle_and_delete_tenant(engine: Engine) -> None:
    await engine.config_store.ensure(GUILD_ID)

    disabled = await engine.config_store.set_enabled(GUILD_ID, False)
    assert disabled.is_enabled is False

    assert await engine.config_store.delete(GUILD_ID) is True
    assert await engine.config_store.get(GUILD_ID) is None
    assert await engine.config_store.delete(GUILD_ID) is False
