from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from typing import Any, Union

import pytest
from conftest import GUILD_ID, Engine

from core.config import TicketConfig
from core.errors import CollectorBusyError
from services.collector import CollectedInteraction, InteractionCollector
from services.config_wizard import ConfigurationWizard, ScreenKind, WizardScreen
from utils.constants import ButtonStyle

ADMIN_ID = 55

Reply = Union[dict[str, Any], Callable[[WizardScreen], dict[str, Any]]]


class ScriptedSurface:
    """Answers each screen with the next scripted reply, as if a user clicked it."""

    def __init__(self, collector: InteractionCollector, replies: list[Reply]) -> None:
        self.collector = collector
        self.replies: deque[Reply] = deque(replies)
        self.screens: list[WizardScreen] = []
        self.acknowledged: list[CollectedInteraction] = []
        self.closed: WizardScreen | None = None
        self._menu_key: str | None = None

    async def show(self, screen: WizardScreen) -> str:
        self.screens.append(screen)
        key = f"screen-{len(self.screens)}"
        if self.replies:
            reply = self.replies.popleft()
            if callable(reply):
                reply = reply(screen)
            reply = dict(reply)
            # Replies marked on_menu are clicks on the message left under a form.
            target = self._menu_key if reply.pop("on_menu", False) else key
            collected = CollectedInteraction(surface=target or key, principal_id=ADMIN_ID, **reply)
            asyncio.get_running_loop().call_soon(self.collector.dispatch, collected)
        if screen.kind is not ScreenKind.FORM:
            self._menu_key = key
        return key

    def acknowledge(self, reply: CollectedInteraction) -> None:
        self.acknowledged.append(reply)

    def recovery_key(self) -> str | None:
        return self._menu_key

    async def close(self, screen: WizardScreen) -> None:
        self.closed = screen


def click(key: str) -> dict[str, Any]:
    return {"value": key}


def click_menu(key: str) -> dict[str, Any]:
    return {"value": key, "on_menu": True}


def submit(**form: str) -> dict[str, Any]:
    return {"form": form}


def pick_choice(name: str) -> Callable[[WizardScreen], dict[str, Any]]:
    def reply(screen: WizardScreen) -> dict[str, Any]:
        key = next(choice.key for choice in screen.choices if choice.label == name)
        return {"value": key, "values": [key]}

    return reply


def make_wizard(engine: Engine, **timeouts: float) -> ConfigurationWizard:
    config = TicketConfig(**timeouts) if timeouts else TicketConfig()
    return ConfigurationWizard(
        engine.config_store, engine.categories, engine.templates, engine.panels, engine.collector, config
    )


async def _run(engine: Engine, replies: list[Reply], **timeouts: float) -> tuple[bool, ScriptedSurface]:
    surface = ScriptedSurface(engine.collector, replies)
    finished = await make_wizard(engine, **timeouts).run(GUILD_ID, ADMIN_ID, surface)
    return finished, surface


@pytest.mark.asyncio
async def test_finish_closes_the_session(tenant: Engine) -> None:
    finished, surface = await _run(tenant, [click("finish")])

    assert finished is True
    assert surface.screens[0].kind is ScreenKind.MENU
    assert [option.key for option in surface.screens[0].options][-1] == "finish"
    assert surface.closed is not None and surface.closed.title == "Configuration finished"
    assert len(surface.acknowledged) == 1


@pytest.mark.asyncio
async def test_timeout_cancels_and_keeps_committed_changes(tenant: Engine) -> None:
    wizard = make_wizard(tenant, menu_timeout_seconds=0.05, form_timeout_seconds=0.05)
    surface = ScriptedSurface(tenant.collector, [click("toggle")])

    finished = await wizard.run(GUILD_ID, ADMIN_ID, surface)

    assert finished is False
    assert surface.closed is not None and surface.closed.title == "Configuration cancelled"
    assert (await tenant.config_store.get(GUILD_ID)).is_enabled is False
    assert not wizard.is_running(GUILD_ID)


@pytest.mark.asyncio
async def test_one_session_per_guild(tenant: Engine) -> None:
    wizard = make_wizard(tenant)
    first = asyncio.create_task(wizard.run(GUILD_ID, ADMIN_ID, ScriptedSurface(tenant.collector, [])))
    while not tenant.collector.is_waiting("screen-1"):
        await asyncio.sleep(0.01)
    assert wizard.is_running(GUILD_ID)

    with pytest.raises(CollectorBusyError):
        await wizard.run(GUILD_ID, ADMIN_ID, ScriptedSurface(tenant.collector, []))

    tenant.collector.stop_all()
    assert await first is False
    assert not wizard.is_running(GUILD_ID)


@pytest.mark.asyncio
async def test_button_appearance_is_saved(tenant: Engine) -> None:
    finished, surface = await _run(
        tenant,
        [
            click("button"),
            click("appearance"),
            submit(label="Get help", emoji="🆘", style="danger"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    assert surface.screens[2].kind is ScreenKind.FORM
    assert [field.key for field in surface.screens[2].fields] == ["label", "emoji", "style"]
    assert surface.screens[3].status == "Button settings saved."
    button = await tenant.config_store.get_button(GUILD_ID)
    assert (button.label, button.emoji, button.style) == ("Get help", "🆘", ButtonStyle.DANGER)


@pytest.mark.asyncio
async def test_dismissed_form_resumes_from_the_menu(tenant: Engine) -> None:
    wizard = make_wizard(tenant, form_timeout_seconds=5)
    surface = ScriptedSurface(
        tenant.collector,
        [click("button"), click("appearance"), click_menu("embed"), click("back"), click("finish")],
    )

    finished = await asyncio.wait_for(wizard.run(GUILD_ID, ADMIN_ID, surface), timeout=2)

    assert finished
    assert surface.screens[2].kind is ScreenKind.FORM
    assert surface.screens[3].kind is ScreenKind.MENU
    assert surface.screens[3].status == "Form closed without saving."
    assert surface.acknowledged[2].surface == "screen-2"
    assert (await tenant.config_store.get_button(GUILD_ID)).label == "Create Ticket"
    assert not tenant.collector.is_waiting("screen-2")


@pytest.mark.asyncio
async def test_invalid_input_is_reported_and_nothing_changes(tenant: Engine) -> None:
    finished, surface = await _run(
        tenant,
        [
            click("button"),
            click("appearance"),
            submit(label="Get help", emoji="🆘", style="blurple"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    assert surface.screens[3].error is not None
    assert "blurple" in surface.screens[3].error
    assert (await tenant.config_store.get_button(GUILD_ID)).label == "Create Ticket"


@pytest.mark.asyncio
async def test_create_and_delete_category(tenant: Engine) -> None:
    finished, surface = await _run(
        tenant,
        [
            click("categories"),
            click("create"),
            submit(name="Billing", description="Invoices", emoji="", support_role_id="", parent_channel_id=""),
            pick_choice("Billing"),
            click("delete"),
            click("confirm"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    confirm_screen = surface.screens[5]
    assert confirm_screen.kind is ScreenKind.CONFIRM
    assert surface.screens[6].status == "Category **Billing** deleted."
    assert [category.name for category in await tenant.categories.list(GUILD_ID)] == ["General Support"]


@pytest.mark.asyncio
async def test_last_category_delete_is_refused(tenant: Engine) -> None:
    finished, surface = await _run(
        tenant,
        [
            click("categories"),
            pick_choice("General Support"),
            click("delete"),
            click("confirm"),
            click("back"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    after_confirm = surface.screens[4]
    assert after_confirm.title.startswith("Category:")
    assert after_confirm.error == "You cannot delete the only remaining ticket category."
    assert len(await tenant.categories.list(GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_cancelled_confirmation_keeps_category(tenant: Engine) -> None:
    await tenant.categories.create(GUILD_ID, "Billing")
    finished, surface = await _run(
        tenant,
        [
            click("categories"),
            pick_choice("Billing"),
            click("delete"),
            click("cancel"),
            click("back"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    assert surface.screens[4].status == "Deletion cancelled."
    assert len(await tenant.categories.list(GUILD_ID)) == 2


@pytest.mark.asyncio
async def test_edit_category_messages(tenant: Engine) -> None:
    finished, _ = await _run(
        tenant,
        [
            click("messages"),
            pick_choice("General Support"),
            click("edit"),
            submit(welcome_message="Hi {user}, welcome to {category}.", close_message=""),
            click("toggle"),
            click("back"),
            click("back"),
            click("finish"),
        ],
    )

    assert finished
    category = (await tenant.categories.list(GUILD_ID))[0]
    template = await tenant.templates.get(category.id)
    assert template.welcome_message == "Hi {user}, welcome to {category}."
    assert template.close_message is None
    assert not template.include_support_team
