from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from core.config import TicketConfig
from core.errors import BotError, CollectorBusyError, TimedOutError
from database.models import TicketCategory
from services.category_registry import CategoryRegistry
from services.collector import CollectedInteraction, InteractionCollector
from services.config_store import ConfigStore
from services.message_templates import MessageTemplateStore
from services.panel_service import PanelService
from utils.constants import (
    DEFAULT_CLOSE_MESSAGE,
    DEFAULT_PANEL_DESCRIPTION,
    DEFAULT_PANEL_TITLE,
    DEFAULT_WELCOME_MESSAGE,
    ButtonStyle,
)

LOGGER = logging.getLogger(__name__)

BACK = "back"
CONFIRM = "confirm"
CANCEL = "cancel"
MAX_FORM_FIELDS = 5


class ScreenKind(StrEnum):
    MENU = "menu"
    FORM = "form"
    CONFIRM = "confirm"
    NOTICE = "notice"


@dataclass(slots=True)
class WizardOption:
    key: str
    label: str
    description: str | None = None
    emoji: str | None = None
    style: ButtonStyle = ButtonStyle.SECONDARY


@dataclass(slots=True)
class FormField:
    key: str
    label: str
    default: str | None = None
    placeholder: str | None = None
    required: bool = False
    long: bool = False
    max_length: int | None = None


@dataclass(slots=True)
class WizardScreen:
    """One step of the wizard as plain data.

    ``options`` render as buttons and ``choices`` as a single select menu. Forms carry at
    most five ``fields``. ``status``, ``error`` and ``warnings`` report the result of the previous step.
    """

    kind: ScreenKind
    title: str
    description: str = ""
    options: list[WizardOption] = field(default_factory=list)
    choices: list[WizardOption] = field(default_factory=list)
    fields: list[FormField] = field(default_factory=list)
    placeholder: str | None = None
    status: str | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


class WizardSurface(Protocol):
    async def show(self, screen: WizardScreen) -> str:
        """Render ``screen`` and return the collector key its responses arrive under."""
        ...

    def acknowledge(self, reply: CollectedInteraction) -> None: ...

    def recovery_key(self) -> str | None:
        """Key of the last menu message, or None before one was shown."""
        ...

    async def close(self, screen: WizardScreen) -> None: ...


@dataclass(slots=True)
class StepResult:
    message: str | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class WizardSession:
    guild_id: int
    principal_id: int
    surface: WizardSurface
    last: StepResult = field(default_factory=StepResult)


def _text(value: object | None) -> str | None:
    return None if value is None else str(value)


class ConfigurationWizard:
    """Nested menu of read-modify-write steps over the configuration stores.

    Every step suspends on the interaction collector; a step that times out ends the
    whole session with a cancelled screen and leaves committed changes in place. One
    session may run per server at a time.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        categories: CategoryRegistry,
        templates: MessageTemplateStore,
        panels: PanelService,
        collector: InteractionCollector,
        config: TicketConfig,
    ) -> None:
        self.config_store = config_store
        self.categories = categories
        self.templates = templates
        self.panels = panels
        self.collector = collector
        self.config = config
        self._active: set[int] = set()

    def is_running(self, guild_id: int) -> bool:
        return guild_id in self._active

    async def run(self, guild_id: int, principal_id: int, surface: WizardSurface) -> bool:
        """Drive one session to completion. Returns False when it ended by timeout."""
        if guild_id in self._active:
            raise CollectorBusyError("A configuration session is already running on this server.")
        self._active.add(guild_id)
        session = WizardSession(guild_id=guild_id, principal_id=principal_id, surface=surface)
        LOGGER.info("Configuration wizard started by %s", principal_id, extra={"guild_id": guild_id})
        try:
            await self._main_menu(session)
        except TimedOutError:
            LOGGER.info("Configuration wizard timed out", extra={"guild_id": guild_id})
            await surface.close(
                WizardScreen(
                    kind=ScreenKind.NOTICE,
                    title="Configuration cancelled",
                    description="No response was received in time. Changes saved so far are kept.",
                )
            )
            return False
        finally:
            self._active.discard(guild_id)
        await surface.close(
            WizardScreen(kind=ScreenKind.NOTICE, title="Configuration finished", description="All changes are saved.")
        )
        return True

    # Collector plumbing

    async def _prompt(
        self, session: WizardSession, screen: WizardScreen, timeout: float, also: list[str] | None = None
    ) -> CollectedInteraction:
        screen.error = session.last.error
        screen.warnings = list(session.last.warnings)
        screen.status = session.last.message
        session.last = StepResult()
        surface_key = await session.surface.show(screen)
        reply = await self.collector.wait_for(surface_key, session.principal_id, timeout=timeout, also=also or [])
        session.surface.acknowledge(reply)
        return reply

    async def _choose(self, session: WizardSession, screen: WizardScreen) -> str:
        reply = await self._prompt(session, screen, self.config.menu_timeout_seconds)
        return reply.value or (reply.values[0] if reply.values else BACK)

    async def _form(self, session: WizardSession, title: str, fields: list[FormField]) -> dict[str, str] | None:
        """Collect one form. Returns None if the user went back to the menu without submitting."""
        screen = WizardScreen(kind=ScreenKind.FORM, title=title, fields=fields[:MAX_FORM_FIELDS])
        # A dismissed form sends nothing, so a press on the menu underneath resumes the session.
        menu_key = session.surface.recovery_key()
        also = [menu_key] if menu_key else []
        reply = await self._prompt(session, screen, self.config.form_timeout_seconds, also)
        if menu_key is not None and reply.surface == menu_key:
            session.last = StepResult(message="Form closed without saving.")
            return None
        return reply.form

    async def _confirm(self, session: WizardSession, title: str, description: str) -> bool:
        screen = WizardScreen(
            kind=ScreenKind.CONFIRM,
            title=title,
            description=description,
            options=[
                WizardOption(key=CONFIRM, label="Confirm", style=ButtonStyle.DANGER),
                WizardOption(key=CANCEL, label="Cancel"),
            ],
        )
        reply = await self._prompt(session, screen, self.config.confirm_timeout_seconds)
        return reply.value == CONFIRM

    async def _attempt(self, session: WizardSession, action: Awaitable[StepResult]) -> None:
        try:
            session.last = await action
        except TimedOutError:
            raise
        except BotError as exc:
            LOGGER.info("Wizard step rejected: %s", exc.user_message, extra={"guild_id": session.guild_id})
            session.last = StepResult(error=exc.user_message)

    async def _saved(self, session: WizardSession, message: str) -> StepResult:
        return StepResult(message=message, warnings=await self.panels.refresh(session.guild_id))

    # Main menu

    async def _main_menu(self, session: WizardSession) -> None:
        while True:
            tenant = await self.config_store.ensure(session.guild_id)
            state = "enabled" if tenant.is_enabled else "disabled"
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title="Ticket configuration",
                description=f"The ticket system is **{state}**. Pick a section to edit.",
                options=[
                    WizardOption(key="button", label="Button", emoji="🔘"),
                    WizardOption(key="select", label="Select Menu", emoji="📋"),
                    WizardOption(key="categories", label="Categories", emoji="🗂️"),
                    WizardOption(key="messages", label="Messages", emoji="💬"),
                    WizardOption(
                        key="toggle",
                        label="Disable system" if tenant.is_enabled else "Enable system",
                        style=ButtonStyle.DANGER if tenant.is_enabled else ButtonStyle.SUCCESS,
                    ),
                    WizardOption(key="finish", label="Finish", style=ButtonStyle.PRIMARY),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == "finish":
                return
            if choice == "button":
                await self._button_menu(session)
            elif choice == "select":
                await self._select_menu(session)
            elif choice == "categories":
                await self._categories_menu(session)
            elif choice == "messages":
                await self._messages_menu(session)
            elif choice == "toggle":
                await self._attempt(session, self._toggle_system(session, not tenant.is_enabled))

    async def _toggle_system(self, session: WizardSession, enabled: bool) -> StepResult:
        await self.config_store.set_enabled(session.guild_id, enabled)
        return StepResult(message=f"Ticket creation {'enabled' if enabled else 'disabled'}.")

    # Button

    async def _button_menu(self, session: WizardSession) -> None:
        while True:
            button = await self.config_store.get_button(session.guild_id)
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title="Create button",
                description=(
                    f"Label: **{button.label}**\nEmoji: {button.emoji}\nStyle: `{button.style.value}`\n"
                    f"Log channel: {f'<#{button.log_channel_id}>' if button.log_channel_id else 'not set'}"
                ),
                options=[
                    WizardOption(key="appearance", label="Appearance"),
                    WizardOption(key="embed", label="Panel embed"),
                    WizardOption(key="log", label="Log channel"),
                    WizardOption(key=BACK, label="Back"),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice == "appearance":
                form = await self._form(
                    session,
                    "Button appearance",
                    [
                        FormField(key="label", label="Label", default=button.label, required=True, max_length=80),
                        FormField(key="emoji", label="Emoji", default=button.emoji, required=True, max_length=64),
                        FormField(
                            key="style",
                            label="Style",
                            default=button.style.value,
                            placeholder="primary, secondary, success or danger",
                            required=True,
                            max_length=16,
                        ),
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_button(session, form))
            elif choice == "embed":
                form = await self._form(
                    session,
                    "Panel embed",
                    [
                        FormField(
                            key="embed_title", label="Title", default=button.embed_title, placeholder=DEFAULT_PANEL_TITLE,
                            max_length=256,
                        ),
                        FormField(
                            key="embed_description",
                            label="Description",
                            default=button.embed_description,
                            placeholder=DEFAULT_PANEL_DESCRIPTION,
                            long=True,
                            max_length=4000,
                        ),
                        FormField(
                            key="embed_color", label="Color", default=button.embed_color, placeholder="#5865F2",
                            max_length=7,
                        ),
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_button(session, form))
            elif choice == "log":
                form = await self._form(
                    session,
                    "Log channel",
                    [
                        FormField(
                            key="log_channel_id",
                            label="Channel id (blank to clear)",
                            default=_text(button.log_channel_id),
                            max_length=30,
                        )
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_button(session, form))

    async def _save_button(self, session: WizardSession, form: dict[str, str]) -> StepResult:
        await self.config_store.configure_button(session.guild_id, form)
        return await self._saved(session, "Button settings saved.")

    # Select menu

    async def _select_menu(self, session: WizardSession) -> None:
        while True:
            menu = await self.config_store.get_select_menu(session.guild_id)
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title="Category select menu",
                description=(
                    f"Placeholder: **{menu.placeholder}**\n"
                    f"Selectable: {menu.min_values} to {menu.max_values}"
                ),
                options=[
                    WizardOption(key="appearance", label="Appearance"),
                    WizardOption(key="embed", label="Prompt embed"),
                    WizardOption(key=BACK, label="Back"),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice == "appearance":
                form = await self._form(
                    session,
                    "Select menu appearance",
                    [
                        FormField(
                            key="placeholder", label="Placeholder", default=menu.placeholder, required=True,
                            max_length=150,
                        ),
                        FormField(key="min_values", label="Minimum picks", default=str(menu.min_values), required=True),
                        FormField(key="max_values", label="Maximum picks", default=str(menu.max_values), required=True),
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_select(session, form))
            elif choice == "embed":
                form = await self._form(
                    session,
                    "Prompt embed",
                    [
                        FormField(key="embed_title", label="Title", default=menu.embed_title, max_length=256),
                        FormField(
                            key="embed_description", label="Description", default=menu.embed_description, long=True,
                            max_length=4000,
                        ),
                        FormField(key="embed_color", label="Color", default=menu.embed_color, max_length=7),
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_select(session, form))

    async def _save_select(self, session: WizardSession, form: dict[str, str]) -> StepResult:
        await self.config_store.configure_select_menu(session.guild_id, form)
        return await self._saved(session, "Select menu settings saved.")

    # Categories

    @staticmethod
    def _category_choices(categories: list[TicketCategory]) -> list[WizardOption]:
        return [
            WizardOption(
                key=f"category:{category.id}",
                label=category.name,
                description=(
                    f"{'enabled' if category.is_enabled else 'disabled'}, {category.ticket_count} ticket(s)"
                ),
                emoji=category.emoji,
            )
            for category in categories
        ]

    async def _categories_menu(self, session: WizardSession) -> None:
        while True:
            categories = await self.categories.list(session.guild_id)
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title="Ticket categories",
                description="Pick a category to manage it, or create a new one.",
                choices=self._category_choices(categories),
                placeholder="Choose a category",
                options=[
                    WizardOption(key="create", label="Create category", style=ButtonStyle.SUCCESS),
                    WizardOption(key=BACK, label="Back"),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice == "create":
                form = await self._form(session, "New category", self._category_fields(None))
                if form is not None:
                    await self._attempt(session, self._create_category(session, form))
            elif choice.startswith("category:"):
                await self._category_menu(session, choice.removeprefix("category:"))

    @staticmethod
    def _category_fields(category: TicketCategory | None) -> list[FormField]:
        return [
            FormField(key="name", label="Name", default=category.name if category else None, required=True, max_length=100),
            FormField(
                key="description", label="Description", default=category.description if category else None,
                max_length=100,
            ),
            FormField(key="emoji", label="Emoji", default=category.emoji if category else None, max_length=64),
            FormField(
                key="support_role_id",
                label="Support role id",
                default=_text(category.support_role_id) if category else None,
                max_length=30,
            ),
            FormField(
                key="parent_channel_id",
                label="Channel category id",
                default=_text(category.parent_channel_id) if category else None,
                max_length=30,
            ),
        ]

    async def _create_category(self, session: WizardSession, form: dict[str, str]) -> StepResult:
        category = await self.categories.create(
            session.guild_id,
            form.get("name", ""),
            description=form.get("description"),
            emoji=form.get("emoji"),
            support_role_id=form.get("support_role_id"),
            parent_channel_id=form.get("parent_channel_id"),
        )
        return await self._saved(session, f"Category **{category.name}** created.")

    async def _category_menu(self, session: WizardSession, category_id: str) -> None:
        while True:
            try:
                category = await self.categories.get(category_id, session.guild_id)
            except BotError as exc:
                session.last = StepResult(error=exc.user_message)
                return
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title=f"Category: {category.display_name}",
                description=(
                    f"{category.description or 'No description.'}\n"
                    f"Position: {category.position} | Tickets: {category.ticket_count} | "
                    f"{'Enabled' if category.is_enabled else 'Disabled'}"
                ),
                options=[
                    WizardOption(key="edit", label="Edit"),
                    WizardOption(key="reorder", label="Reorder"),
                    WizardOption(key="toggle", label="Disable" if category.is_enabled else "Enable"),
                    WizardOption(key="delete", label="Delete", style=ButtonStyle.DANGER),
                    WizardOption(key=BACK, label="Back"),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice == "edit":
                form = await self._form(session, f"Edit {category.name}", self._category_fields(category))
                if form is not None:
                    await self._attempt(session, self._update_category(session, category.id, form))
            elif choice == "reorder":
                form = await self._form(
                    session,
                    f"Reorder {category.name}",
                    [FormField(key="position", label="Position (0 is first)", default=str(category.position), required=True)],
                )
                if form is not None:
                    await self._attempt(session, self._update_category(session, category.id, form))
            elif choice == "toggle":
                await self._attempt(
                    session, self._update_category(session, category.id, {"is_enabled": not category.is_enabled})
                )
            elif choice == "delete":
                confirmed = await self._confirm(
                    session,
                    f"Delete {category.name}?",
                    f"This category has issued {category.ticket_count} ticket(s). They stay on record "
                    "without a category. This cannot be undone.",
                )
                if not confirmed:
                    session.last = StepResult(message="Deletion cancelled.")
                    continue
                token = await self.categories.request_delete_confirmation(category.id)
                await self._attempt(session, self._delete_category(session, category.id, token))
                if session.last.error is None:
                    return

    async def _update_category(self, session: WizardSession, category_id: str, changes: dict) -> StepResult:
        category = await self.categories.update(category_id, changes, session.guild_id)
        return await self._saved(session, f"Category **{category.name}** updated.")

    async def _delete_category(self, session: WizardSession, category_id: str, token: str) -> StepResult:
        category = await self.categories.delete(category_id, session.guild_id, confirmation=token)
        return await self._saved(session, f"Category **{category.name}** deleted.")

    # Messages

    async def _messages_menu(self, session: WizardSession) -> None:
        while True:
            categories = await self.categories.list(session.guild_id)
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title="Ticket messages",
                description="Pick the category whose welcome and close messages you want to edit.",
                choices=self._category_choices(categories),
                placeholder="Choose a category",
                options=[WizardOption(key=BACK, label="Back")],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice.startswith("category:"):
                await self._template_menu(session, choice.removeprefix("category:"))

    async def _template_menu(self, session: WizardSession, category_id: str) -> None:
        while True:
            try:
                category = await self.categories.get(category_id, session.guild_id)
            except BotError as exc:
                session.last = StepResult(error=exc.user_message)
                return
            template = await self.templates.get(category.id)
            screen = WizardScreen(
                kind=ScreenKind.MENU,
                title=f"Messages: {category.display_name}",
                description=(
                    f"**Welcome**\n{template.welcome_message or DEFAULT_WELCOME_MESSAGE}\n\n"
                    f"**Close**\n{template.close_message or DEFAULT_CLOSE_MESSAGE}\n\n"
                    f"Ping support team: {'yes' if template.include_support_team else 'no'}"
                ),
                options=[
                    WizardOption(key="edit", label="Edit texts"),
                    WizardOption(key="toggle", label="Toggle support ping"),
                    WizardOption(key=BACK, label="Back"),
                ],
            )
            choice = await self._choose(session, screen)
            if choice == BACK:
                return
            if choice == "edit":
                form = await self._form(
                    session,
                    f"Messages for {category.name}",
                    [
                        FormField(
                            key="welcome_message",
                            label="Welcome message",
                            default=template.welcome_message,
                            placeholder=DEFAULT_WELCOME_MESSAGE,
                            long=True,
                            max_length=2000,
                        ),
                        FormField(
                            key="close_message",
                            label="Close message",
                            default=template.close_message,
                            placeholder=DEFAULT_CLOSE_MESSAGE,
                            long=True,
                            max_length=2000,
                        ),
                    ],
                )
                if form is not None:
                    await self._attempt(session, self._save_template(category.id, form))
            elif choice == "toggle":
                await self._attempt(
                    session,
                    self._save_template(category.id, {"include_support_team": not template.include_support_team}),
                )

    async def _save_template(self, category_id: str, changes: dict) -> StepResult:
        await self.templates.configure(category_id, changes)
        return StepResult(message="Messages saved.")
