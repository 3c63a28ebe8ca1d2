from __future__ import annotations

import logging
import uuid

import discord

from core.errors import BotError
from services.collector import CollectedInteraction
from services.config_wizard import FormField, ScreenKind, WizardScreen
from views.prompts import PromptView

LOGGER = logging.getLogger(__name__)

CHOICE_ID = "wizard:choice"


def _text_input(field: FormField) -> discord.ui.TextInput[WizardModal]:
    return discord.ui.TextInput(
        label=field.label[:45],
        custom_id=field.key,
        default=field.default[:4000] if field.default else None,
        placeholder=field.placeholder[:100] if field.placeholder else None,
        required=field.required,
        style=discord.TextStyle.long if field.long else discord.TextStyle.short,
        max_length=field.max_length,
    )


class WizardModal(discord.ui.Modal):
    """Form step of the wizard. The submission is answered by the waiting wizard."""

    def __init__(self, screen: WizardScreen, custom_id: str, timeout: float) -> None:
        super().__init__(title=screen.title[:45], timeout=timeout, custom_id=custom_id)
        for field in screen.fields:
            self.add_item(_text_input(field))

    async def on_submit(self, interaction: discord.Interaction) -> None:
        return None


def screen_embed(screen: WizardScreen) -> discord.Embed:
    if screen.error:
        color = discord.Color.red()
    elif screen.warnings:
        color = discord.Color.orange()
    else:
        color = discord.Color.blurple()
    embed = discord.Embed(title=screen.title[:256], description=screen.description[:4096] or None, color=color)
    if screen.status:
        embed.add_field(name="Saved", value=screen.status[:1024], inline=False)
    if screen.error:
        embed.add_field(name="Error", value=screen.error[:1024], inline=False)
    if screen.warnings:
        embed.add_field(
            name="Warnings",
            value="\n".join(f"- {warning}" for warning in screen.warnings)[:1024],
            inline=False,
        )
    return embed


def screen_view(screen: WizardScreen, timeout: float) -> PromptView | None:
    if not screen.options and not screen.choices:
        return None
    view = PromptView(timeout=timeout)
    if screen.choices:
        view.add_select(
            CHOICE_ID,
            [
                discord.SelectOption(
                    label=choice.label[:100],
                    value=choice.key,
                    description=choice.description[:100] if choice.description else None,
                    emoji=choice.emoji or None,
                )
                for choice in screen.choices
            ],
            placeholder=screen.placeholder,
        )
    for option in screen.options:
        view.add_button(option.key, option.label[:80], option.style, option.emoji)
    return view


class DiscordWizardSurface:
    """Renders wizard screens into one ephemeral message.

    The slash command interaction opens the message; every later screen answers the
    interaction the previous step was collected from, so each step gets a fresh
    interaction token to respond with.
    """

    def __init__(self, interaction: discord.Interaction, timeout: float) -> None:
        self._pending: discord.Interaction | None = interaction
        self._message: discord.InteractionMessage | None = None
        self._timeout = timeout

    def acknowledge(self, reply: CollectedInteraction) -> None:
        self._pending = reply.raw

    def recovery_key(self) -> str | None:
        return str(self._message.id) if self._message is not None else None

    async def show(self, screen: WizardScreen) -> str:
        if screen.kind is ScreenKind.FORM:
            return await self._open_form(screen)
        await self._render(screen_embed(screen), screen_view(screen, self._timeout))
        assert self._message is not None
        return str(self._message.id)

    async def close(self, screen: WizardScreen) -> None:
        try:
            await self._render(screen_embed(screen), None)
        except discord.HTTPException:
            # The interaction token may have expired while the session idled.
            LOGGER.warning("Could not render final wizard screen", exc_info=True)

    async def _open_form(self, screen: WizardScreen) -> str:
        pending, self._pending = self._pending, None
        if pending is None or pending.response.is_done() or pending.type is discord.InteractionType.modal_submit:
            raise BotError("This step needs a button press to open its form. Run the command again.")
        custom_id = f"wizard:{uuid.uuid4().hex}"
        await pending.response.send_modal(WizardModal(screen, custom_id, timeout=self._timeout))
        return custom_id

    async def _render(self, embed: discord.Embed, view: discord.ui.View | None) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending.response.is_done():
            if self._message is None:
                await pending.response.send_message(embed=embed, view=view, ephemeral=True)
                self._message = await pending.original_response()
            else:
                await pending.response.edit_message(embed=embed, view=view)
            return
        if self._message is None:
            raise BotError("The configuration message is no longer available.")
        self._message = await self._message.edit(embed=embed, view=view)
