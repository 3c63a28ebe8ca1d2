"""Component views whose responses are consumed through the interaction collector.

The items here carry no callbacks of their own: ``cogs.events`` forwards every component
and modal interaction to the collector, and the coroutine waiting on the surface responds.
"""

from __future__ import annotations

from typing import Any

import discord

from services.collector import CollectedInteraction
from utils.constants import ButtonStyle
from views.rendering import to_discord_style

CONFIRM_ID = "prompt:confirm"
CANCEL_ID = "prompt:cancel"


class PromptView(discord.ui.View):
    def __init__(self, timeout: float) -> None:
        super().__init__(timeout=timeout)

    def add_button(
        self, custom_id: str, label: str, style: ButtonStyle = ButtonStyle.SECONDARY, emoji: str | None = None
    ) -> None:
        self.add_item(discord.ui.Button(label=label, style=to_discord_style(style), emoji=emoji, custom_id=custom_id))

    def add_select(
        self,
        custom_id: str,
        options: list[discord.SelectOption],
        placeholder: str | None = None,
        min_values: int = 1,
        max_values: int = 1,
    ) -> None:
        self.add_item(
            discord.ui.Select(
                custom_id=custom_id,
                options=options[:25],
                placeholder=placeholder,
                min_values=min_values,
                max_values=max_values,
            )
        )


def confirm_view(timeout: float, confirm_label: str = "Confirm") -> PromptView:
    view = PromptView(timeout=timeout)
    view.add_button(CONFIRM_ID, confirm_label, ButtonStyle.DANGER)
    view.add_button(CANCEL_ID, "Cancel")
    return view


def _modal_values(data: dict[str, Any]) -> dict[str, str]:
    form: dict[str, str] = {}
    for row in data.get("components", []):
        children = row.get("components") or ([row["component"]] if "component" in row else [])
        for child in children:
            if "custom_id" in child:
                form[str(child["custom_id"])] = str(child.get("value") or "")
    return form


def collect_interaction(interaction: discord.Interaction) -> CollectedInteraction | None:
    """Translate a raw component or modal interaction into a collector response.

    Component responses are keyed by the message they were pressed on, modal submissions
    by the modal's custom id. Buttons report their custom id as ``value``; selects report
    the first picked option.
    """
    data: dict[str, Any] = dict(interaction.data or {})
    if interaction.type is discord.InteractionType.component:
        if interaction.message is None:
            return None
        values = [str(value) for value in data.get("values", [])]
        return CollectedInteraction(
            surface=str(interaction.message.id),
            principal_id=interaction.user.id,
            value=values[0] if values else str(data.get("custom_id", "")),
            values=values,
            raw=interaction,
        )
    if interaction.type is discord.InteractionType.modal_submit:
        return CollectedInteraction(
            surface=str(data.get("custom_id", "")),
            principal_id=interaction.user.id,
            form=_modal_values(data),
            raw=interaction,
        )
    return None
