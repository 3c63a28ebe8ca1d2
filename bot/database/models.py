from __future__ import annotations

from dataclasses import dataclass, field

from utils.constants import (
    DEFAULT_BUTTON_EMOJI,
    DEFAULT_BUTTON_LABEL,
    DEFAULT_CATEGORY_NAME,
    DEFAULT_SELECT_PLACEHOLDER,
    ButtonStyle,
    TicketStatus,
)


@dataclass(slots=True)
class TenantConfig:
    guild_id: int
    default_category_name: str = DEFAULT_CATEGORY_NAME
    is_enabled: bool = True
    ticket_counter: int = 0
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class ButtonConfig:
    guild_id: int
    label: str = DEFAULT_BUTTON_LABEL
    emoji: str = DEFAULT_BUTTON_EMOJI
    style: ButtonStyle = ButtonStyle.PRIMARY
    message_id: int | None = None
    channel_id: int | None = None
    log_channel_id: int | None = None
    embed_title: str | None = None
    embed_description: str | None = None
    embed_color: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class SelectMenuConfig:
    guild_id: int
    placeholder: str = DEFAULT_SELECT_PLACEHOLDER
    message_id: int | None = None
    min_values: int = 1
    max_values: int = 1
    embed_title: str | None = None
    embed_description: str | None = None
    embed_color: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class TicketCategory:
    id: str
    guild_id: int
    name: str
    description: str | None = None
    emoji: str | None = None
    support_role_id: int | None = None
    parent_channel_id: int | None = None
    ticket_count: int = 0
    is_enabled: bool = True
    position: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.emoji} {self.name}" if self.emoji else self.name


@dataclass(slots=True)
class MessageTemplate:
    category_id: str
    welcome_message: str | None = None
    close_message: str | None = None
    include_support_team: bool = True
    updated_at: str | None = None


@dataclass(slots=True)
class TicketRecord:
    id: str
    guild_id: int
    category_id: str | None
    ticket_number: int
    channel_id: int
    creator_id: int
    status: TicketStatus = TicketStatus.OPEN
    claimed_by_id: int | None = None
    claimed_at: str | None = None
    closed_by_id: int | None = None
    closed_at: str | None = None
    close_reason: str | None = None
    deleted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_open(self) -> bool:
        return self.status is TicketStatus.OPEN


@dataclass(slots=True)
class TicketEventRecord:
    id: str
    ticket_id: str
    guild_id: int
    actor_id: int | None
    event_type: str
    payload: dict[str, object]
    created_at: str


@dataclass(slots=True)
class TicketStats:
    guild_id: int
    total: int = 0
    open: int = 0
    closed: int = 0
    archived: int = 0
    category_counts: dict[str, int] = field(default_factory=dict)
