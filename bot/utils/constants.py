from __future__ import annotations

from enum import StrEnum


class TicketStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ButtonStyle(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    SUCCESS = "success"
    DANGER = "danger"


class TicketEvent(StrEnum):
    CREATE = "create"
    CLOSE = "close"
    REOPEN = "reopen"
    ARCHIVE = "archive"
    DELETE = "delete"
    CLAIM = "claim"
    UNCLAIM = "unclaim"
    ADD_USER = "add_user"
    REMOVE_USER = "remove_user"
    TRANSFER = "transfer"


DEFAULT_CATEGORY_NAME = "tickets"
DEFAULT_BUTTON_LABEL = "Create Ticket"
DEFAULT_BUTTON_EMOJI = "🎫"
DEFAULT_SELECT_PLACEHOLDER = "Select a ticket category"
DEFAULT_PANEL_TITLE = "Need Help?"
DEFAULT_PANEL_DESCRIPTION = "Click the button below to create a ticket."
DEFAULT_PANEL_COLOR = "#5865F2"
DEFAULT_WELCOME_MESSAGE = "Welcome to your ticket in the {category} category!"
DEFAULT_CLOSE_MESSAGE = "This ticket in the {category} category has been closed."

DEFAULT_SETUP_CATEGORY = "General Support"
DEFAULT_SETUP_CATEGORY_DESCRIPTION = "Questions, account help and anything else."

PENDING_CHANNEL_NAME = "ticket-new"
CHANNEL_NAME_TEMPLATE = "ticket-{number:04d}"
CLOSED_CHANNEL_NAME_TEMPLATE = "closed-ticket-{number:04d}"

DEFAULT_CLOSE_REASON = "No reason provided"
STALE_CHANNEL_REASON = "channel missing"
DELETED_BY_STAFF_REASON = "deleted by staff"
ARCHIVED_REASON = "archived"

SELECT_MENU_MAX_OPTIONS = 25
BUTTON_LABEL_MAX_LENGTH = 80
SELECT_PLACEHOLDER_MAX_LENGTH = 150
CATEGORY_NAME_MAX_LENGTH = 100
EMBED_TITLE_MAX_LENGTH = 256
EMBED_DESCRIPTION_MAX_LENGTH = 4000
TEMPLATE_MAX_LENGTH = 2000

# Persistent component ids. Panel and control messages survive restarts through these.
CUSTOM_ID_CREATE = "ticket:create"
CUSTOM_ID_CLOSE = "ticket:close"
CUSTOM_ID_REOPEN = "ticket:reopen"
CUSTOM_ID_CLAIM = "ticket:claim"
CUSTOM_ID_ARCHIVE = "ticket:archive"
CUSTOM_ID_DELETE = "ticket:delete"
CONTROL_CUSTOM_IDS = {
    "create": CUSTOM_ID_CREATE,
    "close": CUSTOM_ID_CLOSE,
    "reopen": CUSTOM_ID_REOPEN,
    "claim": CUSTOM_ID_CLAIM,
    "archive": CUSTOM_ID_ARCHIVE,
    "delete": CUSTOM_ID_DELETE,
}
