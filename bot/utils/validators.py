from __future__ import annotations

import re

from core.errors import InvalidInputError
from utils.constants import SELECT_MENU_MAX_OPTIONS, ButtonStyle

HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
SNOWFLAKE_PATTERN = re.compile(r"^<?[@#&!]*(\d{15,21})>?$")


def normalize_color(value: str | None) -> str | None:
    """Return ``#RRGGBB``/``#RGB`` or None for blank input; a missing ``#`` is added."""
    if value is None or not value.strip():
        return None
    color = value.strip()
    if not color.startswith("#"):
        color = f"#{color}"
    if not HEX_COLOR_PATTERN.match(color):
        raise InvalidInputError(
            f"`{value}` is not a valid hex color. Use a format like #FF0000.", field_name="color"
        )
    return color.upper()


def color_to_int(value: str | None, default: int = 0x5865F2) -> int:
    if not value:
        return default
    digits = value.lstrip("#")
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    try:
        return int(digits, 16)
    except ValueError:
        return default


def parse_button_style(value: str | ButtonStyle) -> ButtonStyle:
    if isinstance(value, ButtonStyle):
        return value
    try:
        return ButtonStyle(str(value).strip().lower())
    except ValueError:
        options = ", ".join(style.value for style in ButtonStyle)
        raise InvalidInputError(
            f"`{value}` is not a button style. Choose one of: {options}.", field_name="style"
        ) from None


def require_text(value: str | None, field_name: str, max_length: int) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidInputError(f"{field_name.replace('_', ' ').capitalize()} cannot be empty.", field_name=field_name)
    if len(cleaned) > max_length:
        raise InvalidInputError(
            f"{field_name.replace('_', ' ').capitalize()} must be at most {max_length} characters.",
            field_name=field_name,
        )
    return cleaned


def optional_text(value: str | None, field_name: str, max_length: int) -> str | None:
    if value is None or not value.strip():
        return None
    return require_text(value, field_name, max_length)


def parse_snowflake(value: str | int | None, field_name: str) -> int | None:
    """Accept raw ids and ``<@&id>``/``<#id>`` mentions; blank means unset."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    cleaned = value.strip()
    if not cleaned:
        return None
    match = SNOWFLAKE_PATTERN.match(cleaned)
    if not match:
        raise InvalidInputError(f"`{value}` is not a valid Discord id.", field_name=field_name)
    return int(match.group(1))


def parse_int(value: str | int | None, field_name: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field_name.replace('_', ' ').capitalize()} must be a whole number.", field_name=field_name) from None
    if minimum is not None and number < minimum:
        raise InvalidInputError(f"{field_name.replace('_', ' ').capitalize()} must be at least {minimum}.", field_name=field_name)
    if maximum is not None and number > maximum:
        raise InvalidInputError(f"{field_name.replace('_', ' ').capitalize()} must be at most {maximum}.", field_name=field_name)
    return number


def validate_select_bounds(min_values: int, max_values: int) -> None:
    if not 1 <= min_values <= max_values <= SELECT_MENU_MAX_OPTIONS:
        raise InvalidInputError(
            f"Selectable counts must satisfy 1 <= min <= max <= {SELECT_MENU_MAX_OPTIONS}.",
            field_name="min_values",
        )
