from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def now_iso() -> str:
    return utc_now().isoformat(timespec="microseconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def discord_timestamp(value: str | None, style: str = "F") -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return "n/a"
    return f"<t:{int(parsed.timestamp())}:{style}>"
