from __future__ import annotations

import json
from collections.abc import Collection, Mapping
from typing import Any
from uuid import uuid4

from core.errors import PersistenceError
from database.base import Database, Transaction
from database.models import (
    ButtonConfig,
    MessageTemplate,
    SelectMenuConfig,
    TenantConfig,
    TicketCategory,
    TicketEventRecord,
    TicketRecord,
)
from utils.constants import ButtonStyle, TicketStatus
from utils.time import now_iso


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"), default=str)


async def _update_columns(
    executor: Database | Transaction,
    table: str,
    key_column: str,
    key: Any,
    changes: Mapping[str, Any],
    allowed: Collection[str],
) -> int:
    """Partial update: only the given columns are written, everything else is left as-is."""
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown columns for {table}: {sorted(unknown)}")
    if not changes:
        return 0
    assignments = ", ".join(f"{column} = ?" for column in changes)
    params = [*changes.values(), now_iso(), key]
    return await executor.execute(
        f"UPDATE {table} SET {assignments}, updated_at = ? WHERE {key_column} = ?;",
        params,
    )


class GuildConfigRepository:
    BUTTON_COLUMNS = (
        "label",
        "emoji",
        "style",
        "message_id",
        "channel_id",
        "log_channel_id",
        "embed_title",
        "embed_description",
        "embed_color",
    )
    SELECT_MENU_COLUMNS = (
        "placeholder",
        "message_id",
        "min_values",
        "max_values",
        "embed_title",
        "embed_description",
        "embed_color",
    )
    CONFIG_COLUMNS = ("default_category_name", "is_enabled")

    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure(self, guild_id: int, default_category_name: str | None = None) -> bool:
        """Create the tenant row with its button and select-menu rows. Returns True when created."""
        now = now_iso()
        async with self.db.transaction() as tx:
            created = await tx.execute(
                """
                INSERT INTO guild_configs(guild_id, default_category_name, created_at, updated_at)
                VALUES (?, COALESCE(?, 'tickets'), ?, ?)
                ON CONFLICT(guild_id) DO NOTHING;
                """,
                [guild_id, default_category_name, now, now],
            )
            await tx.execute(
                """
                INSERT INTO ticket_buttons(guild_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(guild_id) DO NOTHING;
                """,
                [guild_id, now, now],
            )
            await tx.execute(
                """
                INSERT INTO select_menu_configs(guild_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(guild_id) DO NOTHING;
                """,
                [guild_id, now, now],
            )
        return created > 0

    async def get(self, guild_id: int) -> TenantConfig | None:
        row = await self.db.fetchone("SELECT * FROM guild_configs WHERE guild_id = ?;", [guild_id])
        if not row:
            return None
        return TenantConfig(
            guild_id=row["guild_id"],
            default_category_name=row["default_category_name"],
            is_enabled=bool(row["is_enabled"]),
            ticket_counter=int(row["ticket_counter"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def update(self, guild_id: int, changes: Mapping[str, Any]) -> int:
        return await _update_columns(self.db, "guild_configs", "guild_id", guild_id, changes, self.CONFIG_COLUMNS)

    async def delete(self, guild_id: int) -> bool:
        deleted = await self.db.execute("DELETE FROM guild_configs WHERE guild_id = ?;", [guild_id])
        return deleted > 0

    async def get_button(self, guild_id: int) -> ButtonConfig | None:
        row = await self.db.fetchone("SELECT * FROM ticket_buttons WHERE guild_id = ?;", [guild_id])
        if not row:
            return None
        return ButtonConfig(
            guild_id=row["guild_id"],
            label=row["label"],
            emoji=row["emoji"],
            style=ButtonStyle(row["style"]),
            message_id=row["message_id"],
            channel_id=row["channel_id"],
            log_channel_id=row["log_channel_id"],
            embed_title=row["embed_title"],
            embed_description=row["embed_description"],
            embed_color=row["embed_color"],
            updated_at=row["updated_at"],
        )

    async def update_button(self, guild_id: int, changes: Mapping[str, Any]) -> int:
        values = dict(changes)
        if isinstance(values.get("style"), ButtonStyle):
            values["style"] = values["style"].value
        return await _update_columns(self.db, "ticket_buttons", "guild_id", guild_id, values, self.BUTTON_COLUMNS)

    async def get_select_menu(self, guild_id: int) -> SelectMenuConfig | None:
        row = await self.db.fetchone("SELECT * FROM select_menu_configs WHERE guild_id = ?;", [guild_id])
        if not row:
            return None
        return SelectMenuConfig(
            guild_id=row["guild_id"],
            placeholder=row["placeholder"],
            message_id=row["message_id"],
            min_values=int(row["min_values"]),
            max_values=int(row["max_values"]),
            embed_title=row["embed_title"],
            embed_description=row["embed_description"],
            embed_color=row["embed_color"],
            updated_at=row["updated_at"],
        )

    async def update_select_menu(self, guild_id: int, changes: Mapping[str, Any]) -> int:
        return await _update_columns(
            self.db, "select_menu_configs", "guild_id", guild_id, changes, self.SELECT_MENU_COLUMNS
        )


class CategoryRepository:
    UPDATABLE_COLUMNS = (
        "name",
        "description",
        "emoji",
        "support_role_id",
        "parent_channel_id",
        "is_enabled",
        "position",
    )

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, category: TicketCategory) -> None:
        now = now_iso()
        await self.db.execute(
            """
            INSERT INTO ticket_categories(
                id, guild_id, name, description, emoji, support_role_id, parent_channel_id,
                ticket_count, is_enabled, position, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                category.id,
                category.guild_id,
                category.name,
                category.description,
                category.emoji,
                category.support_role_id,
                category.parent_channel_id,
                category.ticket_count,
                category.is_enabled,
                category.position,
                now,
                now,
            ],
        )
        category.created_at = now
        category.updated_at = now

    async def get(self, category_id: str) -> TicketCategory | None:
        row = await self.db.fetchone("SELECT * FROM ticket_categories WHERE id = ?;", [category_id])
        if not row:
            return None
        return self._row_to_category(row)

    async def list_by_guild(self, guild_id: int, enabled_only: bool = False) -> list[TicketCategory]:
        query = "SELECT * FROM ticket_categories WHERE guild_id = ?"
        if enabled_only:
            query += " AND is_enabled = TRUE"
        rows = await self.db.fetchall(f"{query} ORDER BY position ASC, created_at ASC;", [guild_id])
        return [self._row_to_category(row) for row in rows]

    async def count_by_guild(self, guild_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS total FROM ticket_categories WHERE guild_id = ?;", [guild_id]
        )
        return int(row["total"]) if row else 0

    async def next_position(self, guild_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT MAX(position) AS highest FROM ticket_categories WHERE guild_id = ?;", [guild_id]
        )
        if not row or row["highest"] is None:
            return 0
        return int(row["highest"]) + 1

    async def update(self, category_id: str, changes: Mapping[str, Any]) -> int:
        return await _update_columns(
            self.db, "ticket_categories", "id", category_id, changes, self.UPDATABLE_COLUMNS
        )

    async def delete_unless_last(self, category_id: str, guild_id: int) -> int:
        # Single statement so two concurrent deletes cannot both pass the count check.
        return await self.db.execute(
            """
            DELETE FROM ticket_categories
            WHERE id = ?
              AND (SELECT COUNT(*) FROM ticket_categories WHERE guild_id = ?) > 1;
            """,
            [category_id, guild_id],
        )

    def _row_to_category(self, row: dict[str, Any]) -> TicketCategory:
        return TicketCategory(
            id=row["id"],
            guild_id=row["guild_id"],
            name=row["name"],
            description=row["description"],
            emoji=row["emoji"],
            support_role_id=row["support_role_id"],
            parent_channel_id=row["parent_channel_id"],
            ticket_count=int(row["ticket_count"]),
            is_enabled=bool(row["is_enabled"]),
            position=int(row["position"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class MessageTemplateRepository:
    UPDATABLE_COLUMNS = ("welcome_message", "close_message", "include_support_team")

    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure(self, category_id: str, welcome_message: str | None, close_message: str | None) -> None:
        now = now_iso()
        await self.db.execute(
            """
            INSERT INTO ticket_messages(
                category_id, welcome_message, close_message, include_support_team, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(category_id) DO NOTHING;
            """,
            [category_id, welcome_message, close_message, True, now, now],
        )

    async def get(self, category_id: str) -> MessageTemplate | None:
        row = await self.db.fetchone("SELECT * FROM ticket_messages WHERE category_id = ?;", [category_id])
        if not row:
            return None
        return MessageTemplate(
            category_id=row["category_id"],
            welcome_message=row["welcome_message"],
            close_message=row["close_message"],
            include_support_team=bool(row["include_support_team"]),
            updated_at=row["updated_at"],
        )

    async def update(self, category_id: str, changes: Mapping[str, Any]) -> int:
        return await _update_columns(
            self.db, "ticket_messages", "category_id", category_id, changes, self.UPDATABLE_COLUMNS
        )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create_with_next_number(
        self,
        guild_id: int,
        category_id: str,
        channel_id: int,
        creator_id: int,
    ) -> TicketRecord:
        """Allocate the tenant's next number and insert the ticket in one transaction."""
        ticket_id = str(uuid4())
        now = now_iso()
        async with self.db.transaction() as tx:
            counter = await tx.fetchone(
                """
                UPDATE guild_configs
                SET ticket_counter = ticket_counter + 1, updated_at = ?
                WHERE guild_id = ?
                RETURNING ticket_counter;
                """,
                [now, guild_id],
            )
            if counter is None:
                raise PersistenceError("Ticket numbering is not set up for this server.")
            ticket_number = int(counter["ticket_counter"])
            await tx.execute(
                """
                INSERT INTO tickets(
                    id, guild_id, category_id, ticket_number, channel_id, creator_id,
                    status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    ticket_id,
                    guild_id,
                    category_id,
                    ticket_number,
                    channel_id,
                    creator_id,
                    TicketStatus.OPEN.value,
                    now,
                    now,
                ],
            )
            await tx.execute(
                """
                UPDATE ticket_categories
                SET ticket_count = ticket_count + 1, updated_at = ?
                WHERE id = ?;
                """,
                [now, category_id],
            )
        return TicketRecord(
            id=ticket_id,
            guild_id=guild_id,
            category_id=category_id,
            ticket_number=ticket_number,
            channel_id=channel_id,
            creator_id=creator_id,
            status=TicketStatus.OPEN,
            created_at=now,
            updated_at=now,
        )

    async def get_by_id(self, ticket_id: str) -> TicketRecord | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE id = ?;", [ticket_id])
        if not row:
            return None
        return self._row_to_ticket(row)

    async def get_by_channel(self, channel_id: int) -> TicketRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE channel_id = ? ORDER BY created_at DESC LIMIT 1;",
            [channel_id],
        )
        if not row:
            return None
        return self._row_to_ticket(row)

    async def list_open_by_creator(self, guild_id: int, creator_id: int) -> list[TicketRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE guild_id = ? AND creator_id = ? AND status = ?
            ORDER BY ticket_number ASC;
            """,
            [guild_id, creator_id, TicketStatus.OPEN.value],
        )
        return [self._row_to_ticket(row) for row in rows]

    async def list_by_guild(
        self, guild_id: int, status: TicketStatus | None = None, limit: int = 100
    ) -> list[TicketRecord]:
        if status is None:
            rows = await self.db.fetchall(
                "SELECT * FROM tickets WHERE guild_id = ? ORDER BY ticket_number DESC LIMIT ?;",
                [guild_id, limit],
            )
        else:
            rows = await self.db.fetchall(
                """
                SELECT * FROM tickets
                WHERE guild_id = ? AND status = ?
                ORDER BY ticket_number DESC
                LIMIT ?;
                """,
                [guild_id, status.value, limit],
            )
        return [self._row_to_ticket(row) for row in rows]

    async def update_status(
        self,
        ticket_id: str,
        *,
        expected: Collection[TicketStatus],
        status: TicketStatus,
        closed_by_id: int | None,
        closed_at: str | None,
        close_reason: str | None,
    ) -> bool:
        """Conditional transition. Returns False if the ticket left ``expected`` meanwhile."""
        placeholders = ", ".join("?" for _ in expected)
        updated = await self.db.execute(
            f"""
            UPDATE tickets
            SET status = ?, closed_by_id = ?, closed_at = ?, close_reason = ?, updated_at = ?
            WHERE id = ? AND status IN ({placeholders}) AND deleted_at IS NULL;
            """,
            [
                status.value,
                closed_by_id,
                closed_at,
                close_reason,
                now_iso(),
                ticket_id,
                *(item.value for item in expected),
            ],
        )
        return updated > 0

    async def mark_deleted(self, ticket_id: str, *, deleted_by_id: int, deleted_at: str, reason: str) -> bool:
        """Close the ticket for good. Returns False if it was already deleted."""
        updated = await self.db.execute(
            """
            UPDATE tickets
            SET status = ?, closed_by_id = ?, closed_at = ?, close_reason = ?, deleted_at = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL;
            """,
            [TicketStatus.CLOSED.value, deleted_by_id, deleted_at, reason, deleted_at, now_iso(), ticket_id],
        )
        return updated > 0

    async def set_claim(self, ticket_id: str, staff_id: int | None) -> None:
        await self.db.execute(
            """
            UPDATE tickets
            SET claimed_by_id = ?, claimed_at = ?, updated_at = ?
            WHERE id = ?;
            """,
            [staff_id, now_iso() if staff_id is not None else None, now_iso(), ticket_id],
        )

    async def set_creator(self, ticket_id: str, creator_id: int) -> None:
        await self.db.execute(
            "UPDATE tickets SET creator_id = ?, updated_at = ? WHERE id = ?;",
            [creator_id, now_iso(), ticket_id],
        )

    async def status_counts(self, guild_id: int) -> dict[str, int]:
        rows = await self.db.fetchall(
            """
            SELECT status, COUNT(*) AS total
            FROM tickets
            WHERE guild_id = ?
            GROUP BY status;
            """,
            [guild_id],
        )
        return {str(row["status"]): int(row["total"]) for row in rows}

    async def category_counts(self, guild_id: int) -> dict[str, int]:
        rows = await self.db.fetchall(
            """
            SELECT COALESCE(c.name, 'Uncategorized') AS name, COUNT(t.id) AS total
            FROM tickets t
            LEFT JOIN ticket_categories c ON c.id = t.category_id
            WHERE t.guild_id = ?
            GROUP BY COALESCE(c.name, 'Uncategorized')
            ORDER BY total DESC;
            """,
            [guild_id],
        )
        return {str(row["name"]): int(row["total"]) for row in rows}

    def _row_to_ticket(self, row: dict[str, Any]) -> TicketRecord:
        return TicketRecord(
            id=row["id"],
            guild_id=row["guild_id"],
            category_id=row["category_id"],
            ticket_number=int(row["ticket_number"]),
            channel_id=row["channel_id"],
            creator_id=row["creator_id"],
            status=TicketStatus(row["status"]),
            claimed_by_id=row["claimed_by_id"],
            claimed_at=row["claimed_at"],
            closed_by_id=row["closed_by_id"],
            closed_at=row["closed_at"],
            close_reason=row["close_reason"],
            deleted_at=row["deleted_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class EventRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def log(
        self,
        ticket_id: str,
        guild_id: int,
        actor_id: int | None,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_events(id, ticket_id, guild_id, actor_id, event_type, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            [str(uuid4()), ticket_id, guild_id, actor_id, event_type, _json_dump(payload or {}), now_iso()],
        )

    async def list_for_ticket(self, ticket_id: str, limit: int = 100) -> list[TicketEventRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM ticket_events
            WHERE ticket_id = ?
            ORDER BY created_at ASC
            LIMIT ?;
            """,
            [ticket_id, limit],
        )
        return [
            TicketEventRecord(
                id=row["id"],
                ticket_id=row["ticket_id"],
                guild_id=row["guild_id"],
                actor_id=row["actor_id"],
                event_type=row["event_type"],
                payload=dict(_json_load(row["payload_json"], {})),
                created_at=row["created_at"],
            )
            for row in rows
        ]
