from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from fastapi import Depends, FastAPI, Header, HTTPException

from core.errors import TicketNotFoundError
from database.models import TicketRecord
from utils.constants import TicketStatus

if TYPE_CHECKING:
    from core.bot import TicketBot


def _ticket_payload(ticket: TicketRecord) -> dict[str, Any]:
    payload = asdict(ticket)
    payload["status"] = ticket.status.value
    # Snowflakes exceed the integer range JavaScript clients handle exactly.
    for key in ("guild_id", "channel_id", "creator_id", "claimed_by_id", "closed_by_id"):
        if payload[key] is not None:
            payload[key] = str(payload[key])
    return payload


def create_api_app(bot: TicketBot) -> FastAPI:
    app = FastAPI(title="Ticket Bot API", version="1.0.0")

    async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        expected = bot.config.fastapi.api_key
        if expected and x_api_key != expected:
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/guilds/{guild_id}/stats", dependencies=[Depends(require_api_key)])
    async def guild_stats(guild_id: int) -> dict[str, object]:
        stats = await bot.ticket_service.get_stats(guild_id)
        return {
            "total": stats.total,
            "open": stats.open,
            "closed": stats.closed,
            "archived": stats.archived,
            "category_counts": stats.category_counts,
        }

    @app.get("/guilds/{guild_id}/tickets", dependencies=[Depends(require_api_key)])
    async def guild_tickets(guild_id: int, status: str | None = None, limit: int = 50) -> dict[str, object]:
        try:
            wanted = TicketStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=422, detail="status must be open, closed or archived") from None
        tickets = await bot.ticket_service.list_tickets(guild_id, wanted, limit=max(1, min(limit, 200)))
        return {"items": [_ticket_payload(ticket) for ticket in tickets]}

    @app.get("/tickets/{ticket_id}", dependencies=[Depends(require_api_key)])
    async def ticket_detail(ticket_id: str) -> dict[str, object]:
        try:
            ticket = await bot.ticket_service.get_ticket(ticket_id)
        except TicketNotFoundError:
            raise HTTPException(status_code=404, detail="Ticket not found") from None
        events = await bot.ticket_service.list_events(ticket_id)
        return {
            "ticket": _ticket_payload(ticket),
            "events": [
                {
                    "event_type": event.event_type,
                    "actor_id": str(event.actor_id) if event.actor_id is not None else None,
                    "payload": event.payload,
                    "created_at": event.created_at,
                }
                for event in events
            ],
        }

    return app
