from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from core.api import create_api_app
from core.errors import TicketNotFoundError
from database.models import TicketEventRecord, TicketRecord, TicketStats
from utils.constants import TicketStatus

TICKET = TicketRecord(
    id="t-1",
    guild_id=123456789012345678,
    category_id="c-1",
    ticket_number=7,
    channel_id=223456789012345678,
    creator_id=323456789012345678,
)


class StubTicketService:
    def __init__(self) -> None:
        self.list_calls: list[tuple[int, TicketStatus | None, int]] = []

    async def get_stats(self, guild_id: int) -> TicketStats:
        return TicketStats(guild_id=guild_id, total=3, open=2, closed=1, category_counts={"General Support": 3})

    async def list_tickets(self, guild_id: int, status: TicketStatus | None = None, limit: int = 50) -> list[TicketRecord]:
        self.list_calls.append((guild_id, status, limit))
        return [TICKET]

    async def get_ticket(self, ticket_id: str) -> TicketRecord:
        if ticket_id != TICKET.id:
            raise TicketNotFoundError()
        return TICKET

    async def list_events(self, ticket_id: str) -> list[TicketEventRecord]:
        return [
            TicketEventRecord(
                id="e-1",
                ticket_id=ticket_id,
                guild_id=TICKET.guild_id,
                actor_id=TICKET.creator_id,
                event_type="created",
                payload={"ticket_number": 7},
                created_at="2024-01-01T00:00:00+00:00",
            )
        ]


@pytest.fixture
def service() -> StubTicketService:
    return StubTicketService()


def _client(service: StubTicketService, api_key: str = "secret") -> TestClient:
    bot = SimpleNamespace(config=SimpleNamespace(fastapi=SimpleNamespace(api_key=api_key)), ticket_service=service)
    return TestClient(create_api_app(bot))


def test_health_needs_no_key(service: StubTicketService) -> None:
    response = _client(service).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_key_is_enforced(service: StubTicketService) -> None:
    client = _client(service)
    assert client.get("/guilds/1/stats").status_code == 401
    assert client.get("/guilds/1/stats", headers={"x-api-key": "wrong"}).status_code == 401
    assert client.get("/guilds/1/stats", headers={"x-api-key": "secret"}).status_code == 200


def test_empty_key_disables_auth(service: StubTicketService) -> None:
    assert _client(service, api_key="").get("/guilds/1/stats").status_code == 200


def test_stats(service: StubTicketService) -> None:
    body = _client(service).get("/guilds/1/stats", headers={"x-api-key": "secret"}).json()
    assert body == {
        "total": 3,
        "open": 2,
        "closed": 1,
        "archived": 0,
        "category_counts": {"General Support": 3},
    }


def test_ticket_list_serialises_snowflakes_and_clamps_limit(service: StubTicketService) -> None:
    client = _client(service)
    response = client.get("/guilds/1/tickets?status=open&limit=5000", headers={"x-api-key": "secret"})

    assert response.status_code == 200
    item = response.json()["items"][0]
    assert item["channel_id"] == "223456789012345678"
    assert item["status"] == "open"
    assert item["claimed_by_id"] is None
    assert service.list_calls == [(1, TicketStatus.OPEN, 200)]

    assert client.get("/guilds/1/tickets?status=pending", headers={"x-api-key": "secret"}).status_code == 422


def test_ticket_detail(service: StubTicketService) -> None:
    client = _client(service)
    response = client.get("/tickets/t-1", headers={"x-api-key": "secret"})

    assert response.status_code == 200
    body = response.json()
    assert body["ticket"]["ticket_number"] == 7
    assert body["events"] == [
        {
            "event_type": "created",
            "actor_id": "323456789012345678",
            "payload": {"ticket_number": 7},
            "created_at": "2024-01-01T00:00:00+00:00",
        }
    ]

    assert client.get("/tickets/missing", headers={"x-api-key": "secret"}).status_code == 404
