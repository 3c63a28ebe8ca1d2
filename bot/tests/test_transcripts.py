from __future__ import annotations

from pathlib import Path

import pytest
from conftest import GUILD_ID, REQUESTER_ID, STAFF_ID, Engine, FakeChannelManager

from core.config import TranscriptConfig
from core.errors import TicketDeletedError
from database.models import TicketRecord
from services.channels import MessageContent
from services.outcomes import OutcomeKind
from services.transcript_service import TranscriptService
from utils.constants import TicketStatus

LOG_CHANNEL_ID = 888


async def _open(engine: Engine) -> TicketRecord:
    category = (await engine.categories.list(GUILD_ID))[0]
    outcome = await engine.tickets.create_ticket(GUILD_ID, REQUESTER_ID, category.id)
    assert outcome.value is not None
    return outcome.value


@pytest.mark.asyncio
async def test_close_posts_transcript_to_log_channel_and_owner(tenant: Engine) -> None:
    await tenant.config_store.configure_button(GUILD_ID, {"log_channel_id": LOG_CHANNEL_ID})
    ticket = await _open(tenant)
    tenant.channels.messages[ticket.channel_id].append(MessageContent(content="<b>printer</b> is on fire"))

    outcome = await tenant.tickets.close_ticket(ticket.id, STAFF_ID, "fixed")

    assert outcome.kind is OutcomeKind.SUCCESS
    summary = tenant.channels.messages[LOG_CHANNEL_ID][-1]
    assert summary.title == "Ticket #0001 | Transcript"
    assert ("Reason", "fixed") in summary.fields
    assert [item.filename for item in summary.files] == ["ticket-0001.html", "ticket-0001.txt"]
    html = summary.files[0].data.decode("utf-8")
    assert "&lt;b&gt;printer&lt;/b&gt; is on fire" in html
    assert "<b>printer</b>" not in html

    user_id, direct = tenant.notifier.sent[-1]
    assert user_id == REQUESTER_ID
    assert [item.filename for item in direct.files] == ["ticket-0001.html", "ticket-0001.txt"]


@pytest.mark.asyncio
async def test_without_log_channel_nothing_is_delivered(tenant: Engine) -> None:
    ticket = await _open(tenant)

    outcome = await tenant.tickets.close_ticket(ticket.id, STAFF_ID)

    assert outcome.kind is OutcomeKind.SUCCESS
    assert LOG_CHANNEL_ID not in tenant.channels.messages
    assert tenant.notifier.sent == []


@pytest.mark.asyncio
async def test_unreadable_history_degrades_close_to_partial(tenant: Engine) -> None:
    await tenant.config_store.configure_button(GUILD_ID, {"log_channel_id": LOG_CHANNEL_ID})
    ticket = await _open(tenant)
    tenant.channels.failing = {"fetch_history"}

    outcome = await tenant.tickets.close_ticket(ticket.id, STAFF_ID)

    assert outcome.kind is OutcomeKind.PARTIAL
    assert outcome.warnings == ["The ticket transcript could not be generated."]
    assert (await tenant.tickets.get_ticket(ticket.id)).status is TicketStatus.CLOSED


@pytest.mark.asyncio
async def test_close_and_reopen_rename_the_channel(tenant: Engine) -> None:
    ticket = await _open(tenant)

    await tenant.tickets.close_ticket(ticket.id, STAFF_ID)
    assert tenant.channels.channels[ticket.channel_id] == "closed-ticket-0001"

    await tenant.tickets.reopen_ticket(ticket.id, STAFF_ID)
    assert tenant.channels.channels[ticket.channel_id] == "ticket-0001"

    tenant.channels.failing = {"rename_channel"}
    outcome = await tenant.tickets.close_ticket(ticket.id, STAFF_ID)
    assert outcome.kind is OutcomeKind.PARTIAL
    assert outcome.warnings == ["The ticket channel could not be renamed."]


@pytest.mark.asyncio
async def test_generate_transcript_on_demand(tenant: Engine) -> None:
    ticket = await _open(tenant)
    tenant.channels.messages[ticket.channel_id].append(MessageContent(content="still broken"))

    outcome = await tenant.tickets.generate_transcript(ticket.id)

    assert outcome.kind is OutcomeKind.SUCCESS
    assert outcome.value is not None
    assert outcome.value.message_count == 2
    text = outcome.value.files[1].data.decode("utf-8")
    assert text.splitlines()[-1].endswith("still broken")

    await tenant.tickets.delete_ticket(ticket.id, STAFF_ID, privileged=True)
    await tenant.tickets.wait_for_background_tasks()
    refused = await tenant.tickets.generate_transcript(ticket.id)
    assert isinstance(refused.error, TicketDeletedError)


@pytest.mark.asyncio
async def test_transcripts_are_stored_when_a_directory_is_set(tenant: Engine, tmp_path: Path) -> None:
    ticket = await _open(tenant)
    channels = FakeChannelManager()
    channels.messages[ticket.channel_id].append(MessageContent(content="hello"))
    service = TranscriptService(
        TranscriptConfig(txt_enabled=False, storage_directory=str(tmp_path)), channels
    )

    transcript = await service.generate(ticket)

    assert [item.filename for item in transcript.files] == ["ticket-0001.html"]
    assert transcript.paths == [tmp_path / str(GUILD_ID) / ticket.id / "ticket-0001.html"]
    assert "hello" in transcript.paths[0].read_text(encoding="utf-8")
