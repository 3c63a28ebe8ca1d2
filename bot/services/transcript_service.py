from __future__ import annotations

import html
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from core.config import TranscriptConfig
from database.models import TicketRecord
from services.channels import ChannelResourceManager, FileAttachment, HistoryMessage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Transcript:
    ticket_id: str
    ticket_number: int
    message_count: int
    files: list[FileAttachment] = field(default_factory=list)
    paths: list[Path] = field(default_factory=list)


class TranscriptService:
    """Reads a ticket channel back and renders it as HTML and plain text.

    Files are always returned in memory so they can be attached to messages. When
    ``storage_directory`` is set a copy is also written under ``<guild>/<ticket id>/``.
    """

    def __init__(self, config: TranscriptConfig, channels: ChannelResourceManager) -> None:
        self.config = config
        self.channels = channels
        self.base_dir = Path(config.storage_directory) if config.storage_directory else None

    async def generate(self, ticket: TicketRecord) -> Transcript:
        messages = await self.channels.fetch_history(ticket.channel_id, limit=self.config.message_limit)
        stem = f"ticket-{ticket.ticket_number:04d}"
        transcript = Transcript(ticket_id=ticket.id, ticket_number=ticket.ticket_number, message_count=len(messages))

        if self.config.html_enabled:
            body = self._build_html(stem, messages, self.config.include_attachments)
            transcript.files.append(FileAttachment(filename=f"{stem}.html", data=body.encode("utf-8")))
        if self.config.txt_enabled:
            body = self._build_text(messages, self.config.include_attachments)
            transcript.files.append(FileAttachment(filename=f"{stem}.txt", data=body.encode("utf-8")))

        if self.base_dir is not None and transcript.files:
            ticket_dir = self.base_dir / str(ticket.guild_id) / ticket.id
            ticket_dir.mkdir(parents=True, exist_ok=True)
            for item in transcript.files:
                path = ticket_dir / item.filename
                path.write_bytes(item.data)
                transcript.paths.append(path)

        LOGGER.info(
            "Built transcript for ticket %s (%s messages)",
            stem,
            len(messages),
            extra={"guild_id": ticket.guild_id, "ticket_id": ticket.id},
        )
        return transcript

    @staticmethod
    def _build_text(messages: Iterable[HistoryMessage], include_attachments: bool = True) -> str:
        lines: list[str] = []
        for msg in messages:
            lines.append(f"[{msg.created_at}] {msg.author_name} ({msg.author_id}): {msg.content}")
            if include_attachments:
                for url in msg.attachment_urls:
                    lines.append(f"  attachment: {url}")
        return "\n".join(lines)

    @staticmethod
    def _build_html(title: str, messages: Iterable[HistoryMessage], include_attachments: bool = True) -> str:
        rows: list[str] = []
        for msg in messages:
            attachment_html = ""
            if include_attachments and msg.attachment_urls:
                links = "".join(
                    f'<li><a href="{html.escape(url)}">{html.escape(url.rsplit("/", 1)[-1])}</a></li>'
                    for url in msg.attachment_urls
                )
                attachment_html = f"<ul>{links}</ul>"
            rows.append(
                "<div class='msg'>"
                f"<div class='meta'>{html.escape(msg.author_name)} | {html.escape(msg.created_at)}</div>"
                f"<div class='content'>{html.escape(msg.content)}</div>"
                f"{attachment_html}"
                "</div>"
            )

        return (
            "<!doctype html><html><head><meta charset='utf-8'>"
            "<style>"
            "body{font-family:Arial,sans-serif;background:#f5f7fb;color:#1f2937;padding:16px;}"
            ".msg{background:white;border:1px solid #e5e7eb;border-radius:8px;padding:10px;margin-bottom:8px;}"
            ".meta{font-size:12px;color:#6b7280;margin-bottom:6px;}"
            ".content{white-space:pre-wrap;}"
            "ul{margin-top:8px;}"
            "</style></head><body>"
            f"<h1>Transcript - {html.escape(title)}</h1>"
            + "".join(rows)
            + "</body></html>"
        )
