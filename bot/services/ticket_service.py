from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from core.config import TicketConfig
from core.errors import (
    AlreadyArchivedError,
    AlreadyClaimedError,
    AlreadyClosedError,
    AlreadyOpenError,
    CacheError,
    CategoryNotFoundError,
    CategoryUnavailableError,
    CooldownActiveError,
    DuplicateOpenTicketError,
    ExternalResourceError,
    InvalidInputError,
    PermissionDeniedError,
    PersistenceError,
    TenantDisabledError,
    TicketDeletedError,
    TicketNotFoundError,
    TicketStateError,
)
from database.models import MessageTemplate, TicketCategory, TicketEventRecord, TicketRecord, TicketStats
from database.repositories import EventRepository, TicketRepository
from services.cache import CacheBackend
from services.category_registry import CategoryRegistry
from services.channels import (
    ChannelResourceManager,
    ControlSpec,
    MessageContent,
    Notifier,
    PermissionGrant,
    PermissionState,
    Principal,
)
from services.config_store import ConfigStore
from services.message_templates import MessageTemplateStore
from services.outcomes import OperationOutcome, guarded
from services.transcript_service import Transcript, TranscriptService
from utils.constants import (
    ARCHIVED_REASON,
    CHANNEL_NAME_TEMPLATE,
    CLOSED_CHANNEL_NAME_TEMPLATE,
    DEFAULT_CLOSE_REASON,
    DELETED_BY_STAFF_REASON,
    PENDING_CHANNEL_NAME,
    STALE_CHANNEL_REASON,
    ButtonStyle,
    TicketEvent,
    TicketStatus,
)
from utils.cooldown import Cooldown
from utils.time import now_iso
from utils.validators import optional_text

LOGGER = logging.getLogger(__name__)

CLOSE_REASON_MAX_LENGTH = 500
UNCATEGORIZED = "Uncategorized"

ALLOW = PermissionState.ALLOW
DENY = PermissionState.DENY
INHERIT = PermissionState.INHERIT

WELCOME_CONTROLS = [
    ControlSpec(key="close", label="Close", emoji="🔒", style=ButtonStyle.DANGER),
    ControlSpec(key="claim", label="Claim", emoji="🙋", style=ButtonStyle.SUCCESS),
]
CLOSED_CONTROLS = [
    ControlSpec(key="reopen", label="Reopen", emoji="🔓", style=ButtonStyle.SUCCESS),
    ControlSpec(key="archive", label="Archive", emoji="🗄️", style=ButtonStyle.SECONDARY),
    ControlSpec(key="delete", label="Delete", emoji="🗑️", style=ButtonStyle.DANGER),
]


def ticket_label(ticket: TicketRecord) -> str:
    return f"#{ticket.ticket_number:04d}"


@dataclass(slots=True)
class TicketServiceDeps:
    config_store: ConfigStore
    categories: CategoryRegistry
    templates: MessageTemplateStore
    ticket_repo: TicketRepository
    event_repo: EventRepository
    channels: ChannelResourceManager
    notifier: Notifier
    cache: CacheBackend
    transcripts: TranscriptService


@dataclass(slots=True)
class _KeyedLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class TicketService:
    """Ticket lifecycle: open -> closed -> archived, with reopen and staff delete.

    Every mutating call returns an :class:`OperationOutcome`. The database row is the
    authority: once a status write commits, failures of follow-up channel edits only
    downgrade the outcome to partial. Delete never removes the row; it closes the ticket
    for good with reason "deleted by staff" and removes the channel after a short grace
    delay. A deleted ticket refuses every later transition.
    """

    def __init__(self, config: TicketConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps
        self.cooldown = Cooldown(deps.cache, "ticket-create")
        self._create_locks: dict[tuple[int, int], _KeyedLock] = {}
        self._background: set[asyncio.Task[None]] = set()

    # Lifecycle

    async def create_ticket(
        self, guild_id: int, requester_id: int, category_id: str
    ) -> OperationOutcome[TicketRecord]:
        # One create at a time per requester so the duplicate check cannot be raced.
        async with self._create_lock((guild_id, requester_id)):
            return await guarded(self._create_ticket(guild_id, requester_id, category_id))

    async def close_ticket(
        self, ticket_id: str, closed_by: int, reason: str | None = None
    ) -> OperationOutcome[TicketRecord]:
        return await guarded(self._close_ticket(ticket_id, closed_by, reason))

    async def reopen_ticket(self, ticket_id: str, reopened_by: int | None = None) -> OperationOutcome[TicketRecord]:
        return await guarded(self._reopen_ticket(ticket_id, reopened_by))

    async def archive_ticket(self, ticket_id: str, archived_by: int) -> OperationOutcome[TicketRecord]:
        return await guarded(self._archive_ticket(ticket_id, archived_by))

    async def delete_ticket(
        self, ticket_id: str, requested_by: int, *, privileged: bool
    ) -> OperationOutcome[TicketRecord]:
        return await guarded(self._delete_ticket(ticket_id, requested_by, privileged))

    async def claim_ticket(self, ticket_id: str, staff_id: int) -> OperationOutcome[TicketRecord]:
        return await guarded(self._claim_ticket(ticket_id, staff_id))

    async def add_participant(self, ticket_id: str, user_id: int, actor_id: int) -> OperationOutcome[TicketRecord]:
        return await guarded(self._add_participant(ticket_id, user_id, actor_id))

    async def remove_participant(
        self, ticket_id: str, user_id: int, actor_id: int
    ) -> OperationOutcome[TicketRecord]:
        return await guarded(self._remove_participant(ticket_id, user_id, actor_id))

    async def transfer_ownership(
        self, ticket_id: str, new_owner_id: int, actor_id: int
    ) -> OperationOutcome[TicketRecord]:
        return await guarded(self._transfer_ownership(ticket_id, new_owner_id, actor_id))

    async def generate_transcript(self, ticket_id: str) -> OperationOutcome[Transcript]:
        return await guarded(self._generate_transcript(ticket_id))

    # Lookups

    async def get_ticket(self, ticket_id: str) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError()
        return ticket

    async def get_ticket_by_channel(self, channel_id: int) -> TicketRecord:
        ticket = await self.deps.ticket_repo.get_by_channel(channel_id)
        if ticket is None:
            raise TicketNotFoundError("This channel is not a ticket.")
        return ticket

    async def list_tickets(
        self, guild_id: int, status: TicketStatus | None = None, limit: int = 50
    ) -> list[TicketRecord]:
        return await self.deps.ticket_repo.list_by_guild(guild_id, status=status, limit=limit)

    async def list_events(self, ticket_id: str) -> list[TicketEventRecord]:
        return await self.deps.event_repo.list_for_ticket(ticket_id)

    async def get_stats(self, guild_id: int) -> TicketStats:
        counts = await self.deps.ticket_repo.status_counts(guild_id)
        return TicketStats(
            guild_id=guild_id,
            total=sum(counts.values()),
            open=counts.get(TicketStatus.OPEN.value, 0),
            closed=counts.get(TicketStatus.CLOSED.value, 0),
            archived=counts.get(TicketStatus.ARCHIVED.value, 0),
            category_counts=await self.deps.ticket_repo.category_counts(guild_id),
        )

    async def wait_for_background_tasks(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Implementation

    async def _create_ticket(self, guild_id: int, requester_id: int, category_id: str) -> OperationOutcome[TicketRecord]:
        tenant = await self.deps.config_store.get(guild_id)
        if tenant is None:
            raise TenantDisabledError("The ticket system has not been set up on this server yet.")
        if not tenant.is_enabled:
            raise TenantDisabledError()

        await self._reject_duplicate(guild_id, requester_id)
        category = await self._usable_category(guild_id, category_id)

        scope = f"{guild_id}:{requester_id}"
        if self.config.creation_cooldown_seconds > 0:
            cooldown = await self.cooldown.peek(scope)
            if not cooldown.allowed:
                raise CooldownActiveError(
                    f"Please wait {cooldown.retry_after or self.config.creation_cooldown_seconds}s before creating another ticket.",
                    retry_after=cooldown.retry_after,
                )

        channels = self.deps.channels
        grants = [
            PermissionGrant(Principal.everyone(guild_id), view=DENY),
            PermissionGrant(Principal.member(requester_id), view=ALLOW, send=ALLOW),
            PermissionGrant(Principal.member(channels.bot_user_id), view=ALLOW, send=ALLOW, manage=ALLOW),
        ]
        if category.support_role_id:
            grants.append(PermissionGrant(Principal.role(category.support_role_id), view=ALLOW, send=ALLOW))

        channel_id = await channels.create_channel(
            guild_id,
            PENDING_CHANNEL_NAME,
            category.parent_channel_id,
            grants,
            reason=f"Ticket opened by {requester_id}",
        )
        try:
            ticket = await self.deps.ticket_repo.create_with_next_number(
                guild_id, category.id, channel_id, requester_id
            )
        except Exception:
            LOGGER.exception(
                "Ticket insert failed, removing channel %s", channel_id, extra={"guild_id": guild_id}
            )
            await self._discard_channel(channel_id)
            raise

        context = {"guild_id": guild_id, "ticket_id": ticket.id, "channel_id": channel_id}
        LOGGER.info("Ticket %s opened by %s", ticket_label(ticket), requester_id, extra=context)

        warnings: list[str] = []
        try:
            await self.cooldown.hit(scope, seconds=self.config.creation_cooldown_seconds)
        except CacheError as exc:
            LOGGER.warning("Could not start creation cooldown: %s", exc, extra=context)
            warnings.append("The ticket creation cooldown could not be recorded.")

        try:
            await channels.rename_channel(channel_id, CHANNEL_NAME_TEMPLATE.format(number=ticket.ticket_number))
        except ExternalResourceError as exc:
            LOGGER.warning("Could not rename ticket channel: %s", exc, extra=context)
            warnings.append("The ticket channel could not be renamed.")

        template = await self._template_or_default(category.id, context, warnings)
        try:
            await channels.post_message(channel_id, self._welcome_content(ticket, category, template))
        except ExternalResourceError as exc:
            LOGGER.warning("Could not post welcome message: %s", exc, extra=context)
            warnings.append("The welcome message could not be posted.")

        await self._record_event(
            ticket,
            requester_id,
            TicketEvent.CREATE,
            {"category_id": category.id, "ticket_number": ticket.ticket_number, "channel_id": channel_id},
        )
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} created: <#{channel_id}>", ticket, warnings)

    async def _reject_duplicate(self, guild_id: int, requester_id: int) -> None:
        """Fail if the requester has a live open ticket; close records whose channel vanished."""
        for existing in await self.deps.ticket_repo.list_open_by_creator(guild_id, requester_id):
            if await self.deps.channels.channel_exists(existing.channel_id):
                raise DuplicateOpenTicketError(
                    f"You already have an open ticket: <#{existing.channel_id}>",
                    channel_id=existing.channel_id,
                )
            healed = await self.deps.ticket_repo.update_status(
                existing.id,
                expected=(TicketStatus.OPEN,),
                status=TicketStatus.CLOSED,
                closed_by_id=None,
                closed_at=now_iso(),
                close_reason=STALE_CHANNEL_REASON,
            )
            if healed:
                LOGGER.info(
                    "Closed ticket %s whose channel no longer exists",
                    ticket_label(existing),
                    extra={"guild_id": guild_id, "ticket_id": existing.id},
                )
                await self._record_event(existing, None, TicketEvent.CLOSE, {"reason": STALE_CHANNEL_REASON})

    async def _usable_category(self, guild_id: int, category_id: str) -> TicketCategory:
        try:
            category = await self.deps.categories.get(category_id, guild_id)
        except CategoryNotFoundError:
            raise CategoryUnavailableError() from None
        if not category.is_enabled:
            raise CategoryUnavailableError()
        return category

    async def _close_ticket(self, ticket_id: str, closed_by: int, reason: str | None) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_live(ticket_id)
        if ticket.status is not TicketStatus.OPEN:
            raise AlreadyClosedError()
        reason = optional_text(reason, "reason", CLOSE_REASON_MAX_LENGTH) or DEFAULT_CLOSE_REASON

        closed_at = now_iso()
        if not await self.deps.ticket_repo.update_status(
            ticket.id,
            expected=(TicketStatus.OPEN,),
            status=TicketStatus.CLOSED,
            closed_by_id=closed_by,
            closed_at=closed_at,
            close_reason=reason,
        ):
            raise await self._transition_conflict(ticket.id, AlreadyClosedError())
        ticket.status = TicketStatus.CLOSED
        ticket.closed_by_id = closed_by
        ticket.closed_at = closed_at
        ticket.close_reason = reason
        LOGGER.info("Ticket %s closed by %s", ticket_label(ticket), closed_by, extra=self._context(ticket))
        await self._record_event(ticket, closed_by, TicketEvent.CLOSE, {"reason": reason})

        warnings: list[str] = []
        await self._apply_grants(
            ticket,
            [
                PermissionGrant(Principal.everyone(ticket.guild_id), view=DENY, send=DENY),
                PermissionGrant(Principal.member(ticket.creator_id), view=ALLOW, send=DENY),
            ],
            warnings,
            "Channel permissions could not be locked.",
        )

        category_name, template = await self._category_context(ticket, warnings)
        notice = MessageContent(
            title=f"Ticket {ticket_label(ticket)} closed",
            description=self.deps.templates.render_close(
                template, category_name, ticket.creator_id, ticket.ticket_number
            ),
            fields=[("Closed by", f"<@{closed_by}>"), ("Reason", reason)],
            controls=list(CLOSED_CONTROLS),
        )
        await self._post_notice(ticket, notice, warnings, "The close notice could not be posted.")
        await self._deliver_transcript(ticket, category_name, warnings)
        await self._rename(ticket, CLOSED_CHANNEL_NAME_TEMPLATE, warnings)
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} closed.", ticket, warnings)

    async def _reopen_ticket(self, ticket_id: str, reopened_by: int | None) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_live(ticket_id)
        if ticket.status is TicketStatus.OPEN:
            raise AlreadyOpenError()
        if not await self.deps.ticket_repo.update_status(
            ticket.id,
            expected=(TicketStatus.CLOSED, TicketStatus.ARCHIVED),
            status=TicketStatus.OPEN,
            closed_by_id=None,
            closed_at=None,
            close_reason=None,
        ):
            raise await self._transition_conflict(ticket.id, AlreadyOpenError())
        previous = ticket.status
        ticket.status = TicketStatus.OPEN
        ticket.closed_by_id = None
        ticket.closed_at = None
        ticket.close_reason = None
        LOGGER.info("Ticket %s reopened by %s", ticket_label(ticket), reopened_by, extra=self._context(ticket))
        await self._record_event(ticket, reopened_by, TicketEvent.REOPEN, {"from": previous.value})

        grants = [
            PermissionGrant(Principal.everyone(ticket.guild_id), view=DENY, send=INHERIT),
            PermissionGrant(Principal.member(ticket.creator_id), view=ALLOW, send=ALLOW),
        ]
        category = await self._category_or_none(ticket)
        if category is not None and category.support_role_id:
            grants.append(PermissionGrant(Principal.role(category.support_role_id), view=ALLOW, send=ALLOW))

        warnings: list[str] = []
        await self._apply_grants(ticket, grants, warnings, "Channel permissions could not be restored.")
        await self._rename(ticket, CHANNEL_NAME_TEMPLATE, warnings)
        by = f" by <@{reopened_by}>" if reopened_by else ""
        notice = MessageContent(
            title=f"Ticket {ticket_label(ticket)} reopened",
            description=f"This ticket was reopened{by}.",
            controls=list(WELCOME_CONTROLS),
        )
        await self._post_notice(ticket, notice, warnings, "The reopen notice could not be posted.")
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} reopened.", ticket, warnings)

    async def _archive_ticket(self, ticket_id: str, archived_by: int) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_live(ticket_id)
        if ticket.status is TicketStatus.ARCHIVED:
            raise AlreadyArchivedError()
        closed_at = ticket.closed_at or now_iso()
        reason = ticket.close_reason or ARCHIVED_REASON
        if not await self.deps.ticket_repo.update_status(
            ticket.id,
            expected=(TicketStatus.OPEN, TicketStatus.CLOSED),
            status=TicketStatus.ARCHIVED,
            closed_by_id=archived_by,
            closed_at=closed_at,
            close_reason=reason,
        ):
            raise await self._transition_conflict(ticket.id, AlreadyArchivedError())
        previous = ticket.status
        ticket.status = TicketStatus.ARCHIVED
        ticket.closed_by_id = archived_by
        ticket.closed_at = closed_at
        ticket.close_reason = reason
        LOGGER.info("Ticket %s archived by %s", ticket_label(ticket), archived_by, extra=self._context(ticket))
        await self._record_event(ticket, archived_by, TicketEvent.ARCHIVE, {"from": previous.value})
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} archived.", ticket)

    async def _delete_ticket(
        self, ticket_id: str, requested_by: int, privileged: bool
    ) -> OperationOutcome[TicketRecord]:
        if not privileged:
            raise PermissionDeniedError("Only staff with Manage Channels can delete tickets.")
        ticket = await self._require_live(ticket_id)
        deleted_at = now_iso()
        if not await self.deps.ticket_repo.mark_deleted(
            ticket.id, deleted_by_id=requested_by, deleted_at=deleted_at, reason=DELETED_BY_STAFF_REASON
        ):
            raise TicketDeletedError()
        previous = ticket.status
        ticket.status = TicketStatus.CLOSED
        ticket.closed_by_id = requested_by
        ticket.closed_at = deleted_at
        ticket.close_reason = DELETED_BY_STAFF_REASON
        ticket.deleted_at = deleted_at
        LOGGER.info("Ticket %s deleted by %s", ticket_label(ticket), requested_by, extra=self._context(ticket))
        await self._record_event(ticket, requested_by, TicketEvent.DELETE, {"from": previous.value})

        warnings: list[str] = []
        notice = MessageContent(
            title="Ticket deleted",
            description=f"Your ticket {ticket_label(ticket)} was deleted by <@{requested_by}>.",
        )
        try:
            delivered = await self.deps.notifier.notify_user(ticket.creator_id, notice)
        except ExternalResourceError as exc:
            LOGGER.warning("Delete notification failed: %s", exc, extra=self._context(ticket))
            delivered = False
        if not delivered:
            warnings.append("The ticket owner could not be notified by direct message.")

        self._spawn(self._delete_channel_later(ticket, requested_by))
        return OperationOutcome.done(
            f"Ticket {ticket_label(ticket)} deleted. The channel will be removed shortly.", ticket, warnings
        )

    async def _claim_ticket(self, ticket_id: str, staff_id: int) -> OperationOutcome[TicketRecord]:
        ticket = await self.get_ticket(ticket_id)
        if ticket.status is not TicketStatus.OPEN:
            raise TicketStateError("Only open tickets can be claimed.")
        if ticket.claimed_by_id is not None and ticket.claimed_by_id != staff_id:
            raise AlreadyClaimedError(
                f"This ticket is already claimed by <@{ticket.claimed_by_id}>.",
                claimed_by_id=ticket.claimed_by_id,
            )

        releasing = ticket.claimed_by_id == staff_id
        await self.deps.ticket_repo.set_claim(ticket.id, None if releasing else staff_id)
        ticket.claimed_by_id = None if releasing else staff_id
        event = TicketEvent.UNCLAIM if releasing else TicketEvent.CLAIM
        await self._record_event(ticket, staff_id, event)

        warnings: list[str] = []
        text = f"<@{staff_id}> released this ticket." if releasing else f"<@{staff_id}> claimed this ticket."
        await self._post_notice(ticket, MessageContent(description=text), warnings, "The claim notice could not be posted.")
        verb = "unclaimed" if releasing else "claimed"
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} {verb}.", ticket, warnings)

    async def _add_participant(self, ticket_id: str, user_id: int, actor_id: int) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_open(ticket_id, "Participants can only be changed on open tickets.")
        if user_id == ticket.creator_id:
            raise InvalidInputError("The ticket owner already has access.", field_name="user")
        await self.deps.channels.set_permission(
            ticket.channel_id, PermissionGrant(Principal.member(user_id), view=ALLOW, send=ALLOW)
        )
        await self._record_event(ticket, actor_id, TicketEvent.ADD_USER, {"user_id": user_id})
        return OperationOutcome.done(f"Added <@{user_id}> to ticket {ticket_label(ticket)}.", ticket)

    async def _remove_participant(
        self, ticket_id: str, user_id: int, actor_id: int
    ) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_open(ticket_id, "Participants can only be changed on open tickets.")
        if user_id == ticket.creator_id:
            raise InvalidInputError("The ticket owner cannot be removed. Transfer the ticket first.", field_name="user")
        if user_id == self.deps.channels.bot_user_id:
            raise InvalidInputError("The bot cannot be removed from a ticket.", field_name="user")
        await self.deps.channels.set_permission(
            ticket.channel_id, PermissionGrant(Principal.member(user_id), view=INHERIT, send=INHERIT, manage=INHERIT)
        )
        await self._record_event(ticket, actor_id, TicketEvent.REMOVE_USER, {"user_id": user_id})
        return OperationOutcome.done(f"Removed <@{user_id}> from ticket {ticket_label(ticket)}.", ticket)

    async def _transfer_ownership(
        self, ticket_id: str, new_owner_id: int, actor_id: int
    ) -> OperationOutcome[TicketRecord]:
        ticket = await self._require_open(ticket_id, "Only open tickets can be transferred.")
        if new_owner_id == ticket.creator_id:
            raise InvalidInputError("That member already owns this ticket.", field_name="user")
        await self.deps.channels.set_permission(
            ticket.channel_id, PermissionGrant(Principal.member(new_owner_id), view=ALLOW, send=ALLOW)
        )
        previous_owner = ticket.creator_id
        await self.deps.ticket_repo.set_creator(ticket.id, new_owner_id)
        ticket.creator_id = new_owner_id
        await self._record_event(
            ticket, actor_id, TicketEvent.TRANSFER, {"from": previous_owner, "to": new_owner_id}
        )
        LOGGER.info(
            "Ticket %s transferred from %s to %s",
            ticket_label(ticket),
            previous_owner,
            new_owner_id,
            extra=self._context(ticket),
        )
        return OperationOutcome.done(f"Ticket {ticket_label(ticket)} now belongs to <@{new_owner_id}>.", ticket)

    async def _generate_transcript(self, ticket_id: str) -> OperationOutcome[Transcript]:
        ticket = await self._require_live(ticket_id)
        try:
            transcript = await self.deps.transcripts.generate(ticket)
        except OSError as exc:
            LOGGER.exception("Could not store transcript", extra=self._context(ticket))
            raise ExternalResourceError("The transcript could not be saved.", operation="store_transcript") from exc
        return OperationOutcome.done(
            f"Transcript for ticket {ticket_label(ticket)} ({transcript.message_count} messages).", transcript
        )

    # Helpers

    @asynccontextmanager
    async def _create_lock(self, key: tuple[int, int]) -> AsyncIterator[None]:
        entry = self._create_locks.setdefault(key, _KeyedLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._create_locks[key]

    async def _require_live(self, ticket_id: str) -> TicketRecord:
        ticket = await self.get_ticket(ticket_id)
        if ticket.is_deleted:
            raise TicketDeletedError()
        return ticket

    async def _transition_conflict(self, ticket_id: str, error: TicketStateError) -> TicketStateError:
        """Explain a conditional status write that matched no row."""
        current = await self.deps.ticket_repo.get_by_id(ticket_id)
        if current is not None and current.is_deleted:
            return TicketDeletedError()
        return error

    async def _require_open(self, ticket_id: str, message: str) -> TicketRecord:
        ticket = await self.get_ticket(ticket_id)
        if ticket.status is not TicketStatus.OPEN:
            raise TicketStateError(message)
        return ticket

    async def _category_or_none(self, ticket: TicketRecord) -> TicketCategory | None:
        if ticket.category_id is None:
            return None
        try:
            return await self.deps.categories.get(ticket.category_id)
        except CategoryNotFoundError:
            return None

    async def _category_context(self, ticket: TicketRecord, warnings: list[str]) -> tuple[str, MessageTemplate]:
        category = await self._category_or_none(ticket)
        if category is None:
            return UNCATEGORIZED, MessageTemplate(category_id="")
        return category.name, await self._template_or_default(category.id, self._context(ticket), warnings)

    async def _template_or_default(
        self, category_id: str, context: dict[str, Any], warnings: list[str]
    ) -> MessageTemplate:
        try:
            return await self.deps.templates.get(category_id)
        except PersistenceError as exc:
            LOGGER.warning("Could not load message template: %s", exc, extra=context)
            warnings.append("The category's custom messages could not be loaded, defaults were used.")
            return MessageTemplate(category_id=category_id)

    async def _rename(self, ticket: TicketRecord, template: str, warnings: list[str]) -> None:
        try:
            await self.deps.channels.rename_channel(ticket.channel_id, template.format(number=ticket.ticket_number))
        except ExternalResourceError as exc:
            LOGGER.warning("Could not rename ticket channel: %s", exc, extra=self._context(ticket))
            warnings.append("The ticket channel could not be renamed.")

    async def _deliver_transcript(self, ticket: TicketRecord, category_name: str, warnings: list[str]) -> None:
        """Post the transcript to the log channel and DM it to the owner, when a log channel is set."""
        if not self.deps.transcripts.config.enabled:
            return
        context = self._context(ticket)
        try:
            button = await self.deps.config_store.get_button(ticket.guild_id)
            if button.log_channel_id is None:
                return
            transcript = await self.deps.transcripts.generate(ticket)
        except (ExternalResourceError, PersistenceError, OSError) as exc:
            LOGGER.warning("Could not build transcript: %s", exc, extra=context)
            warnings.append("The ticket transcript could not be generated.")
            return

        summary = MessageContent(
            title=f"Ticket {ticket_label(ticket)} | Transcript",
            fields=[
                ("User", f"<@{ticket.creator_id}>"),
                ("Ticket number", str(ticket.ticket_number)),
                ("Category", category_name),
                ("Handled by", f"<@{ticket.claimed_by_id}>" if ticket.claimed_by_id else "Unclaimed"),
                ("Closed by", f"<@{ticket.closed_by_id}>" if ticket.closed_by_id else "-"),
                ("Reason", ticket.close_reason or DEFAULT_CLOSE_REASON),
                ("Closed at", ticket.closed_at or "-"),
            ],
            files=transcript.files,
        )
        try:
            await self.deps.channels.post_message(button.log_channel_id, summary)
        except ExternalResourceError as exc:
            LOGGER.warning("Could not post transcript to log channel: %s", exc, extra=context)
            warnings.append("The transcript could not be posted to the log channel.")

        direct = MessageContent(
            title=f"Ticket {ticket_label(ticket)} closed",
            description=f"Your ticket in **{category_name}** was closed. The transcript is attached.",
            files=transcript.files,
        )
        try:
            delivered = await self.deps.notifier.notify_user(ticket.creator_id, direct)
        except ExternalResourceError as exc:
            LOGGER.info("Transcript DM failed: %s", exc, extra=context)
            return
        if not delivered:
            LOGGER.info("Transcript could not be sent to the ticket owner", extra=context)

    def _welcome_content(
        self, ticket: TicketRecord, category: TicketCategory, template: MessageTemplate
    ) -> MessageContent:
        mention_roles = (
            [category.support_role_id] if template.include_support_team and category.support_role_id else []
        )
        mentions = [f"<@{ticket.creator_id}>", *(f"<@&{role_id}>" for role_id in mention_roles)]
        return MessageContent(
            title=f"Ticket {ticket_label(ticket)}",
            description=self.deps.templates.render_welcome(
                template, category, ticket.creator_id, ticket.ticket_number
            ),
            content=" ".join(mentions),
            fields=[("Category", category.display_name), ("Opened by", f"<@{ticket.creator_id}>")],
            controls=list(WELCOME_CONTROLS),
            mention_user_ids=[ticket.creator_id],
            mention_role_ids=mention_roles,
        )

    async def _apply_grants(
        self, ticket: TicketRecord, grants: list[PermissionGrant], warnings: list[str], warning: str
    ) -> None:
        failed = False
        for grant in grants:
            try:
                await self.deps.channels.set_permission(ticket.channel_id, grant)
            except ExternalResourceError as exc:
                LOGGER.warning(
                    "Permission update for %s failed: %s", grant.principal.id, exc, extra=self._context(ticket)
                )
                failed = True
        if failed:
            warnings.append(warning)

    async def _post_notice(
        self, ticket: TicketRecord, content: MessageContent, warnings: list[str], warning: str
    ) -> None:
        try:
            await self.deps.channels.post_message(ticket.channel_id, content)
        except ExternalResourceError as exc:
            LOGGER.warning("Posting to ticket channel failed: %s", exc, extra=self._context(ticket))
            warnings.append(warning)

    async def _record_event(
        self,
        ticket: TicketRecord,
        actor_id: int | None,
        event: TicketEvent,
        payload: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self.deps.event_repo.log(ticket.id, ticket.guild_id, actor_id, event.value, payload)
        except PersistenceError:
            # The transition itself already committed; a missing audit row is not worth failing it.
            LOGGER.exception("Could not record %s event", event.value, extra=self._context(ticket))

    async def _discard_channel(self, channel_id: int) -> None:
        try:
            await self.deps.channels.delete_channel(channel_id, reason="Ticket could not be saved")
        except ExternalResourceError:
            LOGGER.exception("Could not remove orphaned ticket channel %s", channel_id)

    async def _delete_channel_later(self, ticket: TicketRecord, requested_by: int) -> None:
        await asyncio.sleep(self.config.delete_grace_seconds)
        try:
            await self.deps.channels.delete_channel(
                ticket.channel_id, reason=f"Ticket {ticket_label(ticket)} deleted by {requested_by}"
            )
        except ExternalResourceError:
            LOGGER.exception("Could not delete ticket channel", extra=self._context(ticket))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    def _context(ticket: TicketRecord) -> dict[str, Any]:
        return {"guild_id": ticket.guild_id, "ticket_id": ticket.id, "channel_id": ticket.channel_id}
