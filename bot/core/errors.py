from __future__ import annotations

import logging
from dataclasses import dataclass

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."

    def __init__(self, user_message: str | None = None) -> None:
        super().__init__(user_message or self.user_message)
        if user_message:
            self.user_message = user_message

    def __str__(self) -> str:
        return self.user_message


# Error families. Leaves below carry their default message and any extra context.


class ValidationError(BotError):
    user_message = "The provided input is not valid."


class ConflictError(BotError):
    user_message = "That action conflicts with the current state."


class TicketStateError(ConflictError):
    user_message = "The ticket is not in a valid state for this action."


@dataclass(slots=True)
class InvalidInputError(ValidationError):
    user_message: str = "The provided input is not valid."
    field_name: str | None = None


@dataclass(slots=True)
class TicketNotFoundError(ValidationError):
    user_message: str = "The requested ticket could not be found."


@dataclass(slots=True)
class CategoryNotFoundError(ValidationError):
    user_message: str = "That ticket category does not exist."


@dataclass(slots=True)
class CategoryUnavailableError(ValidationError):
    user_message: str = "That ticket category is disabled or no longer exists."


@dataclass(slots=True)
class DuplicateOpenTicketError(ConflictError):
    user_message: str = "You already have an open ticket."
    channel_id: int | None = None


@dataclass(slots=True)
class AlreadyClosedError(TicketStateError):
    user_message: str = "This ticket is already closed."


@dataclass(slots=True)
class AlreadyOpenError(TicketStateError):
    user_message: str = "This ticket is already open."


@dataclass(slots=True)
class AlreadyArchivedError(TicketStateError):
    user_message: str = "This ticket is already archived."


@dataclass(slots=True)
class TicketDeletedError(TicketStateError):
    user_message: str = "This ticket was deleted and can no longer change state."


@dataclass(slots=True)
class AlreadyClaimedError(TicketStateError):
    user_message: str = "This ticket is already claimed by another staff member."
    claimed_by_id: int | None = None


@dataclass(slots=True)
class LastCategoryError(ConflictError):
    user_message: str = "You cannot delete the only remaining ticket category."


@dataclass(slots=True)
class ConfirmationRequiredError(ConflictError):
    user_message: str = "This category still has tickets. Confirm the deletion to continue."


@dataclass(slots=True)
class TenantDisabledError(ConflictError):
    user_message: str = "The ticket system is currently disabled on this server."


@dataclass(slots=True)
class CollectorBusyError(ConflictError):
    user_message: str = "Another prompt is already waiting for a response here."


@dataclass(slots=True)
class CooldownActiveError(ConflictError):
    user_message: str = "Please wait before creating another ticket."
    retry_after: int | None = None


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class ExternalResourceError(BotError):
    user_message: str = "Discord rejected the request."
    operation: str = ""
    not_found: bool = False


@dataclass(slots=True)
class PersistenceError(BotError):
    user_message: str = "The ticket database is unavailable. Please try again later."


@dataclass(slots=True)
class CacheError(BotError):
    user_message: str = "The cache is unavailable. Please try again later."


@dataclass(slots=True)
class TimedOutError(BotError):
    user_message: str = "No response was received in time."


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False, ephemeral=True)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _unwrap(error: Exception) -> Exception:
    while isinstance(error, (commands.HybridCommandError, commands.CommandInvokeError, app_commands.CommandInvokeError)):
        error = error.original
    return error


def _humanize_command_error(error: Exception) -> str:
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    if isinstance(error, commands.CommandNotFound):
        return
    cause = _unwrap(error)
    message = _humanize_command_error(cause)
    if isinstance(cause, BotError) or isinstance(cause, commands.UserInputError | commands.CheckFailure):
        LOGGER.info(
            "Prefix command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            message,
        )
    else:
        LOGGER.exception(
            "Prefix command failed. command=%s guild=%s user=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            exc_info=cause,
        )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    cause = _unwrap(error)
    message = _humanize_command_error(cause)
    if isinstance(cause, BotError | app_commands.CheckFailure):
        LOGGER.info(
            "Slash command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            interaction.user.id if interaction.user else None,
            message,
        )
    else:
        LOGGER.exception(
            "Slash command failed. command=%s guild=%s user=%s",
            getattr(interaction.command, "qualified_name", None),
            getattr(interaction.guild, "id", None),
            interaction.user.id if interaction.user else None,
            exc_info=cause,
        )
    await send_error_response(interaction, message)
