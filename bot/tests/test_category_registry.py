from __future__ import annotations

import pytest
from conftest import GUILD_ID, REQUESTER_ID, Engine

from core.errors import (
    CategoryNotFoundError,
    ConfirmationRequiredError,
    InvalidInputError,
    LastCategoryError,
)
from utils.constants import TicketStatus


@pytest.mark.asyncio
async def test_ensure_default_is_idempotent(tenant: Engine) -> None:
    first = (await tenant.categories.list(GUILD_ID))[0]
    again = await tenant.categories.ensure_default(GUILD_ID)
    assert again.id == first.id
    assert len(await tenant.categories.list(GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_create_validates_and_orders_categories(tenant: Engine) -> None:
    billing = await tenant.categories.create(GUILD_ID, "  Billing  ", support_role_id="<@&123456789012345678>")
    assert billing.name == "Billing"
    assert billing.support_role_id == 123456789012345678
    assert billing.position == 1

    with pytest.raises(InvalidInputError):
        await tenant.categories.create(GUILD_ID, "   ")
    with pytest.raises(InvalidInputError):
        await tenant.categories.create(GUILD_ID, "Bad", parent_channel_id="not-an-id")

    names = [category.name for category in await tenant.categories.list(GUILD_ID)]
    assert names == ["General Support", "Billing"]
    template = await tenant.templates.get(billing.id)
    assert template.welcome_message is None


@pytest.mark.asyncio
async def test_category_limit(tenant: Engine) -> None:
    for index in range(24):
        await tenant.categories.create(GUILD_ID, f"Category {index}")
    with pytest.raises(InvalidInputError):
        await tenant.categories.create(GUILD_ID, "One too many")


@pytest.mark.asyncio
async def test_update_is_a_partial_merge(tenant: Engine) -> None:
    category = (await tenant.categories.list(GUILD_ID))[0]
    updated = await tenant.categories.update(category.id, {"emoji": "🛠️", "is_enabled": False})

    assert updated.emoji == "🛠️"
    assert updated.is_enabled is False
    assert updated.name == category.name
    assert await tenant.categories.list(GUILD_ID, enabled_only=True) == []

    with pytest.raises(InvalidInputError):
        await tenant.categories.update(category.id, {"ticket_count": 0})
    with pytest.raises(CategoryNotFoundError):
        await tenant.categories.update(category.id, {"name": "x"}, guild_id=GUILD_ID + 1)


@pytest.mark.asyncio
async def test_last_category_cannot_be_deleted(tenant: Engine) -> None:
    category = (await tenant.categories.list(GUILD_ID))[0]
    with pytest.raises(LastCategoryError):
        await tenant.categories.delete(category.id, GUILD_ID)
    assert len(await tenant.categories.list(GUILD_ID)) == 1


@pytest.mark.asyncio
async def test_unused_category_deletes_without_confirmation(tenant: Engine) -> None:
    spare = await tenant.categories.create(GUILD_ID, "Spare")
    deleted = await tenant.categories.delete(spare.id, GUILD_ID)
    assert deleted.id == spare.id
    with pytest.raises(CategoryNotFoundError):
        await tenant.categories.get(spare.id)


@pytest.mark.asyncio
async def test_category_with_tickets_needs_a_confirmation_token(tenant: Engine) -> None:
    billing = await tenant.categories.create(GUILD_ID, "Billing")
    outcome = await tenant.tickets.create_ticket(GUILD_ID, REQUESTER_ID, billing.id)
    assert outcome.value is not None

    with pytest.raises(ConfirmationRequiredError):
        await tenant.categories.delete(billing.id, GUILD_ID)
    with pytest.raises(ConfirmationRequiredError):
        await tenant.categories.delete(billing.id, GUILD_ID, confirmation="forged")

    token = await tenant.categories.request_delete_confirmation(billing.id)
    await tenant.categories.delete(billing.id, GUILD_ID, confirmation=token)

    orphan = await tenant.tickets.get_ticket(outcome.value.id)
    assert orphan.category_id is None
    assert orphan.status is TicketStatus.OPEN
    # Tokens are single use.
    assert await tenant.cache.get(f"category:delete:{token}") is None


@pytest.mark.asyncio
async def test_token_for_another_category_is_rejected(tenant: Engine) -> None:
    billing = await tenant.categories.create(GUILD_ID, "Billing")
    other = await tenant.categories.create(GUILD_ID, "Other")
    await tenant.tickets.create_ticket(GUILD_ID, REQUESTER_ID, billing.id)

    token = await tenant.categories.request_delete_confirmation(other.id)
    with pytest.raises(ConfirmationRequiredError):
        await tenant.categories.delete(billing.id, GUILD_ID, confirmation=token)
    assert (await tenant.categories.get(billing.id)).name == "Billing"
