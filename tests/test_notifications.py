"""Tests for the notification outbox and content models."""

import uuid
import pytest
from decimal import Decimal

from errors import NotFoundError, SessionExpiredError
from models import (
    FriendRemovedContent, NotificationType, PaymentReminderContent,
    SubscriptionInvitationContent, parse_content
)
from tests.conftest import BOB_WALLET


async def _append(store, notifications, recipient_id, message="bye"):
    async with store.transaction() as tx:
        return await notifications.append(tx, recipient_id, FriendRemovedContent(
            sender_id=uuid.uuid4(), sender_username="eve", message=message
        ))


def test_content_uses_camel_case_keys():
    subscription_id, sender_id = uuid.uuid4(), uuid.uuid4()
    content = PaymentReminderContent(
        sender_id=sender_id,
        sender_username="alice",
        subscription_id=subscription_id,
        subscription_name="Netflix",
        amount=Decimal("7.995")
    )

    assert content.to_row() == {
        'senderId': str(sender_id),
        'senderUsername': "alice",
        'senderWalletAddress': None,
        'subscriptionId': str(subscription_id),
        'subscriptionName': "Netflix",
        'amount': 7.995
    }


def test_parse_content_picks_the_variant():
    invitation_id = uuid.uuid4()
    content = parse_content("subscription_invitation", {
        'subscriptionId': str(uuid.uuid4()),
        'subscriptionName': "Netflix",
        'fromUserId': str(uuid.uuid4()),
        'fromUsername': "alice",
        'cost': "15.99",
        'invitationId': str(invitation_id)
    })

    assert isinstance(content, SubscriptionInvitationContent)
    assert content.invitation_id == invitation_id
    assert content.cost == Decimal("15.99")


@pytest.mark.asyncio
async def test_invitation_cost_is_stored_as_a_number(notifications, subscriptions, alice, bob):
    subscription = await subscriptions.create(alice['id'], "Netflix", "15.99")
    await subscriptions.invite(subscription['id'], bob['id'], alice['id'])

    content = (await notifications.list(bob['id']))[0]['content']
    assert isinstance(content['cost'], float)
    assert content['cost'] == 15.99
    assert parse_content("subscription_invitation", content).cost == Decimal("15.99")


@pytest.mark.asyncio
async def test_list_and_unread(store, notifications, alice):
    await _append(store, notifications, alice['id'], "one")
    await _append(store, notifications, alice['id'], "two")

    rows = await notifications.list(alice['id'])
    assert [r['content']['message'] for r in rows] == ["two", "one"]
    assert rows[0]['type'] == NotificationType.FRIEND_REMOVED.value
    assert await notifications.unread_count(alice['id']) == 2

    read = await notifications.mark_read(rows[0]['id'], alice['id'])
    assert read['read'] is True
    unread = await notifications.list(alice['id'], unread_only=True)
    assert [r['content']['message'] for r in unread] == ["one"]

    assert await notifications.mark_all_read(alice['id']) == 1
    assert await notifications.unread_count(alice['id']) == 0


@pytest.mark.asyncio
async def test_only_owner_consumes(store, notifications, alice, bob):
    row = await _append(store, notifications, alice['id'])

    with pytest.raises(NotFoundError):
        await notifications.get(row['id'], bob['id'])
    with pytest.raises(NotFoundError):
        await notifications.mark_read(row['id'], bob['id'])
    with pytest.raises(NotFoundError):
        await notifications.delete(row['id'], bob['id'])

    assert (await notifications.get(row['id'], alice['id']))['read'] is False


@pytest.mark.asyncio
async def test_delete_and_clear(store, notifications, alice, bob):
    first = await _append(store, notifications, alice['id'])
    await _append(store, notifications, alice['id'])
    await _append(store, notifications, bob['id'])

    await notifications.delete(first['id'], alice['id'])
    assert await notifications.unread_count(alice['id']) == 1

    assert await notifications.clear_all(alice['id']) == 1
    assert await notifications.list(alice['id']) == []
    assert await notifications.unread_count(bob['id']) == 1


@pytest.mark.asyncio
async def test_guarded_clear_rolls_back(store, notifications, identity, alice):
    await _append(store, notifications, alice['id'])
    identity.connect(alice['id'])
    guard = identity.guard()
    identity.disconnect()

    with pytest.raises(SessionExpiredError):
        await notifications.clear_all(alice['id'], guard=guard)
    assert await notifications.unread_count(alice['id']) == 1


@pytest.mark.asyncio
async def test_notification_commits_with_its_change(store, friends, notifications, alice, bob):
    """Test a failed operation leaves no notification behind."""
    with pytest.raises(RuntimeError):
        async with store.transaction():
            await friends.send_request(alice['id'], BOB_WALLET)
            raise RuntimeError("abort")

    assert await notifications.list(bob['id']) == []
    assert await store.count('friendships') == 0


@pytest.mark.asyncio
async def test_watch_receives_inserts_only(store, notifications, alice, bob):
    seen = []
    handle = await notifications.watch(alice['id'], seen.append)

    row = await _append(store, notifications, alice['id'])
    await _append(store, notifications, bob['id'])
    await notifications.mark_read(row['id'], alice['id'])
    await store.bus.drain()

    assert len(seen) == 1
    assert seen[0].new['id'] == row['id']
    handle.unsubscribe()
