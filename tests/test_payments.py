"""Tests for payment bookkeeping."""

import pytest
import pytest_asyncio
from decimal import Decimal

from errors import ForbiddenError, NotFoundError, ValidationError
from models import NotificationType


@pytest_asyncio.fixture
async def shared(subscriptions, notifications, alice, bob):
    """Netflix owned by alice and shared with bob."""
    subscription = await subscriptions.create(alice['id'], "Netflix", "15.99")
    await subscriptions.invite(subscription['id'], bob['id'], alice['id'])
    invitation = (await subscriptions.list_invitations(bob['id']))[0]
    return await subscriptions.accept_invitation(invitation['id'], bob['id'])


async def _member(store, subscription, user):
    return await store.find_one('subscription_members', {
        'subscription_id': subscription['id'], 'user_id': user['id']
    })


@pytest.mark.asyncio
async def test_completed_payment_marks_member_paid(store, payments, notifications, shared, alice, bob):
    payment = await payments.record_payment(
        shared['id'], bob['id'], alice['id'], "7.995", transaction_hash="0xabc"
    )

    assert payment['status'] == "completed"
    assert payment['currency'] == "USD"
    assert (await _member(store, shared, bob))['paid'] is True

    received = await notifications.list(alice['id'])
    assert received[0]['type'] == NotificationType.PAYMENT_RECEIVED.value
    assert received[0]['content']['amount'] == 7.995
    assert received[0]['content']['transactionHash'] == "0xabc"


@pytest.mark.asyncio
async def test_pending_payment_then_completed(store, payments, shared, alice, bob):
    payment = await payments.record_payment(shared['id'], bob['id'], alice['id'], "7.995", currency="eur")
    assert payment['status'] == "pending"
    assert payment['currency'] == "EUR"
    assert (await _member(store, shared, bob))['paid'] is False

    settled = await payments.update_status(payment['id'], "completed", transaction_hash="0xdef", actor_id=bob['id'])

    assert settled['status'] == "completed"
    assert settled['transaction_hash'] == "0xdef"
    assert (await _member(store, shared, bob))['paid'] is True
    with pytest.raises(ValidationError):
        await payments.update_status(payment['id'], "failed")


@pytest.mark.asyncio
async def test_update_status_errors(payments, shared, alice, bob, carol):
    payment = await payments.record_payment(shared['id'], bob['id'], alice['id'], "1")

    with pytest.raises(ValidationError):
        await payments.update_status(payment['id'], "refunded")
    with pytest.raises(ValidationError):
        await payments.update_status(payment['id'], "pending")
    with pytest.raises(ForbiddenError):
        await payments.update_status(payment['id'], "failed", actor_id=carol['id'])
    with pytest.raises(NotFoundError):
        await payments.update_status(shared['id'], "failed")

    failed = await payments.update_status(payment['id'], "failed")
    assert failed['status'] == "failed"


@pytest.mark.asyncio
async def test_record_payment_errors(payments, shared, alice, bob, carol):
    with pytest.raises(ValidationError):
        await payments.record_payment(shared['id'], bob['id'], alice['id'], "0")
    with pytest.raises(ValidationError):
        await payments.record_payment(shared['id'], bob['id'], bob['id'], "1")
    with pytest.raises(ForbiddenError):
        await payments.record_payment(shared['id'], carol['id'], alice['id'], "1")
    with pytest.raises(NotFoundError):
        await payments.record_payment(alice['id'], bob['id'], alice['id'], "1")


@pytest.mark.asyncio
async def test_send_reminder(payments, shared, alice, bob):
    reminder = await payments.send_reminder(shared['id'], alice['id'], bob['id'], Decimal("7.995"))

    assert reminder['user_id'] == bob['id']
    assert reminder['type'] == NotificationType.PAYMENT_REMINDER.value
    assert reminder['content']['subscriptionName'] == "Netflix"
    assert reminder['content']['senderUsername'] == "alice"


@pytest.mark.asyncio
async def test_history(payments, shared, alice, bob):
    first = await payments.record_payment(shared['id'], bob['id'], alice['id'], "1")
    second = await payments.record_payment(shared['id'], alice['id'], bob['id'], "2")

    assert {p['id'] for p in await payments.history(bob['id'])} == {first['id'], second['id']}
    assert {p['id'] for p in await payments.history(alice['id'])} == {first['id'], second['id']}
