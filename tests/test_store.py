"""Tests for the in-memory store and its transactions."""

import uuid
import pytest
from decimal import Decimal

from database import MemoryStore
from database.store import normalize_order
from database.store.memory import parse_literal
from errors import ConstraintViolationError, StoreError


@pytest.mark.asyncio
async def test_insert_applies_schema_defaults(store):
    """Test inserting a row fills ids, timestamps and defaults."""
    user = await store.insert('users', {'username': 'alice', 'wallet_address': 'W1'})

    assert isinstance(user['id'], uuid.UUID)
    assert user['email'] is None
    assert user['created_at'] is not None

    subscription = await store.insert('subscriptions', {
        'name': 'Netflix', 'cost': Decimal('15.99'), 'owner_id': user['id']
    })
    assert subscription['billing_cycle'] == 'monthly'


@pytest.mark.asyncio
async def test_insert_rejects_unknown_column(store):
    with pytest.raises(StoreError):
        await store.insert('users', {'username': 'alice', 'nickname': 'al'})


@pytest.mark.asyncio
async def test_insert_rejects_missing_required_column(store):
    with pytest.raises(StoreError):
        await store.insert('users', {'wallet_address': 'W1'})


@pytest.mark.asyncio
async def test_unique_index(store):
    """Test unique indexes reject duplicates but ignore NULLs."""
    await store.insert('users', {'username': 'alice', 'wallet_address': 'W1'})
    await store.insert('users', {'username': 'bob', 'wallet_address': 'W2'})

    with pytest.raises(ConstraintViolationError):
        await store.insert('users', {'username': 'eve', 'wallet_address': 'W1'})

    assert await store.count('users') == 2


@pytest.mark.asyncio
async def test_partial_unique_index(store):
    """Test only pending invitations are unique per subscription and invitee."""
    values = {
        'subscription_id': uuid.uuid4(),
        'inviter_id': uuid.uuid4(),
        'invitee_id': uuid.uuid4()
    }
    first = await store.insert('invitations', values)
    with pytest.raises(ConstraintViolationError):
        await store.insert('invitations', values)

    await store.update('invitations', {'id': first['id']}, {'status': 'declined'})
    second = await store.insert('invitations', values)
    assert second['status'] == 'pending'


@pytest.mark.asyncio
async def test_filters_and_ordering(store):
    """Test list filters, NULL filters, JSON paths and ordering."""
    owner = uuid.uuid4()
    for name, cost in (('b', '2'), ('a', '3'), ('c', '1')):
        await store.insert('subscriptions', {'name': name, 'cost': Decimal(cost), 'owner_id': owner})

    rows = await store.find_many('subscriptions', {'name': ['a', 'c']}, order_by='name')
    assert [r['name'] for r in rows] == ['a', 'c']

    rows = await store.find_many('subscriptions', order_by='-cost', limit=2)
    assert [r['name'] for r in rows] == ['a', 'b']

    rows = await store.find_many('subscriptions', {'due_date': None})
    assert len(rows) == 3

    user_id = uuid.uuid4()
    await store.insert('notifications', {
        'user_id': user_id,
        'type': 'friend_request',
        'content': {'senderId': 'abc', 'senderUsername': 'bob'}
    })
    assert await store.count('notifications', {'content.senderId': 'abc'}) == 1
    assert await store.count('notifications', {'content.senderId': 'xyz'}) == 0


@pytest.mark.asyncio
async def test_returned_rows_are_copies(store):
    user = await store.insert('users', {'username': 'alice'})
    user['username'] = 'mallory'

    stored = await store.find_one('users', {'id': user['id']})
    assert stored['username'] == 'alice'


@pytest.mark.asyncio
async def test_update_and_delete_return_rows(store):
    user = await store.insert('users', {'username': 'alice'})

    updated = await store.update('users', {'id': user['id']}, {'username': 'alicia'})
    assert updated[0]['username'] == 'alicia'
    assert updated[0]['updated_at'] >= user['updated_at']

    deleted = await store.delete('users', {'id': user['id']})
    assert [row['id'] for row in deleted] == [user['id']]
    assert await store.find_one('users', {'id': user['id']}) is None


@pytest.mark.asyncio
async def test_transaction_rolls_back(store):
    """Test a failing transaction leaves no trace and publishes nothing."""
    events = []
    store.subscribe_to_changes('users', events.append)

    with pytest.raises(RuntimeError):
        async with store.transaction() as tx:
            await tx.insert('users', {'username': 'alice'})
            raise RuntimeError("boom")

    await store.bus.drain()
    assert await store.count('users') == 0
    assert events == []


@pytest.mark.asyncio
async def test_nested_transactions_join(store):
    """Test nested transactions share one session and publish after commit."""
    events = []
    store.subscribe_to_changes('users', events.append)

    async with store.transaction() as outer:
        await outer.insert('users', {'username': 'alice'})
        async with store.transaction() as inner:
            assert inner is outer
            await inner.insert('users', {'username': 'bob'})
        # Convenience methods join the open transaction too
        assert await store.count('users') == 2
        await store.bus.drain()
        assert events == []

    await store.bus.drain()
    assert [e.new['username'] for e in events] == ['alice', 'bob']


@pytest.mark.asyncio
async def test_reset(store):
    await store.insert('users', {'username': 'alice'})
    store.reset()
    assert await store.count('users') == 0


@pytest.mark.asyncio
async def test_unknown_table():
    store = MemoryStore()
    with pytest.raises(StoreError):
        await store.find_many('nope')


def test_parse_literal():
    assert parse_literal("'pending'") == 'pending'
    assert parse_literal('false') is False
    assert parse_literal('0') == Decimal(0)
    assert isinstance(parse_literal('gen_random_uuid()'), uuid.UUID)


def test_normalize_order():
    assert normalize_order(None) == []
    assert normalize_order('-created_at') == [('created_at', True)]
    assert normalize_order(['name', '-cost']) == [('name', False), ('cost', True)]
