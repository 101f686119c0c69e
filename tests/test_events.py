"""Tests for the change propagation bus."""

import asyncio
import uuid
import pytest

from events import ChangeBus, ChangeEvent, HandleGroup, matches, lookup


def _event(table='users', event='INSERT', **row):
    return ChangeEvent(table=table, event=event, new=row)


def test_matches():
    user_id = uuid.uuid4()
    row = {'user_id': user_id, 'status': 'pending', 'content': {'senderId': str(user_id)}}

    assert matches(row, None)
    assert matches(row, {'user_id': str(user_id)})
    assert matches(row, {'status': ['pending', 'accepted']})
    assert matches(row, {'content.senderId': user_id})
    assert not matches(row, {'status': 'accepted'})
    assert lookup(row, 'content.missing') is None


@pytest.mark.asyncio
async def test_publish_filters_by_table_event_and_columns():
    bus = ChangeBus()
    alice, bob = uuid.uuid4(), uuid.uuid4()
    received = []

    bus.subscribe('notifications', received.append, filters={'user_id': alice}, event='INSERT')

    assert bus.publish(_event('notifications', user_id=alice)) == 1
    assert bus.publish(_event('notifications', user_id=bob)) == 0
    assert bus.publish(_event('notifications', 'UPDATE', user_id=alice)) == 0
    assert bus.publish(_event('friendships', user_id=alice)) == 0

    await bus.drain()
    assert len(received) == 1


@pytest.mark.asyncio
async def test_any_of_filters_and_deletes():
    """Test a list of filters matches either side, deletes match the old row."""
    bus = ChangeBus()
    alice = uuid.uuid4()
    received = []
    bus.subscribe('friendships', received.append, filters=[{'user_id': alice}, {'friend_id': alice}])

    bus.publish(_event('friendships', user_id=uuid.uuid4(), friend_id=alice))
    bus.publish(ChangeEvent(table='friendships', event='DELETE', old={'user_id': alice}))
    await bus.drain()

    assert [e.event for e in received] == ['INSERT', 'DELETE']
    assert received[1].row == {'user_id': alice}


@pytest.mark.asyncio
async def test_async_callbacks_and_failing_listener():
    """Test a failing listener does not stop the others."""
    bus = ChangeBus()
    received = []

    def broken(change):
        raise ValueError("listener bug")

    async def slow(change):
        await asyncio.sleep(0)
        received.append(change)

    bus.subscribe('users', broken)
    bus.subscribe('users', slow)

    assert bus.publish(_event(username='alice')) == 2
    await bus.drain()
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = ChangeBus()
    received = []

    handle = bus.subscribe('users', received.append)
    with bus.subscribe('users', received.append) as scoped:
        assert bus.listener_count == 2
        assert scoped.active
    assert bus.listener_count == 1

    group = HandleGroup([handle, bus.subscribe('friendships', received.append)])
    assert group.active
    group.unsubscribe()
    # Unsubscribing twice is harmless
    handle.unsubscribe()

    assert not group.active
    assert bus.listener_count == 0
    assert bus.publish(_event(username='alice')) == 0


def test_invalid_event_type():
    with pytest.raises(ValueError):
        ChangeBus().subscribe('users', print, event='TRUNCATE')
