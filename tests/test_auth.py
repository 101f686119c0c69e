"""Tests for sessions and identity guards."""

import uuid
import pytest
from datetime import datetime, timedelta, timezone

from auth import AuthError, AuthManager, IdentityContext
from errors import NotFoundError, SessionExpiredError
from tests.conftest import ALICE_WALLET


@pytest.mark.asyncio
async def test_login_by_wallet(auth, alice):
    session = await auth.login(ALICE_WALLET)
    assert session['user_id'] == str(alice['id'])
    assert await auth.verify_session(session['token']) == alice['id']


@pytest.mark.asyncio
async def test_email_does_not_open_a_session(auth, alice):
    with pytest.raises(NotFoundError):
        await auth.login("alice@example.com")


@pytest.mark.asyncio
async def test_login_unknown_user(auth):
    with pytest.raises(NotFoundError):
        await auth.login("nobody@example.com")


@pytest.mark.asyncio
async def test_single_active_session(auth, alice):
    """Test a new login revokes the previous session."""
    first = await auth.create_session(alice['id'])
    second = await auth.create_session(alice['id'])

    assert first['token'] != second['token']
    with pytest.raises(AuthError):
        await auth.verify_session(first['token'])
    assert await auth.verify_session(second['token']) == alice['id']


@pytest.mark.asyncio
async def test_logout(auth, alice):
    session = await auth.create_session(alice['id'])
    assert await auth.logout(alice['id']) == 1
    with pytest.raises(AuthError):
        await auth.verify_session(session['token'])


@pytest.mark.asyncio
async def test_invalid_and_foreign_tokens(store, auth, alice):
    with pytest.raises(AuthError):
        await auth.verify_session("not-a-token")

    other = AuthManager(store, secret="other-secret")
    session = await other.create_session(alice['id'])
    with pytest.raises(AuthError):
        await auth.verify_session(session['token'])


@pytest.mark.asyncio
async def test_expired_session(store, auth, alice):
    session = await auth.create_session(alice['id'])
    await store.update(
        'auth_sessions',
        {'token': session['token']},
        {'expires_at': datetime.now(timezone.utc) - timedelta(minutes=1)}
    )
    with pytest.raises(SessionExpiredError):
        await auth.verify_session(session['token'])


@pytest.mark.asyncio
async def test_session_guard(auth, alice):
    session = await auth.create_session(alice['id'])
    guard = auth.guard(session['token'], alice['id'])
    await guard.check()

    await auth.logout(alice['id'])
    with pytest.raises(SessionExpiredError):
        await guard.check()


@pytest.mark.asyncio
async def test_identity_guard_fails_after_switch():
    """Test a guard taken for one identity fails once the context changes."""
    context = IdentityContext()
    alice, bob = uuid.uuid4(), uuid.uuid4()

    with pytest.raises(SessionExpiredError):
        context.guard()

    context.connect(alice)
    guard = context.guard()
    await guard.check()

    context.connect(bob)
    with pytest.raises(SessionExpiredError):
        await guard.check()

    # Reconnecting as the same user still invalidates older guards
    context.connect(alice)
    with pytest.raises(SessionExpiredError):
        await guard.check()


def test_identity_change_listeners():
    context = IdentityContext()
    seen = []
    dispose = context.on_identity_change(seen.append)
    user_id = uuid.uuid4()

    context.connect(user_id)
    context.disconnect()
    dispose()
    context.connect(user_id)

    assert seen == [user_id, None]
    assert context.get_current_user_id() == user_id
