"""Tests for the identity store."""

import pytest

from errors import AlreadyExistsError, NotFoundError, ValidationError
from tests.conftest import ALICE_WALLET, BOB_WALLET


@pytest.mark.asyncio
async def test_register_new_user(users):
    user = await users.register_or_update(ALICE_WALLET, " alice ", "Alice@Example.com")

    assert user['wallet_address'] == ALICE_WALLET
    assert user['username'] == "alice"
    assert user['email'] == "alice@example.com"


@pytest.mark.asyncio
async def test_register_requires_profile_for_new_wallet(users):
    with pytest.raises(ValidationError):
        await users.register_or_update(ALICE_WALLET, "alice")
    with pytest.raises(ValidationError):
        await users.register_or_update("", "alice", "alice@example.com")
    with pytest.raises(ValidationError):
        await users.register_or_update(ALICE_WALLET, "alice", "not-an-email")


@pytest.mark.asyncio
async def test_register_existing_wallet_updates(users, alice):
    """Test registering a known wallet updates instead of duplicating."""
    same = await users.register_or_update(ALICE_WALLET)
    assert same['id'] == alice['id']

    updated = await users.register_or_update(ALICE_WALLET, "alicia")
    assert updated['id'] == alice['id']
    assert updated['username'] == "alicia"
    assert updated['email'] == "alice@example.com"
    assert await users.store.count('users') == 1


@pytest.mark.asyncio
async def test_email_is_unique(users, alice):
    with pytest.raises(AlreadyExistsError):
        await users.register_or_update(BOB_WALLET, "bob", "ALICE@example.com")


@pytest.mark.asyncio
async def test_resolve(users, alice):
    assert (await users.resolve(ALICE_WALLET))['id'] == alice['id']
    assert (await users.resolve(" Alice@Example.com "))['id'] == alice['id']
    assert await users.resolve("nobody@example.com") is None
    # Wallet addresses are case sensitive
    assert await users.resolve(ALICE_WALLET.lower()) is None


@pytest.mark.asyncio
async def test_update_profile(users, alice, bob):
    user = await users.update_profile(alice['id'], username="Alice", avatar_url="https://a/b.png")
    assert user['username'] == "Alice"
    assert user['avatar_url'] == "https://a/b.png"

    with pytest.raises(ValidationError):
        await users.update_profile(alice['id'], wallet_address="EVIL")
    with pytest.raises(AlreadyExistsError):
        await users.update_profile(alice['id'], email="bob@example.com")


@pytest.mark.asyncio
async def test_get_missing_user(users, alice):
    assert (await users.get(alice['id']))['username'] == "alice"
    assert (await users.get_by_wallet(ALICE_WALLET))['id'] == alice['id']

    await users.store.delete('users', {'id': alice['id']})
    with pytest.raises(NotFoundError):
        await users.get(alice['id'])
    with pytest.raises(NotFoundError):
        await users.update_profile(alice['id'], username="ghost")
