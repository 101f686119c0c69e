"""Shared fixtures: every test runs against a fresh in-memory store."""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from auth import AuthManager, IdentityContext
from database import MemoryStore, set_store
from friends import FriendManager
from notifications import NotificationManager
from payments import PaymentManager
from subscriptions import SubscriptionManager
from users import UserManager

ALICE_WALLET = "EfwuhAAAWyXWYHZZ3rYm4rUuQCy3qVFiEU"
BOB_WALLET = "EQ6LvM2Abj2hE6ExWAt6Cd2jF3Xq1TgrtB"
CAROL_WALLET = "EbWrPEUfLSjz4ZYmfGwNR4KSZEHm5QhcTA"
DAVE_WALLET = "EXsm5Az2PKLbfJA4P5pSAHZC3nDnKeDh6T"


@pytest.fixture
def store():
    """Create an empty in-memory store."""
    return MemoryStore()


@pytest.fixture
def notifications(store):
    return NotificationManager(store)


@pytest.fixture
def users(store):
    return UserManager(store)


@pytest.fixture
def friends(store, users, notifications):
    return FriendManager(store, users, notifications)


@pytest.fixture
def subscriptions(store, notifications):
    return SubscriptionManager(store, notifications, precision=4)


@pytest.fixture
def payments(store, notifications):
    return PaymentManager(store, notifications)


@pytest.fixture
def auth(store):
    return AuthManager(store, secret="test-secret", expiry_days=30)


@pytest.fixture
def identity():
    return IdentityContext()


@pytest_asyncio.fixture
async def alice(users):
    return await users.register_or_update(ALICE_WALLET, "alice", "alice@example.com")


@pytest_asyncio.fixture
async def bob(users):
    return await users.register_or_update(BOB_WALLET, "bob", "bob@example.com")


@pytest_asyncio.fixture
async def carol(users):
    return await users.register_or_update(CAROL_WALLET, "carol", "carol@example.com")


@pytest_asyncio.fixture
async def dave(users):
    return await users.register_or_update(DAVE_WALLET, "dave", "dave@example.com")


@pytest.fixture
def client():
    """API client backed by its own in-memory store."""
    set_store(MemoryStore())
    from api import app
    with TestClient(app) as test_client:
        yield test_client
    set_store(None)
