"""Service container shared by the routers."""

from fastapi import Request

from auth import AuthManager
from database import Store
from friends import FriendManager
from notifications import NotificationManager
from payments import PaymentManager
from subscriptions import SubscriptionManager
from users import UserManager


class Services:
    """Managers wired to one store."""

    def __init__(self, store: Store):
        self.store = store
        self.notifications = NotificationManager(store)
        self.users = UserManager(store)
        self.friends = FriendManager(store, self.users, self.notifications)
        self.subscriptions = SubscriptionManager(store, self.notifications)
        self.payments = PaymentManager(store, self.notifications)
        self.auth = AuthManager(store)


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services


__all__ = ['Services', 'get_services']
