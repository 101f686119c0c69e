"""Identity store: one user per wallet address or email."""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from database import get_store
from errors import (
    ValidationError, NotFoundError, AlreadyExistsError, ConstraintViolationError
)

logger = logging.getLogger(__name__)

# User-mutable profile fields
PROFILE_FIELDS = {'username', 'email', 'avatar_url'}


def _clean_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    if '@' not in email or email.startswith('@') or email.endswith('@'):
        raise ValidationError("Invalid email address")
    return email


def _clean_username(username: Optional[str]) -> Optional[str]:
    if username is None:
        return None
    username = username.strip()
    if not username:
        raise ValidationError("Username may not be empty")
    return username


class UserManager:
    """Manager class for user identities and profiles."""

    def __init__(self, store=None):
        self.store = store

    async def ensure_store(self):
        """Ensure we have a row store."""
        if not self.store:
            self.store = await get_store()

    async def register_or_update(
        self,
        wallet_address: str,
        username: Optional[str] = None,
        email: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create the user for a wallet, or update the supplied profile fields.

        New accounts need both a username and an email.

        Raises:
            ValidationError: If a new account lacks username or email
            AlreadyExistsError: If the email belongs to another user
        """
        await self.ensure_store()
        if not wallet_address or not wallet_address.strip():
            raise ValidationError("Wallet address is required")
        wallet_address = wallet_address.strip()
        username = _clean_username(username)
        email = _clean_email(email)

        try:
            async with self.store.transaction() as tx:
                existing = await tx.find_one('users', {'wallet_address': wallet_address})
                if existing:
                    patch = {}
                    if username:
                        patch['username'] = username
                    if email:
                        patch['email'] = email
                    if not patch:
                        return existing
                    await self._check_email_free(tx, email, existing['id'])
                    rows = await tx.update('users', {'id': existing['id']}, patch)
                    logger.info(f"Updated user {existing['id']}")
                    return rows[0]

                if not username or not email:
                    raise ValidationError("Username and email are required for new accounts")
                await self._check_email_free(tx, email, None)
                user = await tx.insert('users', {
                    'wallet_address': wallet_address,
                    'username': username,
                    'email': email
                })
                logger.info(f"Registered user {user['id']}")
                return user
        except ConstraintViolationError:
            raise AlreadyExistsError("Wallet address or email already registered")

    async def _check_email_free(self, tx, email: Optional[str], user_id: Optional[UUID]) -> None:
        if not email:
            return
        owner = await tx.find_one('users', {'email': email})
        if owner and owner['id'] != user_id:
            raise AlreadyExistsError("Email already registered")

    async def get(self, user_id: UUID) -> Dict[str, Any]:
        """Get a user by id.

        Raises:
            NotFoundError: If no such user exists
        """
        await self.ensure_store()
        user = await self.store.find_one('users', {'id': user_id})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def get_by_wallet(self, wallet_address: str) -> Optional[Dict[str, Any]]:
        await self.ensure_store()
        return await self.store.find_one('users', {'wallet_address': wallet_address.strip()})

    async def resolve(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Find a user by wallet address or email."""
        await self.ensure_store()
        identifier = identifier.strip()
        user = await self.store.find_one('users', {'wallet_address': identifier})
        if not user and '@' in identifier:
            user = await self.store.find_one('users', {'email': identifier.lower()})
        return user

    async def update_profile(self, user_id: UUID, **changes) -> Dict[str, Any]:
        """Update profile fields of a user.

        Raises:
            ValidationError: If an unknown or invalid field is given
            NotFoundError: If the user does not exist
            AlreadyExistsError: If the new email is taken
        """
        await self.ensure_store()
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        patch = {key: value for key, value in changes.items() if value is not None}
        if 'username' in patch:
            patch['username'] = _clean_username(patch['username'])
        if 'email' in patch:
            patch['email'] = _clean_email(patch['email'])

        try:
            async with self.store.transaction() as tx:
                user = await tx.find_one('users', {'id': user_id})
                if not user:
                    raise NotFoundError("User not found")
                if not patch:
                    return user
                await self._check_email_free(tx, patch.get('email'), user_id)
                rows = await tx.update('users', {'id': user_id}, patch)
                return rows[0]
        except ConstraintViolationError:
            raise AlreadyExistsError("Email already registered")


__all__ = ['UserManager', 'PROFILE_FIELDS']
