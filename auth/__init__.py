"""Authentication and identity context.

This module provides:
1. Session tokens (JWT) for a user after a wallet login
2. Single active session per user
3. Guards that let an operation fail closed when its identity goes away
4. A FastAPI dependency for protecting routes

Wallet signature verification happens in the wallet connector before login
is called; this module only trusts the identity it is handed.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from config import settings_conf
from database import get_store
from errors import SplitError, NotFoundError, SessionExpiredError

# Configure logging
logger = logging.getLogger(__name__)

# Constants
JWT_ALGORITHM = "HS256"


class AuthError(SplitError):
    """Base exception for authentication errors."""
    category = "Authentication failed"


class IdentityGuard:
    """Snapshot of the identity an operation started with.

    ``check`` raises ``SessionExpiredError`` if the context has since
    disconnected or switched to another user.
    """

    def __init__(self, context: 'IdentityContext', user_id: UUID):
        self.context = context
        self.user_id = user_id
        self._generation = context._generation

    async def check(self) -> None:
        if (
            self.context._generation != self._generation
            or self.context.get_current_user_id() != self.user_id
        ):
            raise SessionExpiredError("Identity changed while the operation was running")


class IdentityContext:
    """Holds the connected user for one client.

    Connect and disconnect correspond to the wallet connector's events and
    to session timeouts.
    """

    def __init__(self, user_id: Optional[UUID] = None):
        self._user_id = user_id
        self._generation = 0
        self._listeners: Dict[UUID, Callable[[Optional[UUID]], Any]] = {}

    def get_current_user_id(self) -> Optional[UUID]:
        return self._user_id

    def on_identity_change(self, callback: Callable[[Optional[UUID]], Any]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        key = uuid.uuid4()
        self._listeners[key] = callback

        def dispose() -> None:
            self._listeners.pop(key, None)
        return dispose

    def connect(self, user_id: UUID) -> None:
        self._set(user_id)

    def disconnect(self) -> None:
        self._set(None)

    def _set(self, user_id: Optional[UUID]) -> None:
        self._user_id = user_id
        self._generation += 1
        for callback in list(self._listeners.values()):
            try:
                callback(user_id)
            except Exception as e:
                logger.error(f"Identity listener failed: {e}")

    def guard(self, user_id: Optional[UUID] = None) -> IdentityGuard:
        """Guard for an operation acting as ``user_id`` (default: current user).

        Raises:
            SessionExpiredError: If nobody is connected
        """
        user_id = user_id or self._user_id
        if user_id is None or user_id != self._user_id:
            raise SessionExpiredError("No connected identity")
        return IdentityGuard(self, user_id)


class SessionGuard:
    """Guard bound to a session token; revoked or expired tokens fail it."""

    def __init__(self, auth: 'AuthManager', token: str, user_id: UUID):
        self.auth = auth
        self.token = token
        self.user_id = user_id

    async def check(self) -> None:
        try:
            user_id = await self.auth.verify_session(self.token)
        except AuthError as e:
            raise SessionExpiredError(str(e))
        if user_id != self.user_id:
            raise SessionExpiredError("Session belongs to another user")


Guard = Union[IdentityGuard, SessionGuard]


class AuthManager:
    """Manages session tokens."""

    def __init__(self, store=None, secret: Optional[str] = None, expiry_days: Optional[int] = None):
        """Initialize auth manager.

        Args:
            store: Optional row store. If not provided, will get from database module.
            secret: Token signing secret. Random per process when not configured.
            expiry_days: Session lifetime
        """
        self.store = store
        self.secret = secret or settings_conf.get('jwt_secret') or secrets.token_urlsafe(32)
        self.expiry_days = expiry_days or settings_conf.get('session_expiry_days', 30)

    async def ensure_store(self):
        """Ensure a row store is available."""
        if not self.store:
            self.store = await get_store()

    async def login(self, wallet_address: str, request: Optional[Request] = None) -> Dict[str, Any]:
        """Create a session for the user owning a connected wallet.

        Email addresses are not accepted: knowing one proves nothing.

        Returns:
            Dict containing token, expires_at and user_id

        Raises:
            NotFoundError: If no user owns the wallet
        """
        await self.ensure_store()
        user = await self.store.find_one('users', {'wallet_address': (wallet_address or '').strip()})
        if not user:
            raise NotFoundError("User not found")
        return await self.create_session(user['id'], request)

    async def create_session(self, user_id: UUID, request: Optional[Request] = None) -> Dict[str, Any]:
        """Issue a token for a user, revoking their previous sessions."""
        await self.ensure_store()

        expires_at = datetime.now(timezone.utc) + timedelta(days=self.expiry_days)
        token = jwt.encode(
            {
                'sub': str(user_id),
                'jti': uuid.uuid4().hex,
                'exp': int(expires_at.timestamp())
            },
            self.secret,
            algorithm=JWT_ALGORITHM
        )

        async with self.store.transaction() as tx:
            await tx.update('auth_sessions', {'user_id': user_id, 'revoked': False}, {'revoked': True})
            await tx.insert('auth_sessions', {
                'user_id': user_id,
                'token': token,
                'expires_at': expires_at,
                'user_agent': request.headers.get('user-agent') if request else None,
                'ip_address': request.client.host if request and request.client else None
            })

        logger.info(f"Created session for user {user_id}")
        return {
            'token': token,
            'expires_at': expires_at.isoformat(),
            'user_id': str(user_id)
        }

    async def verify_session(self, token: str) -> UUID:
        """Verify a session token.

        Returns:
            The authenticated user id

        Raises:
            SessionExpiredError: If the token has expired
            AuthError: If the token is invalid or revoked
        """
        await self.ensure_store()

        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
            user_id = UUID(payload['sub'])
        except ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except (JWTError, KeyError, ValueError) as e:
            raise AuthError(f"Invalid token: {str(e)}")

        session = await self.store.find_one(
            'auth_sessions',
            {'token': token, 'user_id': user_id, 'revoked': False}
        )
        if not session:
            raise AuthError("Session not found or revoked")
        if session['expires_at'] < datetime.now(timezone.utc):
            raise SessionExpiredError("Session has expired")
        return user_id

    async def logout(self, user_id: UUID) -> int:
        """Revoke every active session of a user.

        Returns:
            Number of sessions revoked
        """
        await self.ensure_store()
        revoked = await self.store.update(
            'auth_sessions',
            {'user_id': user_id, 'revoked': False},
            {'revoked': True}
        )
        logger.info(f"Revoked {len(revoked)} session(s) for user {user_id}")
        return len(revoked)

    def guard(self, token: str, user_id: UUID) -> SessionGuard:
        return SessionGuard(self, token, user_id)


class AuthenticatedUser:
    """Identity attached to a request."""

    def __init__(self, user_id: UUID, token: str, guard: SessionGuard):
        self.id = user_id
        self.token = token
        self.guard = guard


# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=True,  # Return 401 automatically if token is missing
    description="JWT Bearer token required"
)
optional_auth_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)
) -> AuthenticatedUser:
    """FastAPI dependency for getting the authenticated user.

    Raises:
        HTTPException: If authentication fails
    """
    manager: AuthManager = request.app.state.services.auth
    try:
        user_id = await manager.verify_session(credentials.credentials)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    return AuthenticatedUser(
        user_id,
        credentials.credentials,
        manager.guard(credentials.credentials, user_id)
    )


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_auth_scheme)
) -> Optional[AuthenticatedUser]:
    """Like ``get_current_user`` but None when no token is sent."""
    if credentials is None:
        return None
    return await get_current_user(request, credentials)


# Export public interface
__all__ = [
    'AuthManager',
    'AuthError',
    'AuthenticatedUser',
    'IdentityContext',
    'IdentityGuard',
    'SessionGuard',
    'Guard',
    'get_current_user',
    'get_optional_user',
    'auth_scheme',
    'JWT_ALGORITHM'
]
