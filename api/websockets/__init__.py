"""WebSocket endpoints for real-time updates.

Each connection authenticates with its session token and receives the
committed row changes that concern its user on one channel:

- ``/ws/friendships``: friendship rows on either side of the user
- ``/ws/subscriptions``: the user's memberships and owned subscriptions
- ``/ws/notifications``: new notifications addressed to the user

Messages are hints to re-fetch; nothing is replayed after a reconnect.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from typing import Any, Awaitable, Callable, Dict, Optional
from datetime import datetime, timezone
from uuid import UUID
import logging
import asyncio

from auth import AuthError
from errors import SessionExpiredError
from events import ChangeEvent

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/ws",
    tags=["WebSocket"]
)

CHANNELS = ('friendships', 'subscriptions', 'notifications')

# Heartbeat settings
HEARTBEAT_INTERVAL = 30  # seconds
HEARTBEAT_TIMEOUT = 10   # seconds


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionManager:
    """Tracks open sockets per channel and their bus registrations."""

    def __init__(self):
        self.active_connections: Dict[str, Dict[WebSocket, Any]] = {
            channel: {} for channel in CHANNELS
        }
        self.heartbeat_tasks: Dict[WebSocket, asyncio.Task] = {}
        self.last_pong: Dict[WebSocket, datetime] = {}
        self.sessions: Dict[WebSocket, Callable[[], Awaitable[Any]]] = {}

    @property
    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self.active_connections.values())

    async def connect(self, websocket: WebSocket, channel: str, handle: Any,
                      verify: Optional[Callable[[], Awaitable[Any]]] = None):
        """Register an accepted socket together with its bus handle.

        ``verify`` re-checks the socket's session before every message sent
        and on every heartbeat.
        """
        self.active_connections[channel][websocket] = handle
        if verify is not None:
            self.sessions[websocket] = verify
        self.last_pong[websocket] = datetime.now(timezone.utc)
        self.heartbeat_tasks[websocket] = asyncio.create_task(
            self.heartbeat_loop(websocket, channel)
        )
        logger.info(f"New connection established for channel: {channel}")

    def disconnect(self, websocket: WebSocket, channel: str):
        """Remove a socket and stop its deliveries."""
        handle = self.active_connections[channel].pop(websocket, None)
        if handle is not None:
            handle.unsubscribe()
        task = self.heartbeat_tasks.pop(websocket, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self.last_pong.pop(websocket, None)
        self.sessions.pop(websocket, None)
        if handle is not None:
            logger.info(f"Connection closed for channel: {channel}")

    async def heartbeat_loop(self, websocket: WebSocket, channel: str):
        """Ping the client and drop it when pongs stop arriving."""
        try:
            while True:
                await asyncio.sleep(HEARTBEAT_INTERVAL)
                last = self.last_pong.get(websocket)
                if last is None:
                    return
                silence = (datetime.now(timezone.utc) - last).total_seconds()
                if silence > HEARTBEAT_INTERVAL + HEARTBEAT_TIMEOUT:
                    logger.warning(f"Heartbeat timeout in channel {channel}")
                    self.disconnect(websocket, channel)
                    await websocket.close(code=1001, reason="Heartbeat timeout")
                    return
                if not await self.session_valid(websocket, channel):
                    return
                await websocket.send_json({"type": "ping", "timestamp": _now()})
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Error in heartbeat loop: {e}")
            self.disconnect(websocket, channel)

    def pong(self, websocket: WebSocket):
        self.last_pong[websocket] = datetime.now(timezone.utc)

    async def session_valid(self, websocket: WebSocket, channel: str) -> bool:
        """Close the socket when its session was revoked or has expired."""
        verify = self.sessions.get(websocket)
        if verify is None:
            return True
        try:
            await verify()
            return True
        except (AuthError, SessionExpiredError) as e:
            logger.info(f"Closing {channel} connection: {e}")
            self.disconnect(websocket, channel)
            try:
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
            except RuntimeError:
                # Already closed by the client
                pass
            return False

    async def send_change(self, websocket: WebSocket, channel: str, change: ChangeEvent):
        """Forward a committed change to one socket."""
        if not await self.session_valid(websocket, channel):
            return
        try:
            await websocket.send_json({
                "type": "update",
                "channel": channel,
                "data": change.model_dump(mode='json'),
                "timestamp": _now()
            })
        except Exception as e:
            logger.error(f"Failed to send to connection: {e}")
            self.disconnect(websocket, channel)

    async def close_all(self):
        for channel, sockets in self.active_connections.items():
            for websocket in list(sockets):
                self.disconnect(websocket, channel)
                try:
                    await websocket.close(code=1001, reason="Server shutting down")
                except RuntimeError:
                    # Already closed by the client
                    pass


# Create connection manager instance
manager = ConnectionManager()


async def _watch(services, channel: str, user_id: UUID, callback):
    if channel == 'friendships':
        return await services.friends.watch(user_id, callback)
    if channel == 'subscriptions':
        return await services.subscriptions.watch(user_id, callback)
    return await services.notifications.watch(user_id, callback)


@router.websocket("/ping")
async def ping_endpoint(websocket: WebSocket):
    """Simple ping endpoint to test WebSocket connectivity."""
    await websocket.accept()
    try:
        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})
    except WebSocketDisconnect:
        pass


@router.websocket("/{channel}")
async def channel_endpoint(websocket: WebSocket, channel: str, token: Optional[str] = None):
    """Stream the authenticated user's changes on a channel."""
    if channel not in CHANNELS:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unknown channel")
        return

    services = websocket.app.state.services
    try:
        user_id = await services.auth.verify_session(token or '')
    except (AuthError, SessionExpiredError) as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
        return

    await websocket.accept()

    async def forward(change: ChangeEvent):
        await manager.send_change(websocket, channel, change)

    async def verify():
        return await services.auth.verify_session(token)

    handle = await _watch(services, channel, user_id, forward)
    await manager.connect(websocket, channel, handle, verify)
    await websocket.send_json({"type": "connected", "channel": channel, "timestamp": _now()})

    try:
        while True:
            message = await websocket.receive_json()
            if message.get("type") == "pong":
                manager.pong(websocket)
            elif message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error in {channel} channel: {e}")
    finally:
        manager.disconnect(websocket, channel)


# Export the router and manager
__all__ = ['router', 'manager', 'ConnectionManager', 'CHANNELS']
