"""REST API module for shared subscriptions.

This module provides HTTP endpoints for:
- Registering users and managing sessions
- Sending and answering friend requests
- Creating subscriptions, inviting friends and splitting costs
- Recording payments between members
- Reading and clearing notifications
- Real-time updates via WebSocket
- System health monitoring
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings_conf
from database import get_store, close as db_close
from .dependencies import Services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("Initializing API...")
    app.state.services = Services(await get_store())

    yield

    # Shutdown
    logger.info("Shutting down API...")
    await ws_manager.close_all()
    await db_close()

# Create FastAPI app
app = FastAPI(
    title="Split Subscriptions API",
    description="REST API for sharing subscription costs between friends",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings_conf['cors_origins'],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

# Root endpoint - register this BEFORE other routers
@app.get("/")
async def root():
    return {
        "name": "Split Subscriptions API",
        "version": "1.0.0",
        "status": "running"
    }

# Import and include all routers
from .auth import router as auth_router
from .users import router as users_router
from .friends import router as friends_router
from .subscriptions import router as subscriptions_router
from .notifications import router as notifications_router
from .payments import router as payments_router
from .system import router as system_router
from .websockets import router as websocket_router, manager as ws_manager

# Include all routers
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(friends_router)
app.include_router(subscriptions_router)
app.include_router(notifications_router)
app.include_router(payments_router)
app.include_router(system_router)
app.include_router(websocket_router)

__all__ = ['app', 'lifespan']
