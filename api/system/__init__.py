"""System health endpoints."""

import logging
import time
from fastapi import APIRouter, Depends
from pydantic import BaseModel
import psutil

from database import MemoryStore
from errors import StoreError
from ..dependencies import Services, get_services
from ..websockets import manager as ws_manager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    uptime: float
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    store_backend: str
    store_status: str
    websocket_connections: int
    change_listeners: int

@router.get("/health", response_model=SystemHealth)
async def get_system_health(services: Services = Depends(get_services)) -> SystemHealth:
    """Get system health status.

    Returns:
        SystemHealth object containing system metrics
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')
    process = psutil.Process()

    try:
        await services.store.count('users')
        store_status = "connected"
    except StoreError as e:
        logger.error(f"Store health check failed: {e}")
        store_status = "unavailable"

    healthy = store_status == "connected" and cpu_percent < 80
    return SystemHealth(
        status="healthy" if healthy else "degraded",
        uptime=time.time() - process.create_time(),
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        disk_usage=disk.percent,
        store_backend="memory" if isinstance(services.store, MemoryStore) else "postgres",
        store_status=store_status,
        websocket_connections=ws_manager.connection_count,
        change_listeners=services.store.bus.listener_count
    )

# Export the router
__all__ = ['router']
