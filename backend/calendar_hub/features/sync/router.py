"""
Sync feature: API routes for calendar sync settings and provider sync.
"""

from fastapi import APIRouter, Depends
from supabase import Client

from calendar_hub.core.dependencies import get_db, get_current_user_id
from calendar_hub.features.sync.schemas import (
    AppleConnectRequest,
    CalendarSyncConfig,
    ConnectResult,
    GoogleConnectRequest,
    PullResult,
    PushResult,
    ServiceRequest,
    SyncConfigUpdate,
)
from calendar_hub.features.sync.service import CalendarSyncService

router = APIRouter()


@router.get("/config", response_model=CalendarSyncConfig)
async def get_sync_config(
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Sync settings without any stored credentials."""
    service = CalendarSyncService(db)
    return service.get_sync_config(user_id)


@router.put("/config", response_model=CalendarSyncConfig)
async def update_sync_config(
    data: SyncConfigUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Update eventSources and/or syncFrequency."""
    service = CalendarSyncService(db)
    return service.update_sync_config(user_id, data)


@router.post("/google/connect", response_model=ConnectResult)
async def connect_google(
    data: GoogleConnectRequest,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Store Google OAuth tokens for this user."""
    service = CalendarSyncService(db)
    success = await service.connect(user_id, "google", data.model_dump(by_alias=True))
    return ConnectResult(success=success, message="Google Calendar connected successfully")


@router.post("/apple/connect", response_model=ConnectResult)
async def connect_apple(
    data: AppleConnectRequest,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Store CalDAV credentials (Apple ID + app-specific password) for this user."""
    service = CalendarSyncService(db)
    success = await service.connect(user_id, "apple", data.model_dump(by_alias=True))
    return ConnectResult(success=success, message="Apple Calendar connected successfully")


@router.post("/disconnect", response_model=ConnectResult)
async def disconnect(
    data: ServiceRequest,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Forget a provider's credentials and event links."""
    service = CalendarSyncService(db)
    success = await service.disconnect(user_id, data.service)
    return ConnectResult(success=success, message=f"{data.service} calendar disconnected successfully")


@router.post("/push", response_model=PushResult)
async def push_events(
    data: ServiceRequest,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Push manual events to the provider."""
    service = CalendarSyncService(db)
    return await service.push_events(user_id, data.service)


@router.post("/pull", response_model=PullResult)
async def pull_events(
    data: ServiceRequest,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Import the provider's events into the calendar."""
    service = CalendarSyncService(db)
    return await service.pull_events(user_id, data.service)
