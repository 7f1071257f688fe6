"""
Calendar feature: API routes for the unified calendar.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query, Response, status
from supabase import Client

from calendar_hub.core.dependencies import get_db, get_current_user_id
from calendar_hub.features.calendar.schemas import Event, EventCreate, EventUpdate
from calendar_hub.features.calendar.service import CalendarService

router = APIRouter()


@router.post("/events", response_model=Event, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreate,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Create a new manual calendar event."""
    service = CalendarService(db)
    return service.create_event(user_id, data)


@router.get("/events", response_model=list[Event])
async def list_events(
    start_date: dt.date | None = Query(None, alias="startDate"),
    end_date: dt.date | None = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Aggregated events (manual, imported and derived), oldest first.

    Both bounds are inclusive and optional.
    """
    service = CalendarService(db)
    return service.get_events(user_id, start_date, end_date)


@router.put("/events/{event_id}", response_model=Event)
async def update_event(
    event_id: str,
    data: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Update a manual event owned by the caller."""
    service = CalendarService(db)
    return service.update_event(user_id, event_id, data)


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Client = Depends(get_db),
):
    """Delete a manual event owned by the caller."""
    service = CalendarService(db)
    service.delete_event(user_id, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
