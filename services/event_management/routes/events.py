"""Rutas de gestión de eventos"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Dict
from uuid import UUID
from shared.database.session import get_db
from shared.database.models import EventStatus, as_utc
from shared.auth.dependencies import get_current_user, get_current_organizer
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_management.models.event import (
    EventCreate,
    EventResponse,
    OfficerAssign,
    OfficerResponse
)
from services.event_management.services.event_service import EventService, serialize_event


router = APIRouter()


@router.get("", response_model=List[EventResponse])
@limiter.limit(RATE_LIMITS["public"])
async def list_events(
    request: Request,
    status_filter: Optional[EventStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db)
):
    """Listar eventos con disponibilidad por tipo de ticket (endpoint público)"""
    events = await EventService.list_events(db, status=status_filter, limit=limit, offset=offset)
    return [EventResponse(**serialize_event(event)) for event in events]


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: UUID,
    db: AsyncSession = Depends(get_db)
):
    """Obtener evento por ID (endpoint público)"""
    event = await EventService.get_event(db, event_id)
    return EventResponse(**serialize_event(event))


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["admin"])
async def create_event(
    request: Request,
    event_data: EventCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_organizer)
):
    """
    Crear nuevo evento con sus tipos de ticket

    Requiere: organizer o admin
    """
    event = await EventService.create_event(db=db, event_data=event_data, current_user=current_user)
    return EventResponse(**serialize_event(event))


@router.post("/{event_id}/officers", response_model=OfficerResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["admin"])
async def assign_officer(
    request: Request,
    event_id: UUID,
    data: OfficerAssign,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Asignar oficial de seguridad al evento

    Requiere: organizador del evento o admin
    """
    officer = await EventService.assign_officer(db, event_id, data, current_user)
    return OfficerResponse(
        id=str(officer.id),
        user_id=str(officer.user_id),
        event_id=str(officer.event_id),
        assigned_by=str(officer.assigned_by) if officer.assigned_by else None,
        created_at=as_utc(officer.created_at),
    )
