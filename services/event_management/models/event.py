"""Modelos Pydantic para eventos"""
from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from shared.database.models import EventStatus


class TicketTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)


class TicketTypeResponse(BaseModel):
    """Modelo de respuesta para tipos de ticket con disponibilidad"""
    id: str
    event_id: str
    name: str
    price: float
    quantity: int
    sold_count: int
    available: int
    position: int


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime
    total_tickets: int = Field(ge=1)
    ticket_types: List[TicketTypeCreate] = Field(min_length=1)


class EventResponse(BaseModel):
    id: str
    organizer_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime
    total_tickets: int
    sold_tickets: int
    available_tickets: int
    status: EventStatus
    ticket_types: List[TicketTypeResponse] = []
    created_at: Optional[datetime] = None

    @field_serializer('start_date', 'end_date', 'created_at')
    def serialize_datetime_utc(self, dt: Optional[datetime], _info) -> Optional[str]:
        """Serializar datetime a ISO 8601 con timezone UTC explícito"""
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        elif dt.tzinfo != timezone.utc:
            dt = dt.astimezone(timezone.utc)
        return dt.isoformat()


class OfficerAssign(BaseModel):
    user_id: UUID
    email: Optional[str] = None  # Para materializar al oficial si aún no existe
    name: Optional[str] = None


class OfficerResponse(BaseModel):
    id: str
    user_id: str
    event_id: str
    assigned_by: Optional[str] = None
    created_at: Optional[datetime] = None
