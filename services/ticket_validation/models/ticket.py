"""Modelos Pydantic para verificación de tickets en puerta"""
from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from enum import Enum

from shared.database.models import VerificationAction, VerificationOutcome


class TicketState(str, Enum):
    ISSUED = "ISSUED"
    ENTERED = "ENTERED"
    EXITED = "EXITED"


class VerificationRequest(BaseModel):
    credential: str = Field(min_length=1)  # Payload leído del QR
    event_id: UUID
    action: VerificationAction = VerificationAction.SCANNED
    details: Optional[str] = Field(default=None, max_length=1000)


class VerificationResponse(BaseModel):
    log_id: str
    ticket_id: str
    event_id: str
    order_id: str
    officer_id: str
    sequence_number: int
    ticket_type: str
    event_title: Optional[str] = None
    action: VerificationAction
    outcome: VerificationOutcome
    previous_state: TicketState
    current_state: TicketState
    is_used: bool
    used_at: Optional[datetime] = None
    verified_at: datetime


class LogEntry(BaseModel):
    id: str
    ticket_id: str
    officer_id: str
    event_id: str
    action: VerificationAction
    outcome: VerificationOutcome
    details: Optional[str] = None
    created_at: datetime


class LogsPagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LogsListResponse(BaseModel):
    logs: List[LogEntry]
    pagination: LogsPagination
