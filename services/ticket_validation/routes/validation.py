"""Rutas de verificación de tickets en puerta"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
from uuid import UUID
from datetime import datetime
from shared.database.session import get_db
from shared.database.models import as_utc
from shared.auth.dependencies import get_current_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.ticket import (
    VerificationRequest,
    VerificationResponse,
    LogsListResponse
)
from services.ticket_validation.services.ticket_service import TicketValidationService
from services.ticket_validation.services.audit_service import AuditService


router = APIRouter()


@router.post("", response_model=VerificationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def verify_ticket(
    request: Request,  # Necesario para rate limiter
    verification: VerificationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """
    Verificar credencial QR y registrar la acción (SCANNED, ENTRY, EXIT, MARKED_USED)

    Requiere que el usuario esté asignado como oficial del evento
    """
    service = TicketValidationService()
    result = await service.verify(db=db, current_user=current_user, request=verification)
    return VerificationResponse(**result)


@router.get("/logs", response_model=LogsListResponse)
@limiter.limit(RATE_LIMITS["public"])
async def list_verification_logs(
    request: Request,
    event_id: Optional[UUID] = Query(None),
    officer_id: Optional[UUID] = Query(None),
    ticket_id: Optional[UUID] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Logs de verificación en orden cronológico"""
    await TicketValidationService().authorize_log_access(db, current_user, event_id)

    result = await AuditService.list_logs(
        db,
        event_id=event_id,
        officer_id=officer_id,
        ticket_id=ticket_id,
        since=as_utc(since) if since else None,
        until=as_utc(until) if until else None,
        page=page,
        limit=limit
    )
    return LogsListResponse(**result)
