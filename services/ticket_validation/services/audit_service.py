"""Registro append-only de verificaciones"""
import math
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from shared.database.models import VerificationLog, VerificationAction, VerificationOutcome, as_utc
from services.ticket_validation.models.ticket import TicketState


_STATE_BY_ACTION = {
    VerificationAction.ENTRY.value: TicketState.ENTERED,
    VerificationAction.EXIT.value: TicketState.EXITED,
}


def serialize_log(log: VerificationLog) -> Dict:
    return {
        "id": str(log.id),
        "ticket_id": str(log.ticket_id),
        "officer_id": str(log.officer_id),
        "event_id": str(log.event_id),
        "action": log.action,
        "outcome": log.outcome,
        "details": log.details,
        "created_at": as_utc(log.created_at),
    }


class AuditService:
    """
    Escritura y consulta de verification_logs

    Solo expone append; no hay API de update ni delete. El estado de
    ingreso/salida de un ticket se deriva de su última entrada ENTRY/EXIT
    aceptada.
    """

    @staticmethod
    async def append(
        db: AsyncSession,
        ticket_id: UUID,
        officer_id: UUID,
        event_id: UUID,
        action: VerificationAction,
        created_at: datetime,
        outcome: VerificationOutcome = VerificationOutcome.ACCEPTED,
        details: Optional[str] = None
    ) -> VerificationLog:
        log = VerificationLog(
            ticket_id=ticket_id,
            officer_id=officer_id,
            event_id=event_id,
            action=VerificationAction(action).value,
            outcome=VerificationOutcome(outcome).value,
            details=details,
            created_at=created_at,
        )
        db.add(log)
        await db.flush()
        return log

    @staticmethod
    async def last_timestamp(db: AsyncSession, ticket_id: UUID) -> Optional[datetime]:
        stmt = select(func.max(VerificationLog.created_at)).where(VerificationLog.ticket_id == ticket_id)
        return as_utc((await db.execute(stmt)).scalar())

    @staticmethod
    async def latest_state(db: AsyncSession, ticket_id: UUID) -> TicketState:
        """ISSUED si el ticket nunca tuvo un ENTRY/EXIT aceptado"""
        stmt = (
            select(VerificationLog.action)
            .where(
                VerificationLog.ticket_id == ticket_id,
                VerificationLog.outcome == VerificationOutcome.ACCEPTED.value,
                VerificationLog.action.in_([VerificationAction.ENTRY.value, VerificationAction.EXIT.value]),
            )
            .order_by(VerificationLog.created_at.desc())
            .limit(1)
        )
        action = (await db.execute(stmt)).scalar_one_or_none()
        return _STATE_BY_ACTION.get(action, TicketState.ISSUED)

    @staticmethod
    async def list_logs(
        db: AsyncSession,
        event_id: Optional[UUID] = None,
        officer_id: Optional[UUID] = None,
        ticket_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50
    ) -> Dict:
        """Logs filtrados, en orden cronológico (orden de replay)"""
        conditions = []
        if event_id is not None:
            conditions.append(VerificationLog.event_id == event_id)
        if officer_id is not None:
            conditions.append(VerificationLog.officer_id == officer_id)
        if ticket_id is not None:
            conditions.append(VerificationLog.ticket_id == ticket_id)
        if since is not None:
            conditions.append(VerificationLog.created_at >= since)
        if until is not None:
            conditions.append(VerificationLog.created_at <= until)

        count_stmt = select(func.count(VerificationLog.id)).where(*conditions)
        total = (await db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(VerificationLog)
            .where(*conditions)
            .order_by(VerificationLog.created_at.asc(), VerificationLog.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        logs = (await db.execute(stmt)).scalars().all()

        return {
            "logs": [serialize_log(log) for log in logs],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }
