"""Servicio de verificación de tickets en puerta"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import timedelta
from typing import Dict, Optional
from uuid import UUID
import hashlib
import logging

from app.core.config import settings
from shared.auth.user_sync import user_id_from_claims
from shared.cache.redis_client import cache_get, cache_set
from shared.database.models import (
    Ticket, Event, SecurityOfficer, UserRole,
    VerificationAction, VerificationOutcome, utcnow, as_utc,
)
from shared.utils.exceptions import Forbidden, InvalidCredential, NotFoundError
from shared.utils.qr_generator import decode_payload
from services.ticket_validation.models.ticket import VerificationRequest, TicketState
from services.ticket_validation.services.audit_service import AuditService

logger = logging.getLogger(__name__)

# Resolución del reloj de la BD: separación mínima entre logs del mismo ticket
_TIMESTAMP_STEP = timedelta(microseconds=1)


class TicketValidationService:
    """Máquina de estados ISSUED -> ENTERED <-> EXITED sobre verification_logs"""

    def __init__(self, audit_service: Optional[AuditService] = None):
        self.audit_service = audit_service or AuditService()

    async def verify(
        self,
        db: AsyncSession,
        current_user: Dict,
        request: VerificationRequest
    ) -> Dict:
        """
        Verificar una credencial y registrar la acción del oficial

        Raises:
            Forbidden: el usuario no es oficial del evento, o el ticket es
                de otro evento (en este caso queda un log DENIED)
            InvalidCredential: firma o formato inválido
            NotFoundError: la credencial no corresponde a ningún ticket
        """
        officer = await self._get_officer(db, user_id_from_claims(current_user), request.event_id)
        if officer is None:
            raise Forbidden("No estás asignado como oficial de seguridad de este evento")

        credential = request.credential.strip()
        claims = decode_payload(credential)

        # Lock de la fila: transiciones del mismo ticket se serializan
        stmt = select(Ticket).where(Ticket.id == UUID(claims["tid"])).with_for_update()
        ticket = (await db.execute(stmt)).scalar_one_or_none()
        if ticket is None:
            raise NotFoundError("Ticket no encontrado")
        if ticket.qr_code != credential:
            raise InvalidCredential("La credencial no corresponde al ticket")

        summary = await self._get_ticket_summary(db, ticket, credential)
        previous_state = await self.audit_service.latest_state(db, ticket.id)
        verified_at = await self._next_timestamp(db, ticket.id)

        if ticket.event_id != officer.event_id:
            await self.audit_service.append(
                db,
                ticket_id=ticket.id,
                officer_id=officer.id,
                event_id=officer.event_id,
                action=request.action,
                outcome=VerificationOutcome.DENIED,
                details=f"Ticket de otro evento ({ticket.event_id})",
                created_at=verified_at,
            )
            await db.commit()
            logger.warning(
                f"Verificación denegada: ticket {ticket.id} es del evento {ticket.event_id}, "
                f"oficial {officer.id} asignado a {officer.event_id}"
            )
            raise Forbidden("El ticket no corresponde a este evento")

        current_state = previous_state
        if request.action == VerificationAction.ENTRY:
            current_state = TicketState.ENTERED
        elif request.action == VerificationAction.EXIT:
            current_state = TicketState.EXITED
        elif request.action == VerificationAction.MARKED_USED:
            ticket.is_used = True
            ticket.used_at = verified_at

        log = await self.audit_service.append(
            db,
            ticket_id=ticket.id,
            officer_id=officer.id,
            event_id=officer.event_id,
            action=request.action,
            outcome=VerificationOutcome.ACCEPTED,
            details=request.details,
            created_at=verified_at,
        )
        await db.commit()

        logger.info(
            f"Ticket {ticket.id}: {request.action.value} por oficial {officer.id} "
            f"({previous_state.value} -> {current_state.value})"
        )

        return {
            "log_id": str(log.id),
            "ticket_id": str(ticket.id),
            "event_id": str(ticket.event_id),
            "order_id": str(ticket.order_id),
            "officer_id": str(officer.id),
            "sequence_number": ticket.sequence_number,
            "ticket_type": summary["ticket_type"],
            "event_title": summary.get("event_title"),
            "action": request.action,
            "outcome": VerificationOutcome.ACCEPTED,
            "previous_state": previous_state,
            "current_state": current_state,
            "is_used": bool(ticket.is_used),
            "used_at": as_utc(ticket.used_at),
            "verified_at": verified_at,
        }

    async def authorize_log_access(
        self,
        db: AsyncSession,
        current_user: Dict,
        event_id: Optional[UUID]
    ) -> None:
        """Admin lee todo; organizador u oficial solo los logs de su evento"""
        if current_user.get("role") == UserRole.ADMIN.value:
            return
        if event_id is None:
            raise Forbidden("Se requiere event_id para consultar logs")

        user_id = user_id_from_claims(current_user)
        event = await db.get(Event, event_id)
        if event is None:
            raise NotFoundError("Evento no encontrado")
        if event.organizer_id == user_id:
            return
        if await self._get_officer(db, user_id, event_id) is not None:
            return
        raise Forbidden("No tienes acceso a los logs de este evento")

    @staticmethod
    async def _get_officer(db: AsyncSession, user_id: UUID, event_id: UUID) -> Optional[SecurityOfficer]:
        stmt = select(SecurityOfficer).where(
            SecurityOfficer.user_id == user_id,
            SecurityOfficer.event_id == event_id
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def _next_timestamp(self, db: AsyncSession, ticket_id: UUID):
        """Ahora, o el último timestamp del ticket + 1µs si el reloj no avanzó"""
        now = utcnow()
        last = await self.audit_service.last_timestamp(db, ticket_id)
        if last is not None and now <= last:
            return last + _TIMESTAMP_STEP
        return now

    @staticmethod
    async def _get_ticket_summary(db: AsyncSession, ticket: Ticket, credential: str) -> Dict:
        """
        Datos de presentación del ticket (tipo, evento)

        credential -> ticket es inmutable, así que se cachea sin invalidación.
        El cache es opcional: si Redis falla se lee de la BD.
        """
        cache_key = f"ticket:credential:{hashlib.sha256(credential.encode('utf-8')).hexdigest()}"
        try:
            cached = await cache_get(cache_key)
        except Exception as e:
            logger.warning(f"Cache de credenciales no disponible: {e}")
            cached = None
        if cached:
            return cached

        event_title = (await db.execute(select(Event.title).where(Event.id == ticket.event_id))).scalar_one_or_none()
        summary = {
            "ticket_id": str(ticket.id),
            "event_id": str(ticket.event_id),
            "order_id": str(ticket.order_id),
            "ticket_type": ticket.type,
            "event_title": event_title,
        }
        try:
            await cache_set(cache_key, summary, expire=settings.CREDENTIAL_CACHE_TTL)
        except Exception as e:
            logger.warning(f"No se pudo cachear credencial de ticket {ticket.id}: {e}")
        return summary
