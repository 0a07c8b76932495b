"""Servicio de gestión de eventos y oficiales de seguridad"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from typing import Dict, List, Optional
from uuid import UUID
import logging

from shared.auth.user_sync import sync_user, user_id_from_claims
from shared.database.models import Event, TicketType, SecurityOfficer, User, UserRole, EventStatus, as_utc
from shared.utils.exceptions import Forbidden, NotFoundError, ValidationError, Unauthenticated
from services.event_management.models.event import EventCreate, OfficerAssign

logger = logging.getLogger(__name__)


def serialize_event(event: Event) -> Dict:
    return {
        "id": str(event.id),
        "organizer_id": str(event.organizer_id),
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start_date": as_utc(event.start_date),
        "end_date": as_utc(event.end_date),
        "total_tickets": event.total_tickets,
        "sold_tickets": event.sold_tickets,
        "available_tickets": event.total_tickets - event.sold_tickets,
        "status": event.status,
        "ticket_types": [
            {
                "id": str(tt.id),
                "event_id": str(tt.event_id),
                "name": tt.name,
                "price": float(tt.price),
                "quantity": tt.quantity,
                "sold_count": tt.sold_count,
                "available": tt.available,
                "position": tt.position,
            }
            for tt in event.ticket_types
        ],
        "created_at": as_utc(event.created_at),
    }


class EventService:
    """Servicio para gestionar eventos"""

    @staticmethod
    async def create_event(
        db: AsyncSession,
        event_data: EventCreate,
        current_user: Dict
    ) -> Event:
        """
        Crear evento con sus tipos de ticket

        Requiere: organizer o admin. El usuario queda como organizador.
        """
        if as_utc(event_data.end_date) < as_utc(event_data.start_date):
            raise ValidationError("La fecha de término debe ser posterior a la de inicio")

        names = [tt.name.strip() for tt in event_data.ticket_types]
        if len(set(names)) != len(names):
            raise ValidationError("Los nombres de los tipos de ticket deben ser únicos en el evento")

        allocated = sum(tt.quantity for tt in event_data.ticket_types)
        if allocated > event_data.total_tickets:
            raise ValidationError(
                f"La suma de cantidades por tipo ({allocated}) supera la capacidad del evento "
                f"({event_data.total_tickets})"
            )

        organizer = await sync_user(db, current_user)

        event = Event(
            organizer_id=organizer.id,
            title=event_data.title,
            description=event_data.description,
            location=event_data.location,
            start_date=as_utc(event_data.start_date),
            end_date=as_utc(event_data.end_date),
            total_tickets=event_data.total_tickets,
            sold_tickets=0,
            status=EventStatus.UPCOMING.value,
        )
        db.add(event)
        await db.flush()

        for position, (name, tt) in enumerate(zip(names, event_data.ticket_types)):
            db.add(TicketType(
                event_id=event.id,
                name=name,
                price=tt.price,
                quantity=tt.quantity,
                sold_count=0,
                position=position,
            ))

        await db.commit()
        logger.info(
            f"Evento {event.id} creado por {organizer.id} con {len(names)} tipo(s) de ticket, "
            f"capacidad {event_data.total_tickets}"
        )
        return await EventService.get_event(db, event.id)

    @staticmethod
    async def get_event(
        db: AsyncSession,
        event_id: UUID
    ) -> Event:
        """Obtener evento por ID con sus tipos de ticket (disponibilidad actual)"""
        stmt = (
            select(Event)
            .options(selectinload(Event.ticket_types))
            .where(Event.id == event_id)
            # sold_count cambia con cada compra; no reusar el identity map
            .execution_options(populate_existing=True)
        )
        event = (await db.execute(stmt)).scalar_one_or_none()
        if event is None:
            raise NotFoundError("Evento no encontrado")
        return event

    @staticmethod
    async def list_events(
        db: AsyncSession,
        status: Optional[EventStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Event]:
        """Eventos ordenados por fecha de inicio"""
        stmt = select(Event).options(selectinload(Event.ticket_types))

        if status is not None:
            stmt = stmt.where(Event.status == EventStatus(status).value)

        stmt = stmt.order_by(Event.start_date.asc(), Event.id.asc()).limit(limit).offset(offset)
        stmt = stmt.execution_options(populate_existing=True)

        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def assign_officer(
        db: AsyncSession,
        event_id: UUID,
        data: OfficerAssign,
        current_user: Dict
    ) -> SecurityOfficer:
        """
        Asignar un oficial de seguridad al evento

        Solo el organizador del evento o un admin. Asignar dos veces al
        mismo usuario devuelve la asignación existente.
        """
        event = await db.get(Event, event_id)
        if event is None:
            raise NotFoundError("Evento no encontrado")

        acting_user_id = user_id_from_claims(current_user)
        if current_user.get("role") != UserRole.ADMIN.value and event.organizer_id != acting_user_id:
            raise Forbidden("Solo el organizador del evento o un admin puede asignar oficiales")

        existing = await EventService._get_assignment(db, data.user_id, event_id)
        if existing is not None:
            return existing

        officer_user = await db.get(User, data.user_id)
        if officer_user is None:
            if not data.email:
                raise NotFoundError("Usuario oficial no encontrado; se requiere email para crearlo")
            try:
                officer_user = await sync_user(db, {
                    "user_id": str(data.user_id),
                    "email": data.email,
                    "name": data.name,
                    "role": UserRole.SECURITY.value,
                })
            except Unauthenticated:
                raise ValidationError(f"El email {data.email} ya pertenece a otro usuario")

        # Un admin puede no tener fila en users
        acting_user = await db.get(User, acting_user_id)
        officer = SecurityOfficer(
            user_id=officer_user.id,
            event_id=event_id,
            assigned_by=acting_user.id if acting_user else None,
        )
        db.add(officer)
        try:
            await db.commit()
        except IntegrityError:
            # Asignación concurrente del mismo oficial
            await db.rollback()
            existing = await EventService._get_assignment(db, data.user_id, event_id)
            if existing is None:
                raise
            return existing

        logger.info(f"Oficial {officer_user.id} asignado al evento {event_id} por {acting_user_id}")
        return officer

    @staticmethod
    async def _get_assignment(db: AsyncSession, user_id: UUID, event_id: UUID) -> Optional[SecurityOfficer]:
        stmt = select(SecurityOfficer).where(
            SecurityOfficer.user_id == user_id,
            SecurityOfficer.event_id == event_id
        )
        return (await db.execute(stmt)).scalar_one_or_none()
