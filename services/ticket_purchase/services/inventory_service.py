"""Servicio de gestión de inventario (ledger de tickets vendidos)"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from shared.database.models import Event, TicketType, InventoryLog
from shared.utils.exceptions import InsufficientInventory, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    ticket_type_id: UUID
    event_id: UUID
    quantity: int


class InventoryService:
    """
    Ledger de inventario por tipo de ticket y por evento

    La verificación de disponibilidad y el incremento se ejecutan como un
    único UPDATE condicional; nunca se separan en dos llamadas. El commit
    lo hace quien llama, junto con la orden y los tickets.
    """

    @staticmethod
    async def get_availability(
        db: AsyncSession,
        ticket_type_id: UUID
    ) -> int:
        """Disponibilidad actual (quantity - sold_count) de un tipo de ticket"""
        stmt = select(TicketType.quantity - TicketType.sold_count).where(TicketType.id == ticket_type_id)
        result = await db.execute(stmt)
        available = result.scalar_one_or_none()

        if available is None:
            raise NotFoundError("Tipo de ticket no encontrado")
        return available

    @staticmethod
    async def reserve(
        db: AsyncSession,
        ticket_type_id: UUID,
        quantity: int,
        order_id: Optional[UUID] = None,
        caused_by_user: Optional[UUID] = None,
        reason: str = "ticket_purchase"
    ) -> Reservation:
        """
        Reservar inventario incrementando sold_count y sold_tickets

        Raises:
            ValidationError: cantidad no positiva
            NotFoundError: tipo de ticket inexistente
            InsufficientInventory: no hay disponibilidad en el tipo o en el evento
        """
        if quantity <= 0:
            raise ValidationError("La cantidad a reservar debe ser mayor a 0")

        stmt_type = select(TicketType.event_id).where(TicketType.id == ticket_type_id)
        result_type = await db.execute(stmt_type)
        event_id = result_type.scalar_one_or_none()

        if event_id is None:
            raise NotFoundError("Tipo de ticket no encontrado")

        # Check-and-increment atómico por tipo de ticket
        stmt_reserve = (
            update(TicketType)
            .where(
                TicketType.id == ticket_type_id,
                TicketType.sold_count + quantity <= TicketType.quantity
            )
            .values(sold_count=TicketType.sold_count + quantity)
            .execution_options(synchronize_session=False)
        )
        result_reserve = await db.execute(stmt_reserve)

        if result_reserve.rowcount == 0:
            available = await InventoryService.get_availability(db, ticket_type_id)
            logger.info(
                f"Reserva rechazada para ticket_type {ticket_type_id}: "
                f"disponible={available}, solicitado={quantity}"
            )
            raise InsufficientInventory(
                f"No hay suficientes tickets disponibles. Disponible: {available}, Solicitado: {quantity}",
                available=available,
                requested=quantity
            )

        # Mismo incremento condicional sobre la capacidad total del evento
        stmt_event = (
            update(Event)
            .where(
                Event.id == event_id,
                Event.sold_tickets + quantity <= Event.total_tickets
            )
            .values(sold_tickets=Event.sold_tickets + quantity)
            .execution_options(synchronize_session=False)
        )
        result_event = await db.execute(stmt_event)

        if result_event.rowcount == 0:
            # El caller hace rollback de la transacción, incluido el incremento del tipo
            logger.warning(f"Capacidad total del evento {event_id} agotada (ticket_type {ticket_type_id})")
            raise InsufficientInventory(
                f"Capacidad del evento agotada. Solicitado: {quantity}",
                requested=quantity
            )

        db.add(InventoryLog(
            ticket_type_id=ticket_type_id,
            event_id=event_id,
            order_id=order_id,
            delta=quantity,
            reason=reason,
            caused_by_user=caused_by_user
        ))

        return Reservation(ticket_type_id=ticket_type_id, event_id=event_id, quantity=quantity)
