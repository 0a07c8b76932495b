"""Servicio principal de emisión de tickets"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from dataclasses import dataclass
from typing import List, Dict, Optional
from decimal import Decimal
from uuid import UUID
import logging

from app.core.config import settings
from shared.auth.user_sync import sync_user
from shared.database.models import Order, Ticket, Event, TicketType, OrderStatus, utcnow
from shared.utils.exceptions import AppError, NotFoundError, ValidationError, InsufficientInventory
from shared.utils.qr_generator import mint_credential
from services.ticket_purchase.models.purchase import PurchaseRequest, CartItem
from services.ticket_purchase.services.inventory_service import InventoryService
from services.ticket_purchase.services.orders_service import serialize_order
from services.notifications.services.email_service import EmailService, TicketAttachment

logger = logging.getLogger(__name__)

DELIVERY_SENT = "sent"
DELIVERY_RETRY_SCHEDULED = "retry_scheduled"
DELIVERY_FAILED = "failed"


@dataclass
class IssuedOrder:
    """Orden ya confirmada, serializada antes de que otro ítem haga rollback"""
    data: Dict
    total: Decimal
    images: Dict[str, bytes]


class PurchaseService:
    """Servicio para procesar compras de tickets"""

    def __init__(self, email_service: Optional[EmailService] = None):
        self.inventory_service = InventoryService()
        self._email_service = email_service

    @property
    def email_service(self) -> EmailService:
        """Lazy initialization de EmailService solo cuando se necesita"""
        if self._email_service is None:
            self._email_service = EmailService()
        return self._email_service

    async def create_orders(
        self,
        db: AsyncSession,
        current_user: Dict,
        request: PurchaseRequest
    ) -> Dict:
        """
        Emitir una orden por cada ítem del carrito

        Cada ítem es una unidad de trabajo independiente: se confirma o se
        revierte por sí solo, y un fallo no deshace los ítems anteriores.
        La entrega por email ocurre después del commit y nunca revierte
        la emisión.

        Returns:
            dict con orders, failed_items y partial_success
        """
        buyer = await sync_user(db, current_user)
        await db.commit()
        buyer_id = buyer.id
        buyer_name = buyer.name

        user_info = request.user_info
        contact_email = (user_info.email if user_info and user_info.email else None) or current_user.get("email")
        contact_name = (user_info.name if user_info and user_info.name else None) or buyer_name

        issued: List[IssuedOrder] = []
        failed_items: List[Dict] = []

        for index, item in enumerate(request.items):
            try:
                issued.append(await self._issue_line_item(db, buyer_id, item, request.payment_method))
            except AppError as e:
                await db.rollback()
                logger.info(f"Ítem {index} del carrito rechazado ({e.code}): {e.message}")
                failed_items.append({
                    "index": index,
                    "event_id": str(item.event_id),
                    "error": e.code,
                    "detail": e.message,
                    "status_code": e.status_code,
                })
            except Exception as e:
                await db.rollback()
                logger.error(f"Error inesperado emitiendo ítem {index} del carrito: {e}", exc_info=True)
                failed_items.append({
                    "index": index,
                    "event_id": str(item.event_id),
                    "error": "unexpected_error",
                    "detail": "Error interno emitiendo tickets",
                    "status_code": 500,
                })

        if request.total is not None and issued and not failed_items:
            computed_total = sum((issued_order.total for issued_order in issued), Decimal("0"))
            if computed_total != request.total:
                logger.warning(
                    f"Total del cliente ({request.total}) no coincide con el calculado ({computed_total}); "
                    f"se usa el calculado"
                )

        orders = []
        for issued_order in issued:
            issued_order.data["delivery_status"] = await self._deliver_tickets(
                issued_order, contact_email, contact_name
            )
            orders.append(issued_order.data)

        partial_success = bool(orders) and (
            bool(failed_items) or any(order["delivery_status"] != DELIVERY_SENT for order in orders)
        )

        return {
            "orders": orders,
            "failed_items": failed_items,
            "partial_success": partial_success,
        }

    async def _issue_line_item(
        self,
        db: AsyncSession,
        buyer_id: UUID,
        item: CartItem,
        payment_method: Optional[str]
    ) -> IssuedOrder:
        """Reservar inventario, crear la orden y emitir sus tickets en una transacción"""
        event = await db.get(Event, item.event_id)
        if event is None:
            raise NotFoundError("Evento no encontrado")

        if item.quantity > settings.MAX_TICKETS_PER_LINE_ITEM:
            raise ValidationError(
                f"Máximo {settings.MAX_TICKETS_PER_LINE_ITEM} tickets por ítem, solicitado: {item.quantity}"
            )

        ticket_type = await self._resolve_ticket_type(db, event, item)

        # Pre-check para un mensaje claro; la reserva atómica es la que decide
        available = await self.inventory_service.get_availability(db, ticket_type.id)
        if available < item.quantity:
            raise InsufficientInventory(
                f"No hay suficientes tickets disponibles. Disponible: {available}, Solicitado: {item.quantity}",
                available=available,
                requested=item.quantity
            )

        unit_price = Decimal(str(item.price if item.price is not None else ticket_type.price))
        line_total = unit_price * item.quantity

        order = Order(
            user_id=buyer_id,
            event_id=event.id,
            total=line_total,
            status=OrderStatus.PENDING.value,
            payment_method=payment_method,
            payment_reference=None,
        )
        db.add(order)
        await db.flush()

        await self.inventory_service.reserve(
            db, ticket_type.id, item.quantity, order_id=order.id, caused_by_user=buyer_id
        )

        issued_at = utcnow()
        tickets = []
        images = {}
        for sequence_number in range(1, item.quantity + 1):
            credential = mint_credential(
                event_id=event.id,
                user_id=buyer_id,
                order_id=order.id,
                sequence_number=sequence_number,
                timestamp=issued_at,
            )
            images[str(credential.ticket_id)] = credential.image_png
            tickets.append(Ticket(
                id=credential.ticket_id,
                qr_code=credential.payload,
                type=ticket_type.name,
                price=unit_price,
                event_id=event.id,
                user_id=buyer_id,
                order_id=order.id,
                ticket_type=ticket_type,
                sequence_number=sequence_number,
                issued_at=issued_at,
                is_used=False,
                used_at=None,
            ))

        db.add_all(tickets)
        await db.flush()
        await db.commit()

        logger.info(
            f"Orden {order.id} emitida: {len(tickets)} ticket(s) '{ticket_type.name}' "
            f"para evento {event.id}, total {line_total}"
        )
        return IssuedOrder(
            data=serialize_order(order, event, tickets),
            total=line_total,
            images=images,
        )

    async def _resolve_ticket_type(
        self,
        db: AsyncSession,
        event: Event,
        item: CartItem
    ) -> TicketType:
        """Tipo de ticket por id, por nombre o el primero del evento"""
        if item.ticket_type_id is not None:
            stmt = select(TicketType).where(
                TicketType.id == item.ticket_type_id,
                TicketType.event_id == event.id
            )
            ticket_type = (await db.execute(stmt)).scalar_one_or_none()
            if ticket_type is None:
                raise NotFoundError("Tipo de ticket no encontrado para el evento")
            return ticket_type

        if item.ticket_type:
            stmt = select(TicketType).where(
                TicketType.event_id == event.id,
                TicketType.name == item.ticket_type
            )
            ticket_type = (await db.execute(stmt)).scalar_one_or_none()
            if ticket_type is None:
                raise NotFoundError(f"Tipo de ticket '{item.ticket_type}' no encontrado para el evento")
            return ticket_type

        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event.id)
            .order_by(TicketType.position.asc(), TicketType.created_at.asc())
            .limit(1)
        )
        ticket_type = (await db.execute(stmt)).scalar_one_or_none()
        if ticket_type is None:
            raise NotFoundError("El evento no tiene tipos de ticket configurados")
        return ticket_type

    async def _deliver_tickets(
        self,
        issued_order: IssuedOrder,
        contact_email: Optional[str],
        contact_name: Optional[str]
    ) -> str:
        """Enviar los tickets de la orden; si falla, agendar reintento fuera de banda"""
        order = issued_order.data
        event = order["event"]
        try:
            sent = await self.email_service.send_order_tickets_email(
                to_email=contact_email,
                buyer_name=contact_name,
                event_title=event["title"],
                event_location=event["location"],
                event_start=event["start_date"].strftime("%d/%m/%Y %H:%M"),
                event_end=event["end_date"].strftime("%d/%m/%Y %H:%M"),
                order_id=order["id"],
                tickets=[
                    TicketAttachment(
                        ticket_id=ticket["id"],
                        type=ticket["type"],
                        price=ticket["price"],
                        image_png=issued_order.images[ticket["id"]],
                    )
                    for ticket in order["tickets"]
                ],
            )
        except Exception as e:
            logger.error(f"Error entregando tickets de orden {order['id']}: {e}", exc_info=True)
            sent = False

        if sent:
            return DELIVERY_SENT
        return self._schedule_delivery_retry(order["id"], contact_email, contact_name)

    def _schedule_delivery_retry(
        self,
        order_id: str,
        contact_email: Optional[str],
        contact_name: Optional[str]
    ) -> str:
        if not contact_email:
            logger.warning(f"Orden {order_id} sin email de contacto; entrega marcada como fallida")
            return DELIVERY_FAILED

        from services.ticket_purchase.tasks.email_tasks import send_order_tickets_email_task

        try:
            send_order_tickets_email_task.delay(
                order_id=order_id,
                to_email=contact_email,
                buyer_name=contact_name,
            )
        except Exception as e:
            logger.error(f"No se pudo encolar reintento de entrega para orden {order_id}: {e}", exc_info=True)
            return DELIVERY_FAILED

        logger.info(f"Reintento de entrega encolado para orden {order_id}")
        return DELIVERY_RETRY_SCHEDULED
