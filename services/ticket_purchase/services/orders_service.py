"""Servicio de consulta de órdenes del usuario"""
import math
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from shared.database.models import Order, Ticket, OrderStatus, as_utc


def serialize_ticket(ticket: Ticket) -> Dict:
    ticket_type = ticket.ticket_type
    return {
        "id": str(ticket.id),
        "qr_code": ticket.qr_code,
        "type": ticket.type,
        "price": float(ticket.price),
        "sequence_number": ticket.sequence_number,
        "event_id": str(ticket.event_id),
        "order_id": str(ticket.order_id),
        "ticket_type_id": str(ticket.ticket_type_id) if ticket.ticket_type_id else None,
        "ticket_type": {
            "id": str(ticket_type.id),
            "name": ticket_type.name,
            "price": float(ticket_type.price),
        } if ticket_type is not None else None,
        "issued_at": as_utc(ticket.issued_at),
        "is_used": bool(ticket.is_used),
        "used_at": as_utc(ticket.used_at),
    }


def serialize_order(order: Order, event, tickets: List[Ticket], delivery_status: Optional[str] = None) -> Dict:
    """Order + resumen del evento + tickets, en el formato de OrderResponse"""
    return {
        "id": str(order.id),
        "event_id": str(order.event_id),
        "user_id": str(order.user_id),
        "total": float(order.total),
        "status": order.status,
        "payment_method": order.payment_method,
        "payment_reference": order.payment_reference,
        "created_at": as_utc(order.created_at),
        "event": {
            "id": str(event.id),
            "title": event.title,
            "location": event.location,
            "start_date": as_utc(event.start_date),
            "end_date": as_utc(event.end_date),
        } if event is not None else None,
        "tickets": [serialize_ticket(ticket) for ticket in sorted(tickets, key=lambda t: t.sequence_number)],
        "delivery_status": delivery_status,
    }


class OrdersService:
    """Listado paginado de órdenes del comprador"""

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        user_id: UUID,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict:
        """
        Órdenes del usuario, más recientes primero

        Solo lectura: llamadas repetidas sin escrituras intermedias
        devuelven el mismo resultado.
        """
        conditions = [Order.user_id == user_id]
        if status is not None:
            conditions.append(Order.status == OrderStatus(status).value)

        count_stmt = select(func.count(Order.id)).where(*conditions)
        total = (await db.execute(count_stmt)).scalar() or 0

        offset = (page - 1) * limit
        stmt = (
            select(Order)
            .options(
                selectinload(Order.event),
                selectinload(Order.tickets).selectinload(Ticket.ticket_type),
            )
            .where(*conditions)
            # created_at puede empatar dentro de un mismo request; id desempata
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await db.execute(stmt)
        orders = result.scalars().all()

        return {
            "orders": [serialize_order(order, order.event, order.tickets) for order in orders],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
        }
