"""Tareas asíncronas para la entrega de tickets por email"""
from typing import Optional
from uuid import UUID
import logging
import asyncio
from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
        asyncio.set_event_loop(None)


async def deliver_order_tickets(order_id: str, to_email: str, buyer_name: Optional[str] = None) -> bool:
    """
    Re-entregar los tickets de una orden ya emitida

    Las imágenes QR se regeneran desde el payload guardado en cada ticket;
    no se emite ni modifica nada.
    """
    from sqlalchemy import select
    from sqlalchemy.orm import selectinload
    from shared.database.session import session_scope
    from shared.database.models import Order, as_utc
    from shared.utils.qr_generator import render_qr_png
    from services.notifications.services.email_service import EmailService, TicketAttachment

    async with session_scope() as db:
        stmt = select(Order).options(
            selectinload(Order.event),
            selectinload(Order.tickets),
        ).where(Order.id == UUID(str(order_id)))
        order = (await db.execute(stmt)).scalar_one_or_none()

        if not order:
            raise LookupError(f"Orden {order_id} no encontrada")

        event = order.event
        attachments = [
            TicketAttachment(
                ticket_id=str(ticket.id),
                type=ticket.type,
                price=float(ticket.price),
                image_png=render_qr_png(ticket.qr_code),
            )
            for ticket in order.tickets
        ]

        return await EmailService().send_order_tickets_email(
            to_email=to_email,
            buyer_name=buyer_name,
            event_title=event.title,
            event_location=event.location,
            event_start=as_utc(event.start_date).strftime("%d/%m/%Y %H:%M"),
            event_end=as_utc(event.end_date).strftime("%d/%m/%Y %H:%M"),
            order_id=str(order.id),
            tickets=attachments,
        )


@celery_app.task(
    name="send_order_tickets_email",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 5},
)
def send_order_tickets_email_task(self, order_id: str, to_email: str, buyer_name: Optional[str] = None):
    """
    Tarea Celery para re-entregar los tickets de una orden

    Incluye retry automático con backoff exponencial
    """
    logger.info(f"[CELERY] Reintentando entrega de orden {order_id} a {to_email} (intento {self.request.retries + 1})")

    success = run_async(deliver_order_tickets(order_id, to_email, buyer_name))

    if not success:
        logger.error(f"[CELERY] Entrega de orden {order_id} falló, se reintentará")
        raise RuntimeError(f"Error enviando tickets de orden {order_id} a {to_email}")

    logger.info(f"[CELERY] Tickets de orden {order_id} entregados a {to_email}")
    return {"status": "sent", "order_id": order_id, "email": to_email}
