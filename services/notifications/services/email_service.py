"""Servicio de envío de emails usando Resend"""
import os
import logging
import asyncio
import base64
from dataclasses import dataclass
from typing import Optional, List, Union
import resend
from app.core.config import settings
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """El proveedor rechazó o no pudo procesar el envío"""


@dataclass(frozen=True)
class TicketAttachment:
    """Ticket a entregar: una imagen QR por ticket"""
    ticket_id: str
    type: str
    price: float
    image_png: bytes


class EmailService:
    """Servicio para enviar emails usando Resend (desarrollo y producción)"""

    def __init__(self):
        self.resend_api_key = os.getenv("RESEND_API_KEY", settings.RESEND_API_KEY)
        self.from_email = os.getenv("RESEND_FROM_EMAIL", settings.RESEND_FROM_EMAIL)

        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY no configurado. Los emails no se enviarán.")
            self.resend_configured = False
        else:
            # Configurar API key de Resend
            resend.api_key = self.resend_api_key
            self.resend_configured = True
            logger.info(f"EmailService (Resend) inicializado con from: {self.from_email}")

    async def send_email(
        self,
        to_email: Union[str, List[str]],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        attachments: Optional[List[dict]] = None
    ) -> bool:
        """
        Enviar email usando Resend

        Args:
            to_email: Email destino (string o lista de strings)
            subject: Asunto del email
            html_content: Contenido HTML del email
            text_content: Contenido de texto plano (opcional)
            attachments: Lista de adjuntos [{"filename": "ticket-1.png", "content": bytes}]

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        if not self.resend_configured:
            logger.warning(f"Resend no configurado. Email simulado a {to_email}: {subject}")
            return True

        to_emails = [to_email] if isinstance(to_email, str) else to_email

        params = {
            "from": self.from_email,
            "to": to_emails,
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content
        if attachments:
            # Resend requiere base64 para adjuntos
            params["attachments"] = [
                {
                    "filename": attachment["filename"],
                    "content": attachment["content"] if isinstance(attachment["content"], str)
                    else base64.b64encode(attachment["content"]).decode("utf-8"),
                }
                for attachment in attachments
            ]

        # Resend SDK es síncrono, se ejecuta en el thread pool
        loop = asyncio.get_running_loop()

        def send_email_sync():
            result = resend.Emails.send(params)
            if not result or result.get("error"):
                raise EmailDeliveryError(str(result.get("error") if result else "respuesta vacía"))
            return result

        async def call_provider():
            return await loop.run_in_executor(None, send_email_sync)

        try:
            result = await retry_with_backoff(
                call_provider,
                max_retries=2,
                initial_delay=0.5,
                max_delay=5.0,
            )
        except Exception as e:
            logger.error(f"Error enviando email a {to_emails}: {e}", exc_info=True)
            return False

        logger.info(f"Email enviado exitosamente a {to_emails}: {subject} (ID: {result.get('id', 'N/A')})")
        return True

    async def send_order_tickets_email(
        self,
        to_email: str,
        buyer_name: Optional[str],
        event_title: str,
        event_location: Optional[str],
        event_start: str,
        event_end: str,
        order_id: str,
        tickets: List[TicketAttachment]
    ) -> bool:
        """
        Enviar un único email por orden con una imagen QR por ticket

        Returns:
            True si se envió correctamente
        """
        if not to_email:
            logger.warning(f"[EMAIL] Orden {order_id} sin email de contacto, no se puede entregar")
            return False

        rows = []
        attachments = []
        for idx, ticket in enumerate(tickets, start=1):
            image_base64 = base64.b64encode(ticket.image_png).decode("utf-8")
            rows.append(
                f'<div class="ticket"><p><strong>Ticket {idx}</strong> · {ticket.type} · {ticket.price:.2f}</p>'
                f'<img src="data:image/png;base64,{image_base64}" alt="QR ticket {idx}" width="250" height="250" /></div>'
            )
            attachments.append({"filename": f"ticket-{idx}.png", "content": image_base64})

        rows_html = "".join(rows)
        greeting_name = buyer_name or "Estimado/a"
        location = event_location or "Ubicación no especificada"
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body>
            <p>Hola <strong>{greeting_name}</strong>,</p>
            <p>Tus tickets para <strong>{event_title}</strong> están listos.</p>
            <p>{location} · {event_start} - {event_end}</p>
            {rows_html}
            <p>Orden: {order_id}</p>
        </body>
        </html>
        """
        text_content = (
            f"Tus {len(tickets)} ticket(s) para {event_title} están adjuntos. Orden: {order_id}"
        )

        return await self.send_email(
            to_email=to_email,
            subject=f"Tus tickets para {event_title}",
            html_content=html_content,
            text_content=text_content,
            attachments=attachments,
        )
