"""Credenciales de tickets: payload firmado + imagen QR"""
import base64
import binascii
import hashlib
import hmac
import io
import json
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import qrcode

from shared.utils.exceptions import CredentialEncodingError, InvalidCredential

logger = logging.getLogger(__name__)

CREDENTIAL_VERSION = 1

# Namespace fijo para derivar ticket_id de (order_id, sequence_number, timestamp)
TICKET_NAMESPACE = uuid.UUID("5b0c2f7e-3d1a-4f4e-9a57-6a1e2c9d8b10")


@dataclass(frozen=True)
class Credential:
    ticket_id: uuid.UUID
    payload: str
    image_png: bytes
    event_id: str
    user_id: str
    order_id: str
    sequence_number: int
    issued_at_ms: int

    @property
    def image_base64(self) -> str:
        return base64.b64encode(self.image_png).decode("utf-8")

    @property
    def data_url(self) -> str:
        return f"data:image/png;base64,{self.image_base64}"


def _get_secret(secret: Optional[str]) -> str:
    if secret is None:
        secret = os.getenv("QR_SECRET", "dev-qr-secret-change-in-production")
    return secret


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def derive_ticket_id(order_id: str, sequence_number: int, timestamp_ms: int) -> uuid.UUID:
    """ID de ticket determinístico a partir de la orden, la secuencia y el instante de emisión"""
    return uuid.uuid5(TICKET_NAMESPACE, f"{order_id}:{sequence_number}:{timestamp_ms}")


def sign(body: str, secret: Optional[str] = None) -> str:
    """HMAC-SHA256 del cuerpo del payload"""
    return hmac.new(
        _get_secret(secret).encode("utf-8"),
        f"ticket:{body}".encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def encode_payload(claims: dict, secret: Optional[str] = None) -> str:
    """
    Serializar claims a un payload firmado

    Formato: {base64url(json)}.{hmac_sha256_hex}
    """
    body = _b64encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{sign(body, secret)}"


def decode_payload(payload: str, secret: Optional[str] = None) -> dict:
    """
    Verificar firma y devolver los claims del payload

    Raises:
        InvalidCredential: formato inválido o firma que no coincide
    """
    if not payload or payload.count(".") != 1:
        raise InvalidCredential("Credencial con formato inválido")

    body, signature = payload.strip().split(".")
    if not hmac.compare_digest(signature.encode("utf-8"), sign(body, secret).encode("utf-8")):
        raise InvalidCredential("Firma de credencial inválida")

    try:
        claims = json.loads(_b64decode(body))
        claims["tid"] = str(uuid.UUID(claims["tid"]))
    except (binascii.Error, ValueError, KeyError, TypeError):
        raise InvalidCredential("Credencial con contenido inválido")

    if claims.get("v") != CREDENTIAL_VERSION:
        raise InvalidCredential(f"Versión de credencial no soportada: {claims.get('v')}")
    return claims


def render_qr_png(data: str) -> bytes:
    """
    Renderizar el payload como imagen QR (PNG)

    Raises:
        CredentialEncodingError: si la librería no puede codificar el payload
    """
    if not data:
        raise CredentialEncodingError("Payload vacío, no se puede generar QR")

    try:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        img_buffer = io.BytesIO()
        img.save(img_buffer, format="PNG")
        img_bytes = img_buffer.getvalue()
    except Exception as e:
        logger.error(f"Error generando QR code: {e}", exc_info=True)
        raise CredentialEncodingError(f"No se pudo codificar el QR: {e}") from e

    if not img_bytes:
        raise CredentialEncodingError("No se generaron bytes de la imagen QR")
    return img_bytes


def mint_credential(
    event_id: str,
    user_id: str,
    order_id: str,
    sequence_number: int,
    timestamp: datetime,
    secret: Optional[str] = None
) -> Credential:
    """
    Generar la credencial de un ticket

    La unicidad viene de (order_id, sequence_number) más el instante de
    emisión; el ticket_id va embebido en el payload para que la validación
    lo resuelva sin tabla intermedia.
    """
    issued_at_ms = int(timestamp.timestamp() * 1000)
    ticket_id = derive_ticket_id(str(order_id), sequence_number, issued_at_ms)

    claims = {
        "v": CREDENTIAL_VERSION,
        "tid": str(ticket_id),
        "eid": str(event_id),
        "uid": str(user_id),
        "oid": str(order_id),
        "seq": sequence_number,
        "iat": issued_at_ms,
    }
    payload = encode_payload(claims, secret)

    return Credential(
        ticket_id=ticket_id,
        payload=payload,
        image_png=render_qr_png(payload),
        event_id=str(event_id),
        user_id=str(user_id),
        order_id=str(order_id),
        sequence_number=sequence_number,
        issued_at_ms=issued_at_ms,
    )
