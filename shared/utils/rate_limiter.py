"""
Rate limiting usando slowapi + Redis
Compartido entre instancias de la API para compras y validaciones
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import os
import logging

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", REDIS_URL)
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_real_client_ip(request: Request) -> str:
    """
    Obtener IP real del cliente considerando proxies/load balancers.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # La primera IP es la del cliente
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """
    Identificador para rate limiting: IP + hash del token si está autenticado.
    Un scanner compartido detrás de la misma IP no bloquea a los demás oficiales.
    """
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.md5(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    headers_enabled=False,  # Deshabilitado para compatibilidad con response_model de FastAPI
    enabled=RATE_LIMIT_ENABLED,
)
logger.info(
    f"Rate limiter inicializado (enabled={RATE_LIMIT_ENABLED}, storage="
    f"{RATE_LIMIT_STORAGE_URI.split('@')[-1] if '@' in RATE_LIMIT_STORAGE_URI else RATE_LIMIT_STORAGE_URI})"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Handler para rate limit exceeded, mismo formato de error que AppError"""
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}, "
        f"Retry-After: {retry_after}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={"Retry-After": str(retry_after)},
    )


RATE_LIMITS = {
    # Emisión de tickets: restrictivo, cada ítem mueve inventario
    "purchase": "10/minute",

    # Validación en puerta: scanners leyendo de forma continua
    "validation": "120/minute",

    # Lecturas (órdenes, eventos, logs)
    "public": "60/minute",

    # Gestión de eventos y oficiales
    "admin": "120/minute",
}
