"""Handlers de excepciones para FastAPI"""
import logging
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.utils.exceptions import AppError

logger = logging.getLogger(__name__)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"App error en {request.url.path}: {exc.code}: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"App error en {request.url.path}: {exc.code}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Request inválido en {request.url.path}: {exc.errors()}")
    errors = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "detail": "Request inválido", "errors": errors},
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # El detalle interno queda en el log, nunca en la respuesta
    logger.error(f"Error inesperado en {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "unexpected_error", "detail": "Error interno del servidor"},
    )


EXCEPTION_HANDLERS = {
    AppError: app_error_handler,
    RequestValidationError: validation_error_handler,
    Exception: unexpected_error_handler,
}


def register_exception_handlers(app):
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
