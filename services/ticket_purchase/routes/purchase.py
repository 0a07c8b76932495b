"""Rutas de compra de tickets y consulta de órdenes"""
from fastapi import APIRouter, Depends, Query, status, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
import logging
from app.core.config import settings
from shared.database.session import get_db
from shared.database.models import OrderStatus
from shared.auth.dependencies import get_current_user
from shared.auth.user_sync import user_id_from_claims
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.models.purchase import (
    PurchaseRequest,
    PurchaseResponse,
    OrdersListResponse
)
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_purchase.services.orders_service import OrdersService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_purchase_service() -> PurchaseService:
    return PurchaseService()


@router.post("", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["purchase"])
async def create_purchase(
    request: Request,  # Necesario para rate limiter
    purchase_request: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user),
    service: PurchaseService = Depends(get_purchase_service)
):
    """
    Emitir tickets para cada ítem del carrito

    Responde 201 si al menos un ítem se emitió; los ítems rechazados van
    en failed_items con partial_success=true. Si todos fallan se responde
    con el status del primer fallo.
    """
    result = await service.create_orders(db, current_user, purchase_request)

    if not result["orders"]:
        first_failure = result["failed_items"][0]
        logger.info(
            f"Compra rechazada para usuario {current_user.get('user_id')}: "
            f"{len(result['failed_items'])} ítem(s) fallidos"
        )
        return JSONResponse(
            status_code=first_failure["status_code"],
            content={
                "error": first_failure["error"],
                "detail": first_failure["detail"],
                "failed_items": result["failed_items"],
            }
        )

    return PurchaseResponse(**result)


@router.get("", response_model=OrdersListResponse)
@limiter.limit(RATE_LIMITS["public"])
async def list_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.ORDERS_DEFAULT_PAGE_SIZE, ge=1, le=settings.ORDERS_MAX_PAGE_SIZE),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_user)
):
    """Órdenes del usuario autenticado, más recientes primero"""
    result = await OrdersService.list_orders(
        db,
        user_id=user_id_from_claims(current_user),
        status=status_filter,
        page=page,
        limit=limit
    )
    return OrdersListResponse(**result)
