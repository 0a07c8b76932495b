"""Sincronizar el usuario autenticado con la tabla users"""
from typing import Dict
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from shared.database.models import User, UserRole
from shared.utils.exceptions import Unauthenticated

logger = logging.getLogger(__name__)


def user_id_from_claims(current_user: Dict) -> UUID:
    try:
        return UUID(str(current_user["user_id"]))
    except (KeyError, ValueError):
        raise Unauthenticated("Token inválido: user_id no es un UUID")


async def sync_user(db: AsyncSession, current_user: Dict) -> User:
    """
    Obtener (o crear) la fila User del usuario del token

    La identidad la emite el proveedor de auth externo; aquí solo se
    materializa para las foreign keys de órdenes, tickets y oficiales.
    No hace commit: la fila queda en la transacción de quien llama.
    """
    user_id = user_id_from_claims(current_user)

    user = await db.get(User, user_id)
    if user is not None:
        return user

    email = current_user.get("email") or f"{user_id}@users.invalid"
    # Email ya usado por otra identidad: no se puede materializar
    result = await db.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise Unauthenticated("El email del token pertenece a otro usuario")

    user = User(
        id=user_id,
        email=email,
        name=current_user.get("name"),
        role=current_user.get("role") or UserRole.USER.value,
    )
    db.add(user)
    await db.flush()
    logger.info(f"Usuario {user_id} creado desde claims del token")
    return user
