"""Sesiones de base de datos"""
from contextlib import asynccontextmanager
from typing import AsyncIterator
import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from shared.database.connection import get_db, build_async_url, DEFAULT_DATABASE_URL


@asynccontextmanager
async def session_scope(database_url: str = None) -> AsyncIterator[AsyncSession]:
    """
    Sesión fuera del ciclo request/response (tareas Celery, scripts)

    Cada tarea corre en su propio event loop, así que el engine es local a
    la sesión y se libera al salir. El pool global del API nunca se usa aquí.
    """
    database_url = build_async_url(database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))

    if database_url.startswith("postgresql"):
        engine = create_async_engine(database_url, pool_size=2, max_overflow=2)
    else:
        engine = create_async_engine(database_url, poolclass=NullPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
    finally:
        await engine.dispose()

__all__ = ["get_db", "session_scope"]
