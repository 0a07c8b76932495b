"""Fixtures compartidas: SQLite en archivo temporal, factories y usuarios de prueba"""
import os

# Antes de importar la app: sin Redis ni proveedor de email en tests
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("QR_SECRET", "test-qr-secret")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from shared.database.connection import Base
from shared.database.models import Event, TicketType, User, UserRole, SecurityOfficer


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'qrgate.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def no_redis():
    """El cache de credenciales es opcional; en tests siempre hace miss"""
    with patch("services.ticket_validation.services.ticket_service.cache_get", AsyncMock(return_value=None)), \
            patch("services.ticket_validation.services.ticket_service.cache_set", AsyncMock(return_value=None)):
        yield


def claims_for(user: User) -> dict:
    """Usuario autenticado tal como lo entrega get_current_user"""
    return {"user_id": str(user.id), "email": user.email, "name": user.name, "role": user.role}


async def make_user(db, role=UserRole.USER, email=None, name="Test User") -> User:
    user_id = uuid.uuid4()
    user = User(
        id=user_id,
        email=email or f"{user_id.hex[:8]}@example.com",
        name=name,
        role=role.value if isinstance(role, UserRole) else role,
    )
    db.add(user)
    await db.commit()
    return user


async def make_event(db, organizer, ticket_types=(("General", "10000", 10),), total_tickets=None,
                     title="Concierto de prueba") -> Event:
    start = datetime.now(timezone.utc) + timedelta(days=7)
    event = Event(
        organizer_id=organizer.id,
        title=title,
        location="Teatro Central",
        start_date=start,
        end_date=start + timedelta(hours=4),
        total_tickets=total_tickets if total_tickets is not None else sum(q for _, _, q in ticket_types),
        sold_tickets=0,
    )
    db.add(event)
    await db.flush()
    for position, (name, price, quantity) in enumerate(ticket_types):
        db.add(TicketType(
            event_id=event.id,
            name=name,
            price=Decimal(price),
            quantity=quantity,
            sold_count=0,
            position=position,
        ))
    await db.commit()
    return event


async def make_officer(db, user, event) -> SecurityOfficer:
    officer = SecurityOfficer(user_id=user.id, event_id=event.id)
    db.add(officer)
    await db.commit()
    return officer


@pytest.fixture
async def organizer(db):
    return await make_user(db, role=UserRole.ORGANIZER, name="Organizadora")


@pytest.fixture
async def buyer(db):
    return await make_user(db, name="Comprador")
