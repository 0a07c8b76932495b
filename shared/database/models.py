"""Modelos SQLAlchemy del core de emisión y validación de tickets"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text,
    CheckConstraint, UniqueConstraint, Index, event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
from enum import Enum
import uuid
from shared.database.connection import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalizar datetimes leídos de la BD (SQLite los devuelve naive)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserRole(str, Enum):
    USER = "user"
    ORGANIZER = "organizer"
    ADMIN = "admin"
    SECURITY = "security"


class EventStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class VerificationAction(str, Enum):
    SCANNED = "SCANNED"
    MARKED_USED = "MARKED_USED"
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class VerificationOutcome(str, Enum):
    ACCEPTED = "ACCEPTED"
    DENIED = "DENIED"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    # Nota: no hay password_hash - la autenticación es un colaborador externo
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, server_default=UserRole.USER.value)  # user, organizer, admin, security
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    # Relaciones
    orders = relationship("Order", back_populates="user")
    events = relationship("Event", back_populates="organizer")


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("sold_tickets >= 0", name="ck_events_sold_tickets_non_negative"),
        CheckConstraint("sold_tickets <= total_tickets", name="ck_events_sold_tickets_capacity"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organizer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    total_tickets = Column(Integer, nullable=False, server_default="0")
    sold_tickets = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(String, nullable=False, default=EventStatus.UPCOMING.value, server_default=EventStatus.UPCOMING.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    # Relaciones
    organizer = relationship("User", back_populates="events")
    ticket_types = relationship(
        "TicketType", back_populates="event", cascade="all, delete-orphan",
        order_by="TicketType.position"
    )
    tickets = relationship("Ticket", back_populates="event")
    orders = relationship("Order", back_populates="event")
    security_officers = relationship("SecurityOfficer", back_populates="event", cascade="all, delete-orphan")


class TicketType(Base):
    __tablename__ = "ticket_types"
    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_types_event_name"),
        CheckConstraint("sold_count >= 0", name="ck_ticket_types_sold_count_non_negative"),
        CheckConstraint("sold_count <= quantity", name="ck_ticket_types_sold_count_capacity"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    sold_count = Column(Integer, nullable=False, default=0, server_default="0")
    position = Column(Integer, nullable=False, default=0, server_default="0")  # Orden de creación ("primer tipo")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="ticket_types")
    tickets = relationship("Ticket", back_populates="ticket_type")

    @property
    def available(self) -> int:
        return self.quantity - self.sold_count


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    total = Column(Numeric(12, 2), nullable=False, server_default="0")
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value, server_default=OrderStatus.PENDING.value)
    payment_method = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    # Relaciones
    user = relationship("User", back_populates="orders")
    event = relationship("Event", back_populates="orders")
    tickets = relationship("Ticket", back_populates="order", order_by="Ticket.sequence_number")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("order_id", "sequence_number", name="uq_tickets_order_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True)  # Derivado del credential, no aleatorio
    qr_code = Column(Text, unique=True, nullable=False)
    type = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    ticket_type_id = Column(UUID(as_uuid=True), ForeignKey("ticket_types.id"), nullable=True)
    sequence_number = Column(Integer, nullable=False)
    issued_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    # Flag legacy: informativo, el estado real de ingreso/salida vive en verification_logs
    is_used = Column(Boolean, nullable=False, default=False, server_default="false")
    used_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    event = relationship("Event", back_populates="tickets")
    order = relationship("Order", back_populates="tickets")
    ticket_type = relationship("TicketType", back_populates="tickets")
    verification_logs = relationship("VerificationLog", back_populates="ticket")


class SecurityOfficer(Base):
    __tablename__ = "security_officers"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_security_officers_user_event"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    assigned_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    # Relaciones
    user = relationship("User", foreign_keys=[user_id])
    event = relationship("Event", back_populates="security_officers")


class VerificationLog(Base):
    """
    Registro append-only de acciones de verificación

    Nunca se actualiza ni se elimina: las correcciones se hacen con una
    nueva entrada compensatoria.
    """
    __tablename__ = "verification_logs"
    __table_args__ = (
        Index("ix_verification_logs_ticket_created", "ticket_id", "created_at"),
        Index("ix_verification_logs_event_created", "event_id", "created_at"),
        Index("ix_verification_logs_officer_created", "officer_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ticket_id = Column(UUID(as_uuid=True), ForeignKey("tickets.id"), nullable=False)
    officer_id = Column(UUID(as_uuid=True), ForeignKey("security_officers.id"), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    action = Column(String, nullable=False)  # SCANNED, MARKED_USED, ENTRY, EXIT
    outcome = Column(String, nullable=False, default=VerificationOutcome.ACCEPTED.value,
                     server_default=VerificationOutcome.ACCEPTED.value)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relaciones
    ticket = relationship("Ticket", back_populates="verification_logs")
    officer = relationship("SecurityOfficer")


class InventoryLog(Base):
    """Movimientos del ledger de inventario (trazabilidad de sold_count)"""
    __tablename__ = "inventory_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ticket_type_id = Column(UUID(as_uuid=True), ForeignKey("ticket_types.id"), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id"), nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=True)
    caused_by_user = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)  # Usuario que causó el cambio
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class AppendOnlyViolation(Exception):
    """Intento de modificar o eliminar una fila de un registro append-only"""


@event.listens_for(VerificationLog, "before_update")
def _reject_verification_log_update(mapper, connection, target):
    raise AppendOnlyViolation(f"verification_logs es append-only (update de {target.id})")


@event.listens_for(VerificationLog, "before_delete")
def _reject_verification_log_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"verification_logs es append-only (delete de {target.id})")
