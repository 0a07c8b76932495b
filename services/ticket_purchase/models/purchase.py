"""Modelos Pydantic para compra de tickets y listado de órdenes"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from shared.database.models import OrderStatus


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: UUID = Field(alias="eventId")
    ticket_type_id: Optional[UUID] = Field(default=None, alias="ticketTypeId")
    ticket_type: Optional[str] = Field(default=None, alias="ticketType")  # Nombre del tipo
    quantity: int = Field(default=1, ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)  # Override del precio unitario


class UserInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class PurchaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CartItem] = Field(min_length=1)
    user_info: Optional[UserInfo] = Field(default=None, alias="userInfo")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    total: Optional[Decimal] = None  # Informativo: el total real se calcula en el servidor


class TicketTypeSummary(BaseModel):
    id: str
    name: str
    price: float


class TicketResponse(BaseModel):
    id: str
    qr_code: str
    type: str
    price: float
    sequence_number: int
    event_id: str
    order_id: str
    ticket_type_id: Optional[str] = None
    ticket_type: Optional[TicketTypeSummary] = None
    issued_at: Optional[datetime] = None
    is_used: bool = False
    used_at: Optional[datetime] = None


class EventSummary(BaseModel):
    id: str
    title: str
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime


class OrderResponse(BaseModel):
    id: str
    event_id: str
    user_id: str
    total: float
    status: OrderStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    event: Optional[EventSummary] = None
    tickets: List[TicketResponse] = []
    delivery_status: Optional[str] = None  # sent, retry_scheduled, failed (solo en compras)


class FailedItem(BaseModel):
    index: int
    event_id: str
    error: str
    detail: str
    status_code: int


class PurchaseResponse(BaseModel):
    orders: List[OrderResponse]
    failed_items: List[FailedItem] = []
    partial_success: bool = False


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrdersListResponse(BaseModel):
    orders: List[OrderResponse]
    pagination: Pagination
