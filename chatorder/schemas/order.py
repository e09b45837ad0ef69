"""Order schemas: line items, payment collaborator results, admin API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from chatorder.models.order import OrderStatus, PaymentStatus
from chatorder.models.store import PaymentMethod
from chatorder.schemas.common import BaseSchema


class OrderLineItem(BaseSchema):
    """A validated line: the price is always the catalog price."""

    product_id: UUID | None = None
    name: str
    quantity: int
    price: int

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

    def to_order_item(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id) if self.product_id else None,
            "name": self.name,
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
        }


class InvoiceResult(BaseSchema):
    success: bool
    invoice_id: str | None = None
    qr_payload: str | None = None
    short_url: str | None = None
    error: str | None = None


class PaymentCheckResult(BaseSchema):
    paid: bool
    paid_amount: int | None = None


class OrderResponse(BaseSchema):
    id: UUID
    store_id: UUID
    customer_id: UUID
    conversation_id: UUID | None = None
    items: list[dict[str, Any]]
    phone_number: str
    address: str | None = None
    has_delivery: bool
    pickup_address: str | None = None
    status: OrderStatus
    total_amount: int
    payment_status: PaymentStatus
    payment_method: PaymentMethod | None = None
    invoice_id: str | None = None
    invoice_url: str | None = None
    paid_at: datetime | None = None
    ai_extraction: dict[str, Any] = Field(default_factory=dict)
    verified_at: datetime | None = None
    notes: str | None = None
    created_at: datetime


class OrderItemUpdate(BaseSchema):
    name: str
    quantity: int = Field(default=1, ge=1)


class OrderVerifyRequest(BaseSchema):
    """Admin corrections; items are re-priced from the catalog."""

    items: list[OrderItemUpdate] | None = None
    phone_number: str | None = None
    address: str | None = None
    status: OrderStatus | None = None
    notes: str | None = None


class PaymentCheckResponse(BaseSchema):
    order_id: UUID
    payment_status: PaymentStatus
    paid_at: datetime | None = None
