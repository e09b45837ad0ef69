"""Order model for orders assembled from conversations."""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.models.base import Base, JSONType
from chatorder.models.store import PaymentMethod

if TYPE_CHECKING:
    from chatorder.models.conversation import Conversation
    from chatorder.models.customer import Customer
    from chatorder.models.store import Store


class OrderStatus(str, enum.Enum):
    """Fulfilment status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    """Order model.

    ``items`` is an ordered list of
    ``{name, quantity, price, subtotal, product_id}``. Prices always come from
    the catalog. ``total_amount`` and every ``subtotal`` are recomputed right
    before each insert and update.
    """

    __tablename__ = "orders"

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
    )

    # Delivery
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_delivery: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=lambda x: [e.value for e in x]),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    total_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Payment
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=lambda x: [e.value for e in x]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        Enum(
            PaymentMethod,
            name="payment_method",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    invoice_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    invoice_qr: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # {raw_message, extracted_data, confidence, needs_review}
    ai_extraction: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    store: Mapped["Store"] = relationship(
        "Store",
        back_populates="orders",
    )
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="orders",
    )
    conversation: Mapped["Conversation | None"] = relationship(
        "Conversation",
        back_populates="orders",
    )

    @property
    def needs_review(self) -> bool:
        return bool((self.ai_extraction or {}).get("needs_review"))

    def recalculate_total(self) -> int:
        """Recompute every item subtotal and the order total from price x quantity."""
        items = []
        total = 0
        for item in self.items or []:
            price = int(item.get("price") or 0)
            quantity = int(item.get("quantity") or 0)
            subtotal = price * quantity
            total += subtotal
            items.append({**item, "price": price, "quantity": quantity, "subtotal": subtotal})

        # Reassign so the JSON column is marked dirty
        if items != self.items:
            self.items = items
        self.total_amount = total
        return total

    def __repr__(self) -> str:
        return f"<Order {self.id} ({self.status.value}, {self.total_amount})>"


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _recalculate_order_total(mapper: Any, connection: Any, target: Order) -> None:
    target.recalculate_total()
