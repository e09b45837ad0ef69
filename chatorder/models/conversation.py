"""Conversation model for Messenger threads."""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.models.base import Base, JSONType, utcnow

if TYPE_CHECKING:
    from chatorder.models.customer import Customer
    from chatorder.models.message import Message
    from chatorder.models.order import Order
    from chatorder.models.store import Store


class ConversationStatus(str, enum.Enum):
    """Conversation status."""

    ACTIVE = "active"
    WAITING_FOR_INFO = "waiting_for_info"
    ORDER_CREATED = "order_created"
    CLOSED = "closed"


class ConversationIntent(str, enum.Enum):
    """Last intent detected for the conversation."""

    BROWSING = "browsing"
    INQUIRY = "inquiry"
    ORDERING = "ordering"
    ORDER_STATUS = "order_status"


class Conversation(Base):
    """Conversation model.

    One conversation per (store, channel conversation id). Conversations are
    never deleted; they are archived by moving to ``closed``.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("store_id", "channel_conversation_id"),
    )

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

    # Sender PSID for Messenger threads
    channel_conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[ConversationStatus] = mapped_column(
        Enum(
            ConversationStatus,
            name="conversation_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ConversationStatus.ACTIVE,
        nullable=False,
    )
    intent: Mapped[ConversationIntent | None] = mapped_column(
        Enum(
            ConversationIntent,
            name="conversation_intent",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    is_manual_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    extra_data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )

    # Relationships
    store: Mapped["Store"] = relationship(
        "Store",
        back_populates="conversations",
    )
    customer: Mapped["Customer"] = relationship(
        "Customer",
        back_populates="conversations",
    )
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.position",
    )
    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="conversation",
    )

    def __repr__(self) -> str:
        return f"<Conversation {self.id} ({self.status.value})>"
