"""Customer model for people messaging a store."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.models.base import Base

if TYPE_CHECKING:
    from chatorder.models.conversation import Conversation
    from chatorder.models.order import Order


class Customer(Base):
    """A Messenger/Instagram user.

    Customers are keyed by their channel user id (PSID/IGSID) and are not
    owned by a single store.
    """

    __tablename__ = "customers"

    channel_user_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), default="Unknown User", nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stats
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    conversations: Mapped[list["Conversation"]] = relationship(
        "Conversation",
        back_populates="customer",
    )
    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="customer",
    )

    def __repr__(self) -> str:
        return f"<Customer {self.channel_user_id} ({self.name})>"
