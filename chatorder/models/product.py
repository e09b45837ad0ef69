"""Product model for catalog rows synced from Google Sheets."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.models.base import Base, JSONType

if TYPE_CHECKING:
    from chatorder.models.store import Store


class Product(Base):
    """Product model.

    Identity is (store, name, category). Rows are created, updated and
    deactivated by the catalog sync; stock is also decremented when an order
    is approved.
    """

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("store_id", "name", "category"),
    )

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    # Whole tögrög
    price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Sheet columns not claimed by the mapping (color, size, ...)
    attributes: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )

    synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    store: Mapped["Store"] = relationship(
        "Store",
        back_populates="products",
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.price})>"
