"""Store model: one merchant page connected to Messenger/Instagram."""

import enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.core.encryption import decrypt_token
from chatorder.models.base import Base, JSONType

if TYPE_CHECKING:
    from chatorder.models.conversation import Conversation
    from chatorder.models.order import Order
    from chatorder.models.product import Product


class PaymentMethod(str, enum.Enum):
    """Payment methods a store accepts."""

    QPAY = "qpay"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class Store(Base):
    """Store model.

    A store is reachable through its Facebook page id or its Instagram
    business id; both resolve to the same row. Products, conversations and
    orders are all scoped to a store.
    """

    __tablename__ = "stores"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Channel identifiers
    facebook_page_id: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )
    instagram_business_id: Mapped[str | None] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )

    # Fernet-encrypted Graph API page token
    page_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Catalog spreadsheet
    google_sheet_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    column_mapping: Mapped[dict[str, str]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )
    sheet_headers: Mapped[list[str]] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
    )

    # Business rules
    has_delivery: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="payment_method", values_callable=lambda x: [e.value for e in x]),
        default=PaymentMethod.QPAY,
        nullable=False,
    )
    custom_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(8), default="MNT", nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Free-form settings (widget config, etc.)
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )

    # Relationships
    products: Mapped[list["Product"]] = relationship(
        "Product",
        back_populates="store",
        cascade="all, delete-orphan",
    )
    conversations: Mapped[list["Conversation"]] = relationship(
        "Conversation",
        back_populates="store",
        cascade="all, delete-orphan",
    )
    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="store",
        cascade="all, delete-orphan",
    )

    def get_page_access_token(self) -> str | None:
        """Return the decrypted page access token, if one is stored."""
        if not self.page_access_token:
            return None
        return decrypt_token(self.page_access_token)

    def __repr__(self) -> str:
        return f"<Store {self.name}>"
