"""SQLAlchemy models."""

from chatorder.models.base import Base
from chatorder.models.conversation import Conversation, ConversationIntent, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order, OrderStatus, PaymentStatus
from chatorder.models.product import Product
from chatorder.models.store import PaymentMethod, Store

__all__ = [
    # Base
    "Base",
    # Store
    "Store",
    "PaymentMethod",
    # Catalog
    "Product",
    # Conversations
    "Customer",
    "Conversation",
    "ConversationStatus",
    "ConversationIntent",
    "Message",
    "MessageSender",
    # Orders
    "Order",
    "OrderStatus",
    "PaymentStatus",
]
