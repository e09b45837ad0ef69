"""Message model for individual chat messages."""

import enum
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatorder.models.base import Base, JSONType

if TYPE_CHECKING:
    from chatorder.models.conversation import Conversation


class MessageSender(str, enum.Enum):
    """Who wrote the message."""

    CUSTOMER = "customer"
    BOT = "bot"
    ADMIN = "admin"


class Message(Base):
    """Message model.

    ``position`` is 1-based and strictly increasing within a conversation;
    it is the ordering key for history. ``external_id`` holds the transport
    message id (Messenger ``mid``) and is used to drop redeliveries.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "position"),
        UniqueConstraint("conversation_id", "external_id"),
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sender: Mapped[MessageSender] = mapped_column(
        Enum(MessageSender, name="message_sender", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Attachments, postback payloads, extraction summaries
    extra_data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(
        "Conversation",
        back_populates="messages",
    )

    def __repr__(self) -> str:
        return f"<Message {self.sender.value}: {self.text[:50]}...>"
