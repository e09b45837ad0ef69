"""Customer, conversation and message persistence.

``ConversationService`` calls are expected to run under the per-conversation
lock (see ``conversation_lock_key``) and never commit; callers commit and
only then emit notifications. ``ConversationAdminService`` wraps the
dashboard actions that take the lock themselves.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatorder.core.config import settings
from chatorder.core.database import upsert_insert
from chatorder.core.exceptions import ConfigurationError
from chatorder.core.locks import LockService
from chatorder.integrations.messenger.client import MessengerClient
from chatorder.models.base import utcnow
from chatorder.models.conversation import Conversation, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order
from chatorder.models.store import Store
from chatorder.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

HISTORY_TURNS = 5
RECENT_ORDERS = 3


def conversation_lock_key(store_id: uuid.UUID, channel_conversation_id: str) -> str:
    return f"conversation:{store_id}:{channel_conversation_id}"


class ConversationService:
    """Find-or-create and append operations for conversations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_or_create_customer(
        self,
        channel_user_id: str,
        fetch_profile: Callable[[str], Awaitable[dict[str, Any]]] | None = None,
    ) -> Customer:
        """Find a customer by channel id, creating it on first contact.

        The profile (display name) is fetched only when the customer is new.
        """
        customer = await self._get_customer(channel_user_id)
        if customer is not None:
            return customer

        name = "Unknown User"
        if fetch_profile is not None:
            profile = await fetch_profile(channel_user_id)
            name = profile.get("name") or name

        stmt = (
            upsert_insert(self.db, Customer)
            .values(id=uuid.uuid4(), channel_user_id=channel_user_id, name=name)
            .on_conflict_do_nothing(index_elements=["channel_user_id"])
        )
        await self.db.execute(stmt)

        customer = await self._get_customer(channel_user_id)
        if customer is None:
            raise RuntimeError(f"Customer {channel_user_id} vanished after insert")
        logger.info("Customer %s ready (%s)", channel_user_id, customer.name)
        return customer

    async def _get_customer(self, channel_user_id: str) -> Customer | None:
        result = await self.db.execute(
            select(Customer).where(Customer.channel_user_id == channel_user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_conversation(
        self,
        store_id: uuid.UUID,
        customer_id: uuid.UUID,
        channel_conversation_id: str,
    ) -> Conversation:
        """Atomic find-or-create on (store, channel conversation id)."""
        stmt = (
            upsert_insert(self.db, Conversation)
            .values(
                id=uuid.uuid4(),
                store_id=store_id,
                customer_id=customer_id,
                channel_conversation_id=channel_conversation_id,
            )
            .on_conflict_do_nothing(index_elements=["store_id", "channel_conversation_id"])
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(Conversation).where(
                Conversation.store_id == store_id,
                Conversation.channel_conversation_id == channel_conversation_id,
            )
        )
        return result.scalar_one()

    async def has_external_message(self, conversation_id: uuid.UUID, external_id: str) -> bool:
        """Whether a transport message id was already stored (redelivery)."""
        result = await self.db.execute(
            select(Message.id).where(
                Message.conversation_id == conversation_id,
                Message.external_id == external_id,
            )
        )
        return result.first() is not None

    async def append_message(
        self,
        conversation: Conversation,
        sender: MessageSender,
        text: str,
        external_id: str | None = None,
        extra_data: dict[str, Any] | None = None,
        customer: Customer | None = None,
    ) -> Message:
        """Append a message at the next position and bump activity counters."""
        result = await self.db.execute(
            select(func.coalesce(func.max(Message.position), 0)).where(
                Message.conversation_id == conversation.id
            )
        )
        position = int(result.scalar_one()) + 1

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender=sender,
            text=text,
            position=position,
            external_id=external_id,
            extra_data=extra_data or {},
            created_at=now,
        )
        self.db.add(message)

        conversation.message_count = position
        conversation.last_activity = now
        if customer is not None:
            customer.last_message_at = now

        await self.db.flush()
        return message

    async def recent_history(
        self,
        conversation_id: uuid.UUID,
        before_position: int | None = None,
        limit: int = HISTORY_TURNS,
    ) -> list[Message]:
        """The last ``limit`` messages, oldest first."""
        query = select(Message).where(Message.conversation_id == conversation_id)
        if before_position is not None:
            query = query.where(Message.position < before_position)
        result = await self.db.execute(query.order_by(Message.position.desc()).limit(limit))
        return list(reversed(result.scalars().all()))

    async def recent_orders(
        self,
        store_id: uuid.UUID,
        customer_id: uuid.UUID,
        limit: int = RECENT_ORDERS,
    ) -> list[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.store_id == store_id, Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    def set_status(self, conversation: Conversation, status: ConversationStatus) -> None:
        if conversation.status != status:
            logger.info(
                "Conversation %s: %s -> %s",
                conversation.id,
                conversation.status.value,
                status.value,
            )
        conversation.status = status

    def set_manual_mode(self, conversation: Conversation, enabled: bool) -> None:
        """Toggle manual mode; leaving it puts the conversation back to active."""
        conversation.is_manual_mode = enabled
        if not enabled:
            self.set_status(conversation, ConversationStatus.ACTIVE)


class ConversationAdminService:
    """Dashboard actions on a conversation.

    Each action takes the same per-conversation lock as ingress, commits, and
    then emits ``conversation-updated``.
    """

    def __init__(
        self,
        db: AsyncSession,
        locks: LockService,
        notifier: NotificationService,
        messenger_factory: Callable[[str], Any] = MessengerClient,
    ) -> None:
        self.db = db
        self.locks = locks
        self.notifier = notifier
        self.messenger_factory = messenger_factory
        self.conversations = ConversationService(db)

    def _lock(self, conversation: Conversation) -> Any:
        return self.locks.hold(
            conversation_lock_key(conversation.store_id, conversation.channel_conversation_id),
            ttl_seconds=settings.conversation_lock_ttl,
            wait_timeout=settings.conversation_lock_wait_seconds,
        )

    async def set_manual_mode(self, conversation: Conversation, enabled: bool) -> Conversation:
        async with self._lock(conversation):
            await self.db.refresh(conversation)
            self.conversations.set_manual_mode(conversation, enabled)
            await self.db.commit()

        await self.notifier.conversation_updated(
            conversation,
            isManualMode=conversation.is_manual_mode,
            status=conversation.status.value,
        )
        return conversation

    async def set_status(
        self,
        conversation: Conversation,
        status: ConversationStatus,
    ) -> Conversation:
        async with self._lock(conversation):
            await self.db.refresh(conversation)
            self.conversations.set_status(conversation, status)
            await self.db.commit()

        await self.notifier.conversation_updated(conversation, status=conversation.status.value)
        return conversation

    async def send_admin_message(
        self,
        store: Store,
        conversation: Conversation,
        text: str,
    ) -> Message:
        """Send a message as the page and record it as an admin message.

        Raises:
            ConfigurationError: If the store has no page access token.
        """
        token = store.get_page_access_token()
        if not token:
            raise ConfigurationError(f"Store {store.id} has no page access token")

        messenger = self.messenger_factory(token)
        async with self._lock(conversation):
            await self.db.refresh(conversation)
            await messenger.send_message(conversation.channel_conversation_id, text)
            message = await self.conversations.append_message(
                conversation, MessageSender.ADMIN, text
            )
            await self.db.commit()

        await self.notifier.new_message(store.id, message)
        await self.notifier.conversation_updated(conversation, last_message=text)
        return message
