"""Real-time notifications for the dashboard via Redis pub/sub.

Every event is published on ``events:{store_id}`` as
``{"event": name, "room": conversation_id | null, "data": {...}}``; the
websocket gateway fans them out. Publishing is best effort.
"""

import logging
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis

from chatorder.models.conversation import Conversation
from chatorder.models.message import Message
from chatorder.models.order import Order
from chatorder.schemas.common import EventEnvelope

logger = logging.getLogger(__name__)

NEW_MESSAGE = "new-message"
CONVERSATION_UPDATED = "conversation-updated"
ORDER_CREATED = "order-created"


def channel_for(store_id: UUID) -> str:
    return f"events:{store_id}"


def serialize_message(message: Message) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "conversationId": str(message.conversation_id),
        "sender": message.sender.value,
        "text": message.text,
        "position": message.position,
        "timestamp": message.created_at.isoformat() if message.created_at else None,
    }


class NotificationService:
    """Publishes dashboard events. Never raises."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def publish(
        self,
        store_id: UUID,
        event: str,
        data: dict[str, Any],
        room: str | None = None,
    ) -> None:
        payload = EventEnvelope(event=event, room=room, data=data).model_dump_json()
        try:
            await self.redis.publish(channel_for(store_id), payload)
        except Exception:
            logger.exception("Failed to publish %s for store %s", event, store_id)

    async def new_message(self, store_id: UUID, message: Message) -> None:
        await self.publish(
            store_id,
            NEW_MESSAGE,
            {"message": serialize_message(message)},
            room=str(message.conversation_id),
        )

    async def conversation_updated(
        self,
        conversation: Conversation,
        last_message: str | None = None,
        **changes: Any,
    ) -> None:
        data: dict[str, Any] = {
            "conversationId": str(conversation.id),
            "lastMessage": last_message,
            "lastActivity": conversation.last_activity.isoformat() if conversation.last_activity else None,
        }
        data.update(changes)
        await self.publish(conversation.store_id, CONVERSATION_UPDATED, data)

    async def order_created(self, order: Order, customer_name: str) -> None:
        await self.publish(
            order.store_id,
            ORDER_CREATED,
            {
                "orderId": str(order.id),
                "customerName": customer_name,
                "totalAmount": order.total_amount,
                "storeId": str(order.store_id),
            },
        )
