"""Message ingress: one webhook entry -> stored messages, orders and replies.

Each messaging event is handled under the per-conversation mutex from the
moment the customer is resolved until the last reply is stored, so two
deliveries for the same conversation never interleave.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chatorder.core.config import settings
from chatorder.core.exceptions import LockNotAcquiredError
from chatorder.core.locks import LockService
from chatorder.core.logging_config import conversation_context
from chatorder.integrations.messenger.client import MessengerClient
from chatorder.integrations.qpay.client import QPayClient
from chatorder.models.conversation import Conversation, ConversationIntent, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order
from chatorder.models.store import Store
from chatorder.schemas.extraction import ExtractionResult, OrderingResult
from chatorder.schemas.messenger import MessagingEvent, MessengerEntry
from chatorder.services.catalog_service import CatalogService, match_catalog
from chatorder.services.conversation_service import ConversationService, conversation_lock_key
from chatorder.services.extraction_service import ExtractionService
from chatorder.services.notification_service import NotificationService
from chatorder.services.order_service import OrderService, payment_link_message, resolve_readiness
from chatorder.services.response_service import ResponseService

logger = logging.getLogger(__name__)

ATTACHMENT_REPLY = "📷 Зураг хүлээн авлаа! Захиалгын мэдээллээ текстээр илгээнэ үү."
ERROR_REPLY = "😔 Уучлаарай, алдаа гарлаа. Дахин оролдоно уу."
WELCOME_REPLY = "👋 Тавтай морил! Би {store_name}-ийн туслах бот байна."
UNKNOWN_POSTBACK_REPLY = "Тодорхойгүй команд байна."
UNKNOWN_ITEMS_REPLY = "Уучлаарай, {items} манай каталогт олдсонгүй."

GET_STARTED = "GET_STARTED"
CONFIRMATION_FIELD = "confirmation"


@dataclass
class IngestResult:
    """What happened to one webhook entry."""

    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    order_ids: list[UUID] = field(default_factory=list)


def mention_unknown_items(reply: str, unknown: list[str]) -> str:
    """Make sure the reply names every unmatched item."""
    lowered = reply.lower()
    if all(name.lower() in lowered for name in unknown):
        return reply
    items = ", ".join(f"«{name}»" for name in unknown)
    return f"{UNKNOWN_ITEMS_REPLY.format(items=items)}\n{reply}"


class MessageIngress:
    """Runs the conversational order pipeline for inbound Messenger events."""

    def __init__(
        self,
        db: AsyncSession,
        locks: LockService,
        notifier: NotificationService,
        extraction: ExtractionService | None = None,
        responder: ResponseService | None = None,
        payments: QPayClient | None = None,
        messenger_factory: Callable[[str], Any] = MessengerClient,
    ) -> None:
        self.db = db
        self.locks = locks
        self.notifier = notifier
        self.extraction = extraction or ExtractionService()
        self.responder = responder or ResponseService()
        self.messenger_factory = messenger_factory
        self.conversations = ConversationService(db)
        self.catalog = CatalogService(db)
        self.orders = OrderService(db, payments=payments, notifier=notifier)

    async def resolve_store(self, channel_id: str) -> Store | None:
        """Active store whose Facebook page or Instagram account is ``channel_id``."""
        result = await self.db.execute(
            select(Store).where(
                or_(
                    Store.facebook_page_id == channel_id,
                    Store.instagram_business_id == channel_id,
                ),
                Store.is_active.is_(True),
            )
        )
        return result.scalars().first()

    async def ingest(self, entry: MessengerEntry) -> IngestResult:
        """Handle every messaging event of one webhook entry.

        Events that fail are logged and answered with an apology; the
        remaining events still run.

        Raises:
            LockNotAcquiredError: If a conversation stays locked past the
                wait timeout, so the caller can retry the entry.
        """
        result = IngestResult()

        store = await self.resolve_store(entry.id)
        if store is None:
            logger.warning("No active store for channel id %s; dropping entry", entry.id)
            return result

        token = store.get_page_access_token()
        if not token:
            logger.error("Store %s has no page access token; dropping entry", store.id)
            return result

        messenger = self.messenger_factory(token)

        for event in entry.messaging:
            if event.message is not None and event.message.is_echo:
                continue

            # No open transaction while waiting for the lock; a snapshot
            # taken before it would predate the previous holder's writes
            await self.db.commit()

            sender_id = event.sender.id
            key = conversation_lock_key(store.id, sender_id)
            try:
                with conversation_context(key):
                    async with self.locks.hold(
                        key,
                        ttl_seconds=settings.conversation_lock_ttl,
                        wait_timeout=settings.conversation_lock_wait_seconds,
                    ):
                        await self._handle_event(store, messenger, event, result)
            except LockNotAcquiredError:
                logger.error("Conversation %s is busy; entry will be retried", key)
                raise
            except Exception:
                logger.exception("Failed to process event from %s for store %s", sender_id, store.id)
                result.failed += 1
                await self.db.rollback()
                # Rollback expires everything; reload the store for the next event
                await self.db.refresh(store)
                await self._send_apology(messenger, sender_id)

        return result

    async def _handle_event(
        self,
        store: Store,
        messenger: Any,
        event: MessagingEvent,
        result: IngestResult,
    ) -> None:
        sender_id = event.sender.id
        customer = await self.conversations.get_or_create_customer(
            sender_id, messenger.get_user_profile
        )
        conversation = await self.conversations.get_or_create_conversation(
            store.id, customer.id, sender_id
        )

        mid = event.message.mid if event.message is not None else None
        if mid and await self.conversations.has_external_message(conversation.id, mid):
            logger.info("Skipping redelivered message %s", mid)
            await self.db.commit()
            result.duplicates += 1
            return

        text, extra_data = self._describe_inbound(event)

        # Manual mode leaves status to the operator
        if conversation.status == ConversationStatus.CLOSED and not conversation.is_manual_mode:
            self.conversations.set_status(conversation, ConversationStatus.ACTIVE)

        inbound = await self.conversations.append_message(
            conversation,
            MessageSender.CUSTOMER,
            text,
            external_id=mid,
            extra_data=extra_data,
            customer=customer,
        )
        await self.db.commit()
        result.processed += 1

        await self.notifier.new_message(store.id, inbound)
        await self.notifier.conversation_updated(
            conversation, last_message=text, status=conversation.status.value
        )

        if conversation.is_manual_mode:
            logger.info("Conversation %s is in manual mode; not replying", conversation.id)
            return

        if event.message is not None and event.message.text:
            order = await self._process_text(store, messenger, customer, conversation, inbound)
            if order is not None:
                result.order_ids.append(order.id)
        elif event.message is not None and event.message.attachments:
            await self._reply(store, messenger, conversation, ATTACHMENT_REPLY)
        elif event.postback is not None:
            if event.postback.payload == GET_STARTED:
                reply = WELCOME_REPLY.format(store_name=store.name)
            else:
                reply = UNKNOWN_POSTBACK_REPLY
            await self._reply(store, messenger, conversation, reply)

    @staticmethod
    def _describe_inbound(event: MessagingEvent) -> tuple[str, dict[str, Any]]:
        if event.message is not None:
            if event.message.text:
                return event.message.text, {}
            attachments = [a.model_dump() for a in event.message.attachments]
            kinds = ", ".join(a.type for a in event.message.attachments) or "unknown"
            return f"[attachment: {kinds}]", {"attachments": attachments}
        if event.postback is not None:
            return event.postback.title or event.postback.payload, {
                "postback": event.postback.payload
            }
        return "", {}

    async def _process_text(
        self,
        store: Store,
        messenger: Any,
        customer: Customer,
        conversation: Conversation,
        inbound: Message,
    ) -> Order | None:
        """Extraction -> matching -> state transition -> order -> reply."""
        sender_id = conversation.channel_conversation_id
        await messenger.send_typing(sender_id, True)
        try:
            catalog = await self.catalog.snapshot(store.id)
            history = await self.conversations.recent_history(
                conversation.id, before_position=inbound.position
            )
            recent_orders = await self.conversations.recent_orders(store.id, customer.id)

            extraction = await self.extraction.extract(
                inbound.text,
                history,
                catalog,
                store,
                recent_orders,
                conversation.status,
            )
            conversation.intent = ConversationIntent(extraction.intent)

            order: Order | None = None
            unknown: list[str] = []
            reply_basis: ExtractionResult = extraction

            if isinstance(extraction, OrderingResult):
                match = match_catalog(extraction.items, catalog)
                readiness = resolve_readiness(extraction, match, store)
                reply_basis = extraction.model_copy(
                    update={
                        "is_order_ready": readiness.ready,
                        "missing_fields": readiness.missing_fields,
                    }
                )

                if match.unknown:
                    unknown = match.unknown
                    if conversation.status == ConversationStatus.ORDER_CREATED:
                        self.conversations.set_status(conversation, ConversationStatus.ACTIVE)
                    else:
                        self.conversations.set_status(
                            conversation, ConversationStatus.WAITING_FOR_INFO
                        )
                elif not readiness.ready:
                    self.conversations.set_status(conversation, ConversationStatus.WAITING_FOR_INFO)
                elif extraction.confidence > settings.order_confidence_threshold:
                    order = await self.orders.assemble(
                        store,
                        customer,
                        conversation,
                        reply_basis,
                        match.validated,
                        raw_message=inbound.text,
                    )
                else:
                    logger.info(
                        "Order ready but confidence %.2f is below threshold; asking to confirm",
                        extraction.confidence,
                    )
                    reply_basis = reply_basis.model_copy(
                        update={
                            "is_order_ready": False,
                            "missing_fields": [*reply_basis.missing_fields, CONFIRMATION_FIELD],
                        }
                    )
                    self.conversations.set_status(conversation, ConversationStatus.WAITING_FOR_INFO)

            if order is None:
                await self.db.commit()
                await self.notifier.conversation_updated(
                    conversation, last_message=inbound.text, status=conversation.status.value
                )

            reply = await self.responder.generate(
                reply_basis, inbound.text, store, order=order, unknown_items=unknown
            )
            if unknown:
                reply = mention_unknown_items(reply, unknown)
        finally:
            await messenger.send_typing(sender_id, False)

        await self._reply(store, messenger, conversation, reply)

        if order is not None:
            link = payment_link_message(order)
            if link:
                await self._reply(store, messenger, conversation, link)
        return order

    async def _reply(
        self,
        store: Store,
        messenger: Any,
        conversation: Conversation,
        text: str,
    ) -> Message:
        """Send a bot message, then store it and notify."""
        await messenger.send_message(conversation.channel_conversation_id, text)
        message = await self.conversations.append_message(conversation, MessageSender.BOT, text)
        await self.db.commit()

        await self.notifier.new_message(store.id, message)
        await self.notifier.conversation_updated(conversation, last_message=text)
        return message

    async def _send_apology(self, messenger: Any, recipient_id: str) -> None:
        try:
            await messenger.send_message(recipient_id, ERROR_REPLY)
        except Exception:
            logger.warning("Could not deliver error reply to %s", recipient_id)
