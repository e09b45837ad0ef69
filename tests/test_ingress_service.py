"""Tests for the message ingress pipeline.

Covers:
- The end-to-end order scenario (2 black shirts -> 90 000 order + invoice)
- Unknown items, incomplete orders and low-confidence orders
- Manual mode, redelivery dedupe and closed-conversation reopening
- Attachments, postbacks and echoes
- Store resolution, error apologies and busy-lock retries
- Serialized handling of concurrent deliveries for one conversation
"""

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import fakeredis.aioredis
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatorder.core.exceptions import LockNotAcquiredError
from chatorder.core.locks import LOCK_PREFIX, LockService
from chatorder.models.conversation import Conversation, ConversationIntent, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order
from chatorder.models.product import Product
from chatorder.models.store import PaymentMethod, Store
from chatorder.services.conversation_service import conversation_lock_key
from chatorder.services.extraction_service import ExtractionService
from chatorder.services.ingress_service import (
    ATTACHMENT_REPLY,
    ERROR_REPLY,
    UNKNOWN_POSTBACK_REPLY,
    MessageIngress,
    mention_unknown_items,
)
from chatorder.services.notification_service import NotificationService
from chatorder.services.response_service import ResponseService
from tests.conftest import FakeLLM, FakeMessenger, FakeQPay, messenger_entry, oracle_json

SENDER = "psid-customer-1"
ORDER_TEXT = "2 ширхэг хар цамц авъя. Утас: 99112233. БЗД 14-р хороо"
REPLY = "Баярлалаа! Таны захиалга бүртгэгдлээ."


class Pipeline:
    """A MessageIngress wired to fakes, with handles to inspect them."""

    def __init__(
        self,
        db: AsyncSession,
        redis: fakeredis.aioredis.FakeRedis,
        extraction: str,
        reply: str = REPLY,
    ) -> None:
        self.oracle = FakeLLM(extraction)
        self.responder = FakeLLM(reply)
        self.messenger = FakeMessenger()
        self.qpay = FakeQPay()
        self.ingress = MessageIngress(
            db,
            LockService(redis),
            NotificationService(redis),
            extraction=ExtractionService(llm=self.oracle),
            responder=ResponseService(llm=self.responder),
            payments=self.qpay,
            messenger_factory=lambda _token: self.messenger,
        )


@pytest.fixture
def make_pipeline(
    db_session: AsyncSession,
    fake_redis: fakeredis.aioredis.FakeRedis,
) -> Callable[..., Pipeline]:
    def _make(extraction: str = oracle_json("browsing"), reply: str = REPLY) -> Pipeline:
        return Pipeline(db_session, fake_redis, extraction, reply)

    return _make


async def _conversation(db: AsyncSession, store: Store) -> Conversation:
    result = await db.execute(
        select(Conversation).where(
            Conversation.store_id == store.id,
            Conversation.channel_conversation_id == SENDER,
        )
    )
    return result.scalar_one()


async def _messages(db: AsyncSession, conversation: Conversation) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.position)
    )
    return list(result.scalars().all())


async def _order_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Order))).scalar_one()


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    """Text messages that carry order data."""

    async def test_complete_order_is_created_and_invoiced(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline(
            oracle_json(
                items=[{"name": "хар цамц", "quantity": 2}],
                phone="99112233",
                full_address="БЗД 14-р хороо",
                ready=True,
                confidence=0.95,
            )
        )

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text=ORDER_TEXT, mid="mid.order")
        )

        assert result.processed == 1
        assert result.failed == 0
        assert len(result.order_ids) == 1

        order = await db_session.get(Order, result.order_ids[0])
        assert order is not None
        assert order.total_amount == 90000
        assert order.items[0]["product_id"] == str(catalog[0].id)
        assert order.payment_method == PaymentMethod.QPAY
        assert order.invoice_id == "INV-001"
        assert order.phone_number == "99112233"
        assert order.address == "БЗД 14-р хороо"

        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.ORDER_CREATED
        assert conversation.intent == ConversationIntent.ORDERING

        assert pipeline.messenger.texts[0] == REPLY
        assert "https://qpay.mn/s/INV-001" in pipeline.messenger.texts[1]
        assert pipeline.messenger.typing == [True, False]
        assert pipeline.messenger.profile_requests == [SENDER]

        messages = await _messages(db_session, conversation)
        assert [(m.position, m.sender) for m in messages] == [
            (1, MessageSender.CUSTOMER),
            (2, MessageSender.BOT),
            (3, MessageSender.BOT),
        ]
        assert messages[0].external_id == "mid.order"
        assert messages[0].text == ORDER_TEXT
        assert conversation.message_count == 3

    async def test_unknown_item_creates_no_order(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],  # noqa: ARG002
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline(
            oracle_json(
                items=[{"name": "гутал", "quantity": 1}],
                phone="99112233",
                full_address="БЗД 14-р хороо",
                ready=True,
            ),
            reply="Өөр бараа сонирхох уу?",
        )

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="гутал авъя")
        )

        assert result.order_ids == []
        assert await _order_count(db_session) == 0
        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.WAITING_FOR_INFO
        assert "гутал" in pipeline.messenger.texts[0]
        assert "гутал" in pipeline.responder.calls[0][0].content
        assert pipeline.qpay.invoiced == []

    async def test_unknown_item_after_order_goes_back_to_active(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],  # noqa: ARG002
        customer_factory: Callable[..., Any],
        conversation_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        customer = await customer_factory(channel_user_id=SENDER)
        await conversation_factory(
            store_id=store.id, customer=customer, status=ConversationStatus.ORDER_CREATED
        )
        pipeline = make_pipeline(oracle_json(items=[{"name": "гутал"}], phone="99112233"))

        await pipeline.ingress.ingest(messenger_entry(store.facebook_page_id, SENDER, text="гутал?"))

        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.ACTIVE

    async def test_missing_phone_waits_for_info(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],  # noqa: ARG002
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline(
            oracle_json(
                items=[{"name": "хар цамц", "quantity": 2}],
                full_address="БЗД 14-р хороо",
                ready=True,
            )
        )

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="2 хар цамц")
        )

        assert result.order_ids == []
        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.WAITING_FOR_INFO
        assert "phone" in pipeline.responder.calls[0][0].content

    async def test_low_confidence_asks_for_confirmation(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],  # noqa: ARG002
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline(
            oracle_json(
                items=[{"name": "хар цамц", "quantity": 2}],
                phone="99112233",
                full_address="БЗД 14-р хороо",
                ready=True,
                confidence=0.5,
            )
        )

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text=ORDER_TEXT)
        )

        assert result.order_ids == []
        assert await _order_count(db_session) == 0
        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.WAITING_FOR_INFO
        assert "confirmation" in pipeline.responder.calls[0][0].content

    async def test_history_excludes_the_current_message(
        self,
        store: Store,
        customer_factory: Callable[..., Any],
        conversation_factory: Callable[..., Any],
        message_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        customer = await customer_factory(channel_user_id=SENDER)
        conversation = await conversation_factory(store_id=store.id, customer=customer)
        await message_factory(conversation_id=conversation.id, position=1, text="Өмнөх асуулт")
        pipeline = make_pipeline()

        await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="Шинэ мессеж")
        )

        user_prompt = pipeline.oracle.calls[0][1].content
        assert "Хэрэглэгч: Өмнөх асуулт" in user_prompt
        assert "Хэрэглэгч: Шинэ мессеж" not in user_prompt


# ---------------------------------------------------------------------------
# Conversation state
# ---------------------------------------------------------------------------


class TestConversationState:
    """Manual mode, redelivery and reopening."""

    async def test_manual_mode_stores_without_replying(
        self,
        db_session: AsyncSession,
        store: Store,
        customer_factory: Callable[..., Any],
        conversation_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        customer = await customer_factory(channel_user_id=SENDER)
        await conversation_factory(
            store_id=store.id,
            customer=customer,
            status=ConversationStatus.WAITING_FOR_INFO,
            is_manual_mode=True,
        )
        pipeline = make_pipeline(oracle_json(items=[{"name": "хар цамц"}], ready=True))

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text=ORDER_TEXT)
        )

        assert result.processed == 1
        assert pipeline.oracle.calls == []
        assert pipeline.messenger.sent == []
        assert pipeline.messenger.profile_requests == []

        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.WAITING_FOR_INFO
        messages = await _messages(db_session, conversation)
        assert [m.text for m in messages] == [ORDER_TEXT]

    async def test_redelivered_message_is_skipped(
        self,
        db_session: AsyncSession,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()
        entry = messenger_entry(store.facebook_page_id, SENDER, text="Сайн уу", mid="mid.same")

        first = await pipeline.ingress.ingest(entry)
        second = await pipeline.ingress.ingest(entry)

        assert first.processed == 1
        assert second.processed == 0
        assert second.duplicates == 1
        assert len(pipeline.oracle.calls) == 1
        assert len(pipeline.messenger.sent) == 1

        conversation = await _conversation(db_session, store)
        assert len(await _messages(db_session, conversation)) == 2

    async def test_closed_conversation_is_reopened(
        self,
        db_session: AsyncSession,
        store: Store,
        customer_factory: Callable[..., Any],
        conversation_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        customer = await customer_factory(channel_user_id=SENDER)
        await conversation_factory(
            store_id=store.id, customer=customer, status=ConversationStatus.CLOSED
        )
        pipeline = make_pipeline(oracle_json("browsing"))

        await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="Юу байгаа вэ?")
        )

        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.ACTIVE
        assert conversation.intent == ConversationIntent.BROWSING
        assert "ЯРИЛЦЛАГЫН ТӨЛӨВ: active" in pipeline.oracle.calls[0][0].content

    async def test_closed_manual_conversation_stays_closed(
        self,
        db_session: AsyncSession,
        store: Store,
        customer_factory: Callable[..., Any],
        conversation_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        customer = await customer_factory(channel_user_id=SENDER)
        await conversation_factory(
            store_id=store.id,
            customer=customer,
            status=ConversationStatus.CLOSED,
            is_manual_mode=True,
        )
        pipeline = make_pipeline(oracle_json("browsing"))

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="Юу байгаа вэ?")
        )

        assert result.processed == 1
        assert pipeline.oracle.calls == []
        assert pipeline.messenger.sent == []
        conversation = await _conversation(db_session, store)
        assert conversation.status == ConversationStatus.CLOSED
        assert [m.text for m in await _messages(db_session, conversation)] == ["Юу байгаа вэ?"]


# ---------------------------------------------------------------------------
# Non-text events
# ---------------------------------------------------------------------------


class TestNonTextEvents:
    """Attachments, postbacks and echoes."""

    async def test_attachment_gets_fixed_reply(
        self,
        db_session: AsyncSession,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()

        await pipeline.ingress.ingest(
            messenger_entry(
                store.facebook_page_id,
                SENDER,
                attachments=[{"type": "image", "payload": {"url": "https://cdn.example/1.jpg"}}],
            )
        )

        assert pipeline.oracle.calls == []
        assert pipeline.messenger.texts == [ATTACHMENT_REPLY]
        conversation = await _conversation(db_session, store)
        messages = await _messages(db_session, conversation)
        assert messages[0].text == "[attachment: image]"
        assert messages[0].extra_data["attachments"][0]["type"] == "image"

    async def test_get_started_postback_welcomes(
        self,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()

        await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, postback="GET_STARTED")
        )

        assert len(pipeline.messenger.texts) == 1
        assert store.name in pipeline.messenger.texts[0]
        assert pipeline.oracle.calls == []

    async def test_unknown_postback(
        self,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()

        await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, postback="SOMETHING_ELSE")
        )

        assert pipeline.messenger.texts == [UNKNOWN_POSTBACK_REPLY]

    async def test_echo_is_ignored(
        self,
        db_session: AsyncSession,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="page reply", is_echo=True)
        )

        assert result.processed == 0
        assert pipeline.messenger.sent == []
        count = (await db_session.execute(select(func.count()).select_from(Message))).scalar_one()
        assert count == 0


# ---------------------------------------------------------------------------
# Routing and failures
# ---------------------------------------------------------------------------


class TestRoutingAndFailures:
    async def test_unknown_channel_is_dropped(
        self,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()

        result = await pipeline.ingress.ingest(messenger_entry("unknown-page", SENDER, text="hi"))

        assert result.processed == 0
        assert pipeline.messenger.sent == []

    async def test_inactive_store_is_dropped(
        self,
        store_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        store = await store_factory(is_active=False)
        pipeline = make_pipeline()

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="hi")
        )

        assert result.processed == 0

    async def test_instagram_account_resolves_store(
        self,
        store_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        store = await store_factory(instagram_business_id="ig-1784")
        pipeline = make_pipeline()

        result = await pipeline.ingress.ingest(messenger_entry("ig-1784", SENDER, text="hi"))

        assert result.processed == 1
        assert (await pipeline.ingress.resolve_store("ig-1784")).id == store.id

    async def test_store_without_token_is_dropped(
        self,
        store_factory: Callable[..., Any],
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        store = await store_factory(page_access_token=None)
        pipeline = make_pipeline()

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="hi")
        )

        assert result.processed == 0
        assert pipeline.messenger.sent == []

    async def test_failure_sends_apology_and_keeps_inbound(
        self,
        db_session: AsyncSession,
        store: Store,
        make_pipeline: Callable[..., Pipeline],
    ) -> None:
        pipeline = make_pipeline()
        pipeline.ingress.catalog.snapshot = AsyncMock(side_effect=RuntimeError("db gone"))

        result = await pipeline.ingress.ingest(
            messenger_entry(store.facebook_page_id, SENDER, text="hi")
        )

        assert result.failed == 1
        assert pipeline.messenger.texts == [ERROR_REPLY]
        assert pipeline.messenger.typing == [True, False]
        conversation = await _conversation(db_session, store)
        assert [m.text for m in await _messages(db_session, conversation)] == ["hi"]

    async def test_busy_conversation_raises_for_retry(
        self,
        store: Store,
        fake_redis: fakeredis.aioredis.FakeRedis,
        make_pipeline: Callable[..., Pipeline],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("chatorder.core.config.settings.conversation_lock_wait_seconds", 0.1)
        key = conversation_lock_key(store.id, SENDER)
        await fake_redis.set(f"{LOCK_PREFIX}{key}", "someone-else", px=60_000)
        pipeline = make_pipeline()

        with pytest.raises(LockNotAcquiredError):
            await pipeline.ingress.ingest(messenger_entry(store.facebook_page_id, SENDER, text="hi"))

        assert pipeline.messenger.sent == []


# ---------------------------------------------------------------------------
# Concurrent deliveries
# ---------------------------------------------------------------------------


class TestConcurrentDeliveries:
    """Two workers handling events for one conversation at the same time."""

    async def test_events_for_one_conversation_are_serialized(
        self,
        db_session: AsyncSession,
        store: Store,
        catalog: list[Product],
        session_factory: async_sessionmaker[AsyncSession],
        fake_redis: fakeredis.aioredis.FakeRedis,
    ) -> None:
        order_extraction = oracle_json(
            items=[{"name": "хар цамц", "quantity": 2}],
            phone="99112233",
            full_address="БЗД 14-р хороо",
            ready=True,
            confidence=0.95,
        )
        async with session_factory() as first_db, session_factory() as second_db:
            ordering = Pipeline(first_db, fake_redis, order_extraction)
            thanking = Pipeline(second_db, fake_redis, oracle_json("browsing"))

            results = await asyncio.gather(
                ordering.ingress.ingest(
                    messenger_entry(store.facebook_page_id, SENDER, text=ORDER_TEXT, mid="mid.a")
                ),
                thanking.ingress.ingest(
                    messenger_entry(store.facebook_page_id, SENDER, text="Баярлалаа", mid="mid.b")
                ),
            )

        assert [r.failed for r in results] == [0, 0]
        assert [r.processed for r in results] == [1, 1]
        assert await _order_count(db_session) == 1

        conversation = await _conversation(db_session, store)
        messages = await _messages(db_session, conversation)
        assert [m.position for m in messages] == [1, 2, 3, 4, 5]

        # Each inbound message is answered before the next one is stored
        order_turn = [MessageSender.CUSTOMER, MessageSender.BOT, MessageSender.BOT]
        thanks_turn = [MessageSender.CUSTOMER, MessageSender.BOT]
        senders = [m.sender for m in messages]
        if messages[0].text == ORDER_TEXT:
            assert senders == order_turn + thanks_turn
            assert messages[3].text == "Баярлалаа"
        else:
            assert senders == thanks_turn + order_turn
            assert messages[2].text == ORDER_TEXT

        customers = (
            await db_session.execute(
                select(func.count()).select_from(Customer).where(Customer.channel_user_id == SENDER)
            )
        ).scalar_one()
        assert customers == 1


class TestMentionUnknownItems:
    def test_reply_already_names_items(self) -> None:
        reply = "Гутал одоогоор алга."
        assert mention_unknown_items(reply, ["гутал"]) == reply

    def test_prepends_missing_names(self) -> None:
        reply = mention_unknown_items("Өөр юу сонирхох вэ?", ["гутал", "малгай"])

        assert "«гутал»" in reply
        assert "«малгай»" in reply
        assert reply.endswith("Өөр юу сонирхох вэ?")
