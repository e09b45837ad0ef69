"""Pytest configuration and fixtures for the ChatOrder API test suite.

Provides:
- A fresh SQLite (aiosqlite) database per test, created from Base.metadata
- Mock authentication (JWT bypass)
- Mock Redis (fakeredis) for locks and notifications
- Disabled rate limiting
- Model factory fixtures for Store, Product, Customer, Conversation, Message
  and Order
- Fakes for the Messenger client, the LLM, QPay and Google Sheets
"""

import json
import uuid
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any
from uuid import UUID

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from langchain_core.messages import AIMessage
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatorder.core.auth import get_current_user
from chatorder.core.deps import get_db, get_redis
from chatorder.core.encryption import encrypt_token
from chatorder.core.locks import LockService
from chatorder.core.rate_limit import limiter
from chatorder.main import app
from chatorder.models.base import Base
from chatorder.models.conversation import Conversation, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order, OrderStatus, PaymentStatus
from chatorder.models.product import Product
from chatorder.models.store import Store
from chatorder.schemas.messenger import MessengerEntry
from chatorder.schemas.order import InvoiceResult, PaymentCheckResult
from chatorder.schemas.sync import SheetRow, SheetSnapshot
from chatorder.services.notification_service import NotificationService

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TEST_USER_ID = "test-user-id"
TEST_USER_EMAIL = "admin@example.com"
TEST_PAGE_TOKEN = "test-page-access-token"
TEST_APP_SECRET = "test-facebook-app-secret"
TEST_VERIFY_TOKEN = "test-verify-token"
TEST_SECRET_KEY = "test-secret-key-for-dashboard-jwts"

# ---------------------------------------------------------------------------
# Disable rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False


@pytest.fixture(autouse=True)
def set_test_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Consistent webhook and auth secrets for every test."""
    monkeypatch.setattr("chatorder.core.config.settings.facebook_app_secret", TEST_APP_SECRET)
    monkeypatch.setattr("chatorder.core.config.settings.facebook_verify_token", TEST_VERIFY_TOKEN)
    monkeypatch.setattr("chatorder.core.config.settings.secret_key", TEST_SECRET_KEY)
    monkeypatch.setattr("chatorder.core.config.settings.google_service_account_email", "")
    monkeypatch.setattr("chatorder.core.config.settings.google_private_key", "")


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a throwaway SQLite file.

    pysqlite's own transaction handling is switched off so SAVEPOINT (used by
    the catalog reconciler) behaves as on PostgreSQL. WAL lets the API's
    sessions write while a test session holds a read transaction.

    Factories commit without refreshing (every column has a Python-side
    default), so setup leaves no transaction open.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for test setup (factories) and for services under test."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Fake Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Provide a fresh fakeredis instance per test."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def locks(fake_redis: fakeredis.aioredis.FakeRedis) -> LockService:
    return LockService(fake_redis)


@pytest.fixture
def notifier(fake_redis: fakeredis.aioredis.FakeRedis) -> NotificationService:
    return NotificationService(fake_redis)


# ---------------------------------------------------------------------------
# Auth mock
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_user() -> dict[str, Any]:
    """Return the default authenticated test user payload (mimics decoded JWT)."""
    return {"sub": TEST_USER_ID, "email": TEST_USER_EMAIL}


# ---------------------------------------------------------------------------
# Authenticated client (overrides DB, Redis, Auth)
# ---------------------------------------------------------------------------


def _override_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[], AsyncGenerator[AsyncSession, None]]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            yield s

    return _override_session


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
    auth_user: dict[str, Any],
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated async test client with all dependencies overridden."""

    async def _override_user() -> dict[str, Any]:
        return auth_user

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = _override_db(session_factory)
    app.dependency_overrides[get_current_user] = _override_user
    app.dependency_overrides[get_redis] = _override_redis

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def unauthed_client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated async test client. Auth is NOT overridden."""

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = _override_db(session_factory)
    app.dependency_overrides[get_redis] = _override_redis

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Model Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def store_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Store instances in the test database."""

    async def _create(
        *,
        name: str = "Test Store",
        facebook_page_id: str | None = None,
        instagram_business_id: str | None = None,
        page_access_token: str | None = TEST_PAGE_TOKEN,
        google_sheet_id: str | None = "sheet-123",
        column_mapping: dict[str, str] | None = None,
        has_delivery: bool = True,
        pickup_address: str | None = None,
        custom_instructions: str | None = None,
        is_active: bool = True,
    ) -> Store:
        store = Store(
            name=name,
            facebook_page_id=facebook_page_id or f"page-{uuid.uuid4().hex[:10]}",
            instagram_business_id=instagram_business_id,
            page_access_token=encrypt_token(page_access_token) if page_access_token else None,
            google_sheet_id=google_sheet_id,
            column_mapping=column_mapping or {},
            has_delivery=has_delivery,
            pickup_address=pickup_address,
            custom_instructions=custom_instructions,
            is_active=is_active,
        )
        db_session.add(store)
        await db_session.commit()
        return store

    return _create


@pytest.fixture
def product_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Product instances."""

    async def _create(
        *,
        store_id: UUID,
        name: str = "Хар цамц",
        category: str = "",
        price: int = 45000,
        stock: int = 10,
        description: str | None = None,
        is_active: bool = True,
        attributes: dict[str, Any] | None = None,
    ) -> Product:
        product = Product(
            store_id=store_id,
            name=name,
            category=category,
            price=price,
            stock=stock,
            description=description,
            is_active=is_active,
            attributes=attributes or {},
        )
        db_session.add(product)
        await db_session.commit()
        return product

    return _create


@pytest.fixture
def customer_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Customer instances."""

    async def _create(
        *,
        channel_user_id: str | None = None,
        name: str = "Бат",
        phone_number: str | None = None,
    ) -> Customer:
        customer = Customer(
            channel_user_id=channel_user_id or f"psid-{uuid.uuid4().hex[:10]}",
            name=name,
            phone_number=phone_number,
        )
        db_session.add(customer)
        await db_session.commit()
        return customer

    return _create


@pytest.fixture
def conversation_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Conversation instances."""

    async def _create(
        *,
        store_id: UUID,
        customer: Customer,
        status: ConversationStatus = ConversationStatus.ACTIVE,
        is_manual_mode: bool = False,
    ) -> Conversation:
        conversation = Conversation(
            store_id=store_id,
            customer_id=customer.id,
            channel_conversation_id=customer.channel_user_id,
            status=status,
            is_manual_mode=is_manual_mode,
        )
        db_session.add(conversation)
        await db_session.commit()
        return conversation

    return _create


@pytest.fixture
def message_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Message instances."""

    async def _create(
        *,
        conversation_id: UUID,
        position: int,
        sender: MessageSender = MessageSender.CUSTOMER,
        text: str = "Сайн байна уу",
        external_id: str | None = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender=sender,
            text=text,
            position=position,
            external_id=external_id,
        )
        db_session.add(message)
        await db_session.commit()
        return message

    return _create


@pytest.fixture
def order_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that creates Order instances."""

    async def _create(
        *,
        store_id: UUID,
        customer_id: UUID,
        conversation_id: UUID | None = None,
        items: list[dict[str, Any]] | None = None,
        phone_number: str = "99112233",
        address: str | None = "БЗД, 3-р хороо",
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        invoice_id: str | None = None,
        needs_review: bool = False,
    ) -> Order:
        order = Order(
            store_id=store_id,
            customer_id=customer_id,
            conversation_id=conversation_id,
            items=items or [{"product_id": None, "name": "Хар цамц", "quantity": 1, "price": 45000}],
            phone_number=phone_number,
            address=address,
            status=status,
            payment_status=payment_status,
            invoice_id=invoice_id,
            ai_extraction={"needs_review": needs_review},
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return _create


# ---------------------------------------------------------------------------
# Convenience fixtures (pre-built models)
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(store_factory: Callable[..., Any]) -> Store:
    return await store_factory()


@pytest.fixture
async def catalog(store: Store, product_factory: Callable[..., Any]) -> list[Product]:
    """Two shirts: the black one for 45 000, the white one for 35 000."""
    return [
        await product_factory(store_id=store.id, name="Хар цамц", price=45000, stock=10),
        await product_factory(store_id=store.id, name="Цагаан цамц", price=35000, stock=5),
    ]


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeMessenger:
    """Records everything the pipeline sends to the Graph API."""

    def __init__(self, profile_name: str = "Бат") -> None:
        self.sent: list[tuple[str, str]] = []
        self.typing: list[bool] = []
        self.profile_requests: list[str] = []
        self.profile_name = profile_name
        self.fail_sends = False

    async def send_message(self, recipient_id: str, text: str) -> dict[str, Any]:
        if self.fail_sends:
            raise RuntimeError("Graph API unavailable")
        self.sent.append((recipient_id, text))
        return {"recipient_id": recipient_id, "message_id": f"m_{len(self.sent)}"}

    async def send_typing(self, recipient_id: str, on: bool = True) -> None:  # noqa: ARG002
        self.typing.append(on)

    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        self.profile_requests.append(user_id)
        return {"name": self.profile_name}

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


class FakeLLM:
    """Stands in for ChatOpenAI; replies with queued contents in order.

    The last content is repeated once the queue runs dry.
    """

    def __init__(self, *contents: str, error: Exception | None = None) -> None:
        self.contents = list(contents) or [""]
        self.error = error
        self.calls: list[list[Any]] = []

    async def ainvoke(self, messages: list[Any]) -> AIMessage:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        content = self.contents.pop(0) if len(self.contents) > 1 else self.contents[0]
        return AIMessage(content=content)


class FakeQPay:
    """QPay stand-in returning a fixed invoice."""

    def __init__(self, success: bool = True, paid: bool = False) -> None:
        self.success = success
        self.paid = paid
        self.is_configured = True
        self.invoiced: list[int] = []
        self.checked: list[str] = []

    async def create_invoice(self, order: Order, description: str) -> InvoiceResult:  # noqa: ARG002
        self.invoiced.append(order.total_amount)
        if not self.success:
            return InvoiceResult(success=False, error="QPay error")
        return InvoiceResult(
            success=True,
            invoice_id="INV-001",
            qr_payload="qr-text",
            short_url="https://qpay.mn/s/INV-001",
        )

    async def check_status(self, invoice_id: str) -> PaymentCheckResult:
        self.checked.append(invoice_id)
        return PaymentCheckResult(paid=self.paid, paid_amount=90000 if self.paid else None)


class FakeSheets:
    """Google Sheets stand-in serving a fixed snapshot and recording writes."""

    def __init__(
        self,
        headers: list[str],
        rows: list[list[Any]],
        sheet_name: str = "Products",
    ) -> None:
        self.sheet_name = sheet_name
        self.headers = headers
        self.rows = rows
        self.updates: list[tuple[str, str, list[tuple[str, Any]]]] = []
        self.snapshot_requests: list[str] = []

    async def get_snapshot(self, sheet_id: str) -> SheetSnapshot:
        self.snapshot_requests.append(sheet_id)
        return SheetSnapshot(
            sheet_name=self.sheet_name,
            headers=list(self.headers),
            rows=[SheetRow(row_number=i, values=row) for i, row in enumerate(self.rows, start=2)],
        )

    async def update_cells(
        self,
        sheet_id: str,
        sheet_name: str,
        updates: list[tuple[str, Any]],
    ) -> None:
        self.updates.append((sheet_id, sheet_name, updates))

    async def verify_access(self, sheet_id: str) -> dict[str, Any]:  # noqa: ARG002
        return {"sheet_name": self.sheet_name, "headers": self.headers, "row_count": len(self.rows)}


@pytest.fixture
def fake_messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def fake_qpay() -> FakeQPay:
    return FakeQPay()


# ---------------------------------------------------------------------------
# Oracle output and webhook payload builders
# ---------------------------------------------------------------------------


def oracle_json(
    intent: str = "ordering",
    *,
    items: list[dict[str, Any]] | None = None,
    phone: str | None = None,
    full_address: str | None = None,
    ready: bool = False,
    missing: list[str] | None = None,
    confidence: float = 0.9,
) -> str:
    """Raw oracle answer in the wire shape the extraction prompt asks for."""
    payload: dict[str, Any] = {
        "intent": intent,
        "isOrderReady": ready,
        "missingFields": missing or [],
        "confidence": confidence,
    }
    if intent == "ordering":
        payload["data"] = {"items": items or [], "phone": phone, "full_address": full_address}
    return json.dumps(payload, ensure_ascii=False)


def messenger_entry(
    page_id: str,
    sender_id: str,
    *,
    text: str | None = None,
    mid: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
    postback: str | None = None,
    is_echo: bool = False,
) -> MessengerEntry:
    """One webhook entry carrying a single messaging event."""
    event: dict[str, Any] = {
        "sender": {"id": sender_id},
        "recipient": {"id": page_id},
        "timestamp": 1700000000000,
    }
    if postback is not None:
        event["postback"] = {"payload": postback, "title": "Эхлэх"}
    else:
        message: dict[str, Any] = {"mid": mid or f"mid.{uuid.uuid4().hex[:12]}"}
        if text is not None:
            message["text"] = text
        if attachments is not None:
            message["attachments"] = attachments
        if is_echo:
            message["is_echo"] = True
        event["message"] = message
    return MessengerEntry.model_validate({"id": page_id, "time": 1700000000000, "messaging": [event]})
