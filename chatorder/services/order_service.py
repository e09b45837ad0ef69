"""Order assembly, payment requests and admin order flows."""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatorder.core.exceptions import OrderStateError, UnknownCatalogItemsError
from chatorder.integrations.qpay.client import QPayClient
from chatorder.models.base import utcnow
from chatorder.models.conversation import Conversation, ConversationStatus
from chatorder.models.customer import Customer
from chatorder.models.order import Order, OrderStatus, PaymentStatus
from chatorder.models.store import PaymentMethod, Store
from chatorder.schemas.extraction import ExtractedItem, OrderingResult
from chatorder.schemas.order import InvoiceResult, OrderLineItem, OrderVerifyRequest
from chatorder.services.catalog_service import CatalogMatch, CatalogService, match_catalog
from chatorder.services.extraction_service import validate_phone_number
from chatorder.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

QPAY_SHORT_URL = "https://qpay.mn/q/{invoice_id}"

PAYMENT_LINK_MESSAGE = (
    "💳 Төлбөрийн нэхэмжлэл: {invoice_id}\n\n"
    "QPay ашиглан доорх холбоосоор эсвэл банкны аппаар төлнө үү: {url}"
)


@dataclass
class Readiness:
    """Pipeline's own verdict on whether an order can be committed."""

    ready: bool
    missing_fields: list[str] = field(default_factory=list)
    phone_valid: bool = False


def resolve_readiness(
    extraction: OrderingResult,
    match: CatalogMatch,
    store: Store,
) -> Readiness:
    """Reconcile the oracle's readiness flag with what is actually present.

    Readiness requires validated items with no unknown names, a phone, and an
    address unless the store only offers pickup. When all of that holds and
    the phone is a valid mobile number, an oracle "not ready" is overridden
    to ready. When any of it is missing, readiness is forced false whatever
    the oracle said.
    """
    phone_valid = validate_phone_number(extraction.phone)
    has_address = bool(extraction.full_address) or not store.has_delivery

    missing: list[str] = []
    if not match.validated and not match.unknown:
        missing.append("items")
    if match.unknown:
        missing.append(f"unknown_items: {', '.join(match.unknown)}")
    if not extraction.phone:
        missing.append("phone")
    if not has_address:
        missing.append("full_address")

    if missing:
        merged = list(dict.fromkeys([*extraction.missing_fields, *missing]))
        return Readiness(ready=False, missing_fields=merged, phone_valid=phone_valid)

    if extraction.is_order_ready:
        return Readiness(ready=True, phone_valid=phone_valid)

    if phone_valid:
        logger.info("Overriding oracle readiness: all order fields verified present")
        return Readiness(ready=True, phone_valid=True)

    return Readiness(
        ready=False,
        missing_fields=list(extraction.missing_fields) or ["phone"],
        phone_valid=False,
    )


def payment_link_message(order: Order) -> str | None:
    if not order.invoice_id:
        return None
    return PAYMENT_LINK_MESSAGE.format(
        invoice_id=order.invoice_id,
        url=order.invoice_url or QPAY_SHORT_URL.format(invoice_id=order.invoice_id),
    )


class OrderService:
    """Creates orders from conversations and runs the admin order flows."""

    def __init__(
        self,
        db: AsyncSession,
        payments: QPayClient | None = None,
        notifier: NotificationService | None = None,
    ) -> None:
        self.db = db
        self.payments = payments or QPayClient()
        self.notifier = notifier

    async def get_order(self, order_id: UUID, store_id: UUID | None = None) -> Order | None:
        query = select(Order).where(Order.id == order_id)
        if store_id is not None:
            query = query.where(Order.store_id == store_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def assemble(
        self,
        store: Store,
        customer: Customer,
        conversation: Conversation,
        extraction: OrderingResult,
        validated: Sequence[OrderLineItem],
        raw_message: str = "",
    ) -> Order:
        """Persist an order for validated items and request its invoice.

        The invoice is requested only for a positive total; a failed invoice
        leaves the order without payment fields. After commit the conversation
        is ``order_created`` and ``order-created`` has been emitted.
        """
        if store.has_delivery:
            address = extraction.full_address
            needs_review = not address
        else:
            address = store.pickup_address
            needs_review = False
        phone = extraction.phone or ""
        if not validate_phone_number(phone):
            needs_review = True

        order = Order(
            id=uuid.uuid4(),
            store_id=store.id,
            customer_id=customer.id,
            conversation_id=conversation.id,
            items=[line.to_order_item() for line in validated],
            phone_number=phone,
            address=address,
            has_delivery=store.has_delivery,
            pickup_address=store.pickup_address,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            ai_extraction={
                "raw_message": raw_message,
                "extracted_data": extraction.model_dump(mode="json"),
                "confidence": extraction.confidence,
                "needs_review": needs_review,
            },
        )
        total = order.recalculate_total()

        if total > 0:
            invoice = await self._request_invoice(order, store)
            if invoice.success and invoice.invoice_id:
                order.payment_method = PaymentMethod.QPAY
                order.invoice_id = invoice.invoice_id
                order.invoice_qr = invoice.qr_payload
                order.invoice_url = invoice.short_url or QPAY_SHORT_URL.format(
                    invoice_id=invoice.invoice_id
                )
            else:
                logger.warning("Order %s saved without invoice: %s", order.id, invoice.error)

        self.db.add(order)

        if extraction.phone:
            customer.phone_number = extraction.phone
        if store.has_delivery and address:
            customer.address = address
        customer.total_orders += 1
        customer.total_spent += total

        order_ids = list((conversation.extra_data or {}).get("order_ids", []))
        order_ids.append(str(order.id))
        conversation.extra_data = {**(conversation.extra_data or {}), "order_ids": order_ids}
        conversation.status = ConversationStatus.ORDER_CREATED

        await self.db.commit()
        logger.info(
            "Order %s created for store %s: total=%d, invoice=%s",
            order.id,
            store.id,
            order.total_amount,
            order.invoice_id,
        )

        if self.notifier is not None:
            await self.notifier.order_created(order, customer.name)
        return order

    async def _request_invoice(self, order: Order, store: Store) -> InvoiceResult:
        # The order is saved whatever happens here
        try:
            return await self.payments.create_invoice(
                order, description=f"{store.name} захиалга #{str(order.id)[-4:]}"
            )
        except Exception as e:
            logger.exception("Invoice request for order %s raised", order.id)
            return InvoiceResult(success=False, error=str(e) or type(e).__name__)

    async def approve_order(self, order: Order) -> Order:
        """Confirm a pending order and take its items out of stock.

        Raises:
            OrderStateError: If the order is not pending, so stock is only
                ever decremented once per order.
        """
        if order.status != OrderStatus.PENDING:
            raise OrderStateError(order.id, order.status.value, "approve")

        catalog = CatalogService(self.db)
        product_ids = [UUID(item["product_id"]) for item in order.items if item.get("product_id")]
        products = await catalog.get_products_by_ids(product_ids)

        for item in order.items:
            product = products.get(UUID(item["product_id"])) if item.get("product_id") else None
            if product is None:
                continue
            product.stock = max(product.stock - int(item.get("quantity") or 0), 0)

        order.status = OrderStatus.CONFIRMED
        order.verified_at = utcnow()
        order.ai_extraction = {**(order.ai_extraction or {}), "needs_review": False}
        await self.db.commit()
        logger.info("Order %s approved", order.id)
        return order

    async def verify_order(self, order: Order, changes: OrderVerifyRequest) -> Order:
        """Apply admin corrections; items are re-priced from the active catalog.

        Raises:
            UnknownCatalogItemsError: If a corrected item matches no product.
        """
        if changes.items is not None:
            catalog = await CatalogService(self.db).snapshot(order.store_id)
            match = match_catalog(
                [ExtractedItem(name=i.name, quantity=i.quantity) for i in changes.items],
                catalog,
            )
            if match.unknown:
                raise UnknownCatalogItemsError(match.unknown)
            order.items = [line.to_order_item() for line in match.validated]

        if changes.phone_number is not None:
            order.phone_number = changes.phone_number
        if changes.address is not None:
            order.address = changes.address
        if changes.status is not None:
            order.status = changes.status
        if changes.notes is not None:
            order.notes = changes.notes

        order.verified_at = utcnow()
        order.ai_extraction = {**(order.ai_extraction or {}), "needs_review": False}
        await self.db.commit()
        logger.info("Order %s verified", order.id)
        return order

    async def refresh_payment_status(self, order: Order) -> Order:
        """Mark the order paid if QPay reports its invoice as paid."""
        if not order.invoice_id or order.payment_status == PaymentStatus.PAID:
            return order

        result = await self.payments.check_status(order.invoice_id)
        if result.paid:
            order.payment_status = PaymentStatus.PAID
            order.paid_at = utcnow()
            await self.db.commit()
            logger.info("Order %s paid (invoice %s)", order.id, order.invoice_id)
        return order

    async def pending_invoice_orders(self, limit: int = 100) -> list[Order]:
        result = await self.db.execute(
            select(Order)
            .where(
                Order.invoice_id.is_not(None),
                Order.payment_status == PaymentStatus.PENDING,
                Order.status != OrderStatus.CANCELLED,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
