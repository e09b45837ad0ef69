"""Periodic QPay invoice status checks."""

import logging
from typing import Any

from chatorder.core.database import async_session_maker
from chatorder.integrations.qpay.client import QPayClient
from chatorder.models.order import PaymentStatus
from chatorder.services.order_service import OrderService
from chatorder.workers.async_runner import run_async
from chatorder.workers.celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(  # type: ignore[untyped-decorator]
    name="tasks.payments.check_pending_payments",
    base=BaseTask,
    bind=True,
)
def check_pending_payments(self: BaseTask) -> dict[str, Any]:  # noqa: ARG001
    """Mark orders paid whose QPay invoice has been settled."""
    return run_async(_check_pending_payments_async())


async def _check_pending_payments_async(payments: QPayClient | None = None) -> dict[str, Any]:
    payments = payments or QPayClient()
    if not payments.is_configured:
        return {"status": "skipped", "reason": "QPay not configured"}

    checked = paid = 0
    async with async_session_maker() as session:
        service = OrderService(session, payments=payments)
        for order in await service.pending_invoice_orders():
            checked += 1
            await service.refresh_payment_status(order)
            if order.payment_status == PaymentStatus.PAID:
                paid += 1

    if paid:
        logger.info("Payment check: %d of %d pending invoices paid", paid, checked)
    return {"status": "completed", "checked": checked, "paid": paid}
