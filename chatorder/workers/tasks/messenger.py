"""Celery task running the order pipeline for one Messenger webhook entry."""

import logging
from typing import Any

import redis.asyncio as aioredis

from chatorder.core.config import settings
from chatorder.core.database import async_session_maker
from chatorder.core.locks import LockService
from chatorder.core.logging_config import request_id_var
from chatorder.schemas.messenger import MessengerEntry
from chatorder.services.ingress_service import MessageIngress
from chatorder.services.notification_service import NotificationService
from chatorder.workers.async_runner import run_async
from chatorder.workers.celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(  # type: ignore[untyped-decorator]
    name="tasks.messenger.process_entry",
    base=BaseTask,
    bind=True,
)
def process_entry(
    self: BaseTask,  # noqa: ARG001
    entry: dict[str, Any],
    request_id: str = "",
) -> dict[str, Any]:
    """Process every messaging event of one webhook entry.

    A conversation that stays locked raises ``LockNotAcquiredError``, which
    BaseTask retries; already-stored messages are skipped on the retry.
    """
    if request_id:
        request_id_var.set(request_id)
    return run_async(_process_entry_async(MessengerEntry.model_validate(entry)))


async def _process_entry_async(entry: MessengerEntry) -> dict[str, Any]:
    redis = aioredis.from_url(str(settings.redis_url), decode_responses=True)
    try:
        async with async_session_maker() as session:
            ingress = MessageIngress(
                session,
                locks=LockService(redis),
                notifier=NotificationService(redis),
            )
            result = await ingress.ingest(entry)
    finally:
        await redis.aclose()

    logger.info(
        "Entry %s: %d processed, %d duplicates, %d failed, %d orders",
        entry.id,
        result.processed,
        result.duplicates,
        result.failed,
        len(result.order_ids),
    )
    return {
        "status": "completed",
        "processed": result.processed,
        "duplicates": result.duplicates,
        "failed": result.failed,
        "order_ids": [str(order_id) for order_id in result.order_ids],
    }
