"""Celery task for catalog syncs that do not come through the HTTP API."""

import logging
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis

from chatorder.core.config import settings
from chatorder.core.database import async_session_maker
from chatorder.core.exceptions import ConfigurationError, SyncRateLimitedError
from chatorder.core.locks import LockService
from chatorder.models.store import Store
from chatorder.services.sync_service import CatalogSyncService
from chatorder.workers.async_runner import run_async
from chatorder.workers.celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(  # type: ignore[untyped-decorator]
    name="tasks.sync.sync_store_catalog",
    base=BaseTask,
    bind=True,
)
def sync_store_catalog(
    self: BaseTask,  # noqa: ARG001
    store_id: str,
    sheet_id: str | None = None,
) -> dict[str, Any]:
    """Reconcile a store's catalog with its Google Sheet."""
    return run_async(_sync_store_catalog_async(UUID(store_id), sheet_id))


async def _sync_store_catalog_async(store_id: UUID, sheet_id: str | None) -> dict[str, Any]:
    redis = aioredis.from_url(str(settings.redis_url), decode_responses=True)
    try:
        async with async_session_maker() as session:
            store = await session.get(Store, store_id)
            if store is None:
                logger.warning("Catalog sync requested for unknown store %s", store_id)
                return {"status": "error", "error": "Store not found"}

            service = CatalogSyncService(session, locks=LockService(redis))
            try:
                result = await service.sync_store(store, sheet_id)
            except SyncRateLimitedError:
                return {"status": "rate_limited"}
            except ConfigurationError as e:
                # Retrying cannot fix missing credentials or a missing sheet
                logger.error("Catalog sync for store %s aborted: %s", store_id, e)
                return {"status": "error", "error": str(e)}
    finally:
        await redis.aclose()

    return {
        "status": "completed",
        "upserted": result.upserted,
        "errors": result.errors,
        "deactivated": result.deactivated,
    }
