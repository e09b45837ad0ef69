"""Catalog sync endpoints (Google Sheets)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from chatorder.core.deps import CurrentUser, DBSession, Locks
from chatorder.core.exceptions import (
    ExternalServiceError,
    SheetsConfigurationError,
    SyncConfigurationError,
    SyncRateLimitedError,
)
from chatorder.core.rate_limit import limiter
from chatorder.models.store import Store
from chatorder.schemas.sync import (
    SheetAnalyzeRequest,
    SheetAnalyzeResponse,
    SheetVerifyRequest,
    SheetVerifyResponse,
    SyncProductsRequest,
    SyncProductsResponse,
)
from chatorder.services.sync_service import CatalogSyncService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_sync_service(db: DBSession, locks: Locks) -> CatalogSyncService:
    return CatalogSyncService(db, locks)


SyncService = Annotated[CatalogSyncService, Depends(get_sync_service)]


def _sheets_unavailable(e: SheetsConfigurationError) -> HTTPException:
    logger.error("Google Sheets not configured: %s", e)
    return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))


@router.post("/products", response_model=SyncProductsResponse)
@limiter.limit("10/minute")
async def sync_products(
    request: Request,  # noqa: ARG001  # slowapi reads it
    data: SyncProductsRequest,
    db: DBSession,
    service: SyncService,
    _user: CurrentUser,
) -> SyncProductsResponse:
    """Reconcile a store's products with its Google Sheet."""
    store = await db.get(Store, data.store_id)
    if store is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Store not found")

    try:
        result = await service.sync_store(store, data.sheet_id)
    except SyncRateLimitedError as e:
        raise HTTPException(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Sync already in progress. Please wait a few seconds.",
            headers={"Retry-After": str(e.cooldown_seconds)},
        ) from e
    except SyncConfigurationError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e)) from e
    except SheetsConfigurationError as e:
        raise _sheets_unavailable(e) from e
    except ExternalServiceError as e:
        logger.warning("Catalog sync for store %s failed: %s", store.id, e)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(e)) from e

    return SyncProductsResponse(
        upserted=result.upserted,
        errors=result.errors,
        deactivated=result.deactivated,
        message=f"Synced {result.upserted} products",
    )


@router.post("/verify", response_model=SheetVerifyResponse)
async def verify_sheet(
    data: SheetVerifyRequest,
    service: SyncService,
    _user: CurrentUser,
) -> SheetVerifyResponse:
    """Check the service account can read the sheet and return its headers."""
    try:
        return await service.verify_sheet(data.sheet_url)
    except SheetsConfigurationError as e:
        raise _sheets_unavailable(e) from e


@router.post("/analyze", response_model=SheetAnalyzeResponse)
async def analyze_sheet(
    data: SheetAnalyzeRequest,
    service: SyncService,
    _user: CurrentUser,
) -> SheetAnalyzeResponse:
    """Suggest which sheet columns hold name, price, stock, category and description."""
    try:
        return await service.analyze_sheet(data.sheet_url)
    except SheetsConfigurationError as e:
        raise _sheets_unavailable(e) from e
    except ExternalServiceError as e:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(e)) from e
