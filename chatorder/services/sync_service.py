"""Catalog reconciliation from a Google Sheet.

Each run upserts every named row on (store, name, category), then
soft-deactivates active products that the sheet no longer lists. Runs for
one store are limited by a TTL cooldown lock: a second trigger inside the
window is rejected, not queued.
"""

import logging
import re
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chatorder.core.config import settings
from chatorder.core.database import upsert_insert
from chatorder.core.exceptions import (
    ExternalServiceError,
    SyncConfigurationError,
    SyncRateLimitedError,
)
from chatorder.core.locks import LockService
from chatorder.integrations.google_sheets.client import (
    GoogleSheetsClient,
    column_letter,
    extract_sheet_id,
)
from chatorder.models.base import utcnow
from chatorder.models.product import Product
from chatorder.models.store import Store
from chatorder.schemas.sync import (
    SheetAnalyzeResponse,
    SheetRow,
    SheetSnapshot,
    SheetVerifyResponse,
    SyncResult,
)
from chatorder.services.extraction_service import ExtractionService

logger = logging.getLogger(__name__)

# Header names used when the store's column mapping leaves a field unset.
# Category has no default: without a mapping every product gets "".
DEFAULT_HEADERS = {
    "name": "Нэр",
    "price": "Үнэ",
    "stock": "Үлдэгдэл",
    "description": "Тайлбар",
}

STATUS_COLUMN = "AI Status"
SAMPLE_ROW_COUNT = 5

_NON_DIGITS = re.compile(r"\D")


def parse_number(value: Any) -> int:
    """Keep only the digits of a cell; 0 when there are none."""
    digits = _NON_DIGITS.sub("", str(value if value is not None else ""))
    return int(digits) if digits else 0


def cooldown_key(store_id: uuid.UUID) -> str:
    return f"sync-cooldown:{store_id}"


class _Columns:
    """Resolved header -> column index for one snapshot."""

    def __init__(self, headers: list[str], mapping: dict[str, str]) -> None:
        self.headers = headers
        self.index: dict[str, int] = {}
        for i, header in enumerate(headers):
            self.index.setdefault(header, i)

        self.fields = {
            field: mapping.get(field) or DEFAULT_HEADERS.get(field)
            for field in ("name", "price", "stock", "category", "description")
        }
        self.claimed = {h for h in self.fields.values() if h} | {STATUS_COLUMN}

    def get(self, row: SheetRow, field: str) -> str:
        header = self.fields.get(field)
        if not header or header not in self.index:
            return ""
        i = self.index[header]
        value = row.values[i] if i < len(row.values) else None
        return "" if value is None else str(value)

    def attributes(self, row: SheetRow) -> dict[str, str]:
        attrs: dict[str, str] = {}
        for header, i in self.index.items():
            if not header or header in self.claimed or i >= len(row.values):
                continue
            value = row.values[i]
            if value is not None and str(value).strip():
                attrs[header] = str(value)
        return attrs


class CatalogReconciler:
    """Diff/upsert/soft-delete of a store's products against a sheet snapshot."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def reconcile(self, store: Store, snapshot: SheetSnapshot) -> SyncResult:
        columns = _Columns(snapshot.headers, store.column_mapping or {})
        result = SyncResult()
        observed: set[tuple[str, str]] = set()
        now = utcnow()

        for row in snapshot.rows:
            name = columns.get(row, "name").strip()
            if not name:
                continue
            category = columns.get(row, "category").strip()
            # A failed row keeps its product active
            observed.add((name, category))

            values = {
                "price": parse_number(columns.get(row, "price")),
                "stock": parse_number(columns.get(row, "stock")),
                "description": columns.get(row, "description").strip() or None,
                "attributes": columns.attributes(row),
                "is_active": True,
                "synced_at": now,
                "updated_at": now,
            }
            try:
                async with self.db.begin_nested():
                    await self._upsert(store.id, name, category, values)
            except Exception:
                logger.exception("Failed to sync row %d (%s) for store %s", row.row_number, name, store.id)
                result.errors += 1
                continue

            result.upserted += 1
            result.observed_rows.append(row.row_number)

        active = await self.db.execute(
            select(Product.id, Product.name, Product.category).where(
                Product.store_id == store.id,
                Product.is_active.is_(True),
            )
        )
        stale_ids = [pid for pid, pname, pcat in active.all() if (pname, pcat) not in observed]
        if stale_ids:
            await self.db.execute(
                update(Product)
                .where(Product.id.in_(stale_ids))
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        result.deactivated = len(stale_ids)

        await self.db.commit()
        logger.info(
            "Catalog sync for store %s: %d upserted, %d errors, %d deactivated",
            store.id,
            result.upserted,
            result.errors,
            result.deactivated,
        )
        return result

    async def _upsert(
        self,
        store_id: uuid.UUID,
        name: str,
        category: str,
        values: dict[str, Any],
    ) -> None:
        stmt = upsert_insert(self.db, Product).values(
            id=uuid.uuid4(),
            store_id=store_id,
            name=name,
            category=category,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["store_id", "name", "category"],
            set_={key: stmt.excluded[key] for key in values},
        )
        await self.db.execute(stmt)


class CatalogSyncService:
    """Entry point for catalog syncs triggered over HTTP or from Celery."""

    def __init__(
        self,
        db: AsyncSession,
        locks: LockService,
        sheets_factory: Callable[[], Any] = GoogleSheetsClient,
        extraction: ExtractionService | None = None,
    ) -> None:
        self.db = db
        self.locks = locks
        self.sheets_factory = sheets_factory
        self.extraction = extraction or ExtractionService()

    async def sync_store(self, store: Store, sheet_id: str | None = None) -> SyncResult:
        """Pull the store's sheet and reconcile its catalog.

        Raises:
            SyncConfigurationError: The store has no sheet and none was given.
            SheetsConfigurationError: Google credentials are not configured.
            SyncRateLimitedError: A sync for this store started inside the cooldown.
            ExternalServiceError: The sheet could not be read.
        """
        target = extract_sheet_id(sheet_id) if sheet_id else store.google_sheet_id
        if not target:
            raise SyncConfigurationError(f"No Google Sheet configured for store {store.id}")

        # Fails fast on missing credentials, before the cooldown or any write
        sheets = self.sheets_factory()

        if not await self.locks.try_acquire(cooldown_key(store.id), settings.sync_cooldown_seconds):
            logger.info("Sync for store %s rejected: cooling down", store.id)
            raise SyncRateLimitedError(store.id, settings.sync_cooldown_seconds)

        snapshot = await sheets.get_snapshot(target)
        store.sheet_headers = snapshot.headers

        result = await CatalogReconciler(self.db).reconcile(store, snapshot)
        await self._write_status_feedback(sheets, target, snapshot, result)
        return result

    async def _write_status_feedback(
        self,
        sheets: Any,
        sheet_id: str,
        snapshot: SheetSnapshot,
        result: SyncResult,
    ) -> None:
        if STATUS_COLUMN not in snapshot.headers or not result.observed_rows:
            return
        letter = column_letter(snapshot.headers.index(STATUS_COLUMN))
        stamp = f"✅ Synced: {utcnow().strftime('%H:%M:%S')}"
        try:
            await sheets.update_cells(
                sheet_id,
                snapshot.sheet_name,
                [(f"{letter}{row_number}", stamp) for row_number in result.observed_rows],
            )
        except ExternalServiceError as e:
            logger.warning("Could not write sync status to sheet %s: %s", sheet_id, e)

    async def verify_sheet(self, sheet_url: str) -> SheetVerifyResponse:
        sheet_id = extract_sheet_id(sheet_url)
        sheets = self.sheets_factory()
        try:
            info = await sheets.verify_access(sheet_id)
        except ExternalServiceError as e:
            logger.warning("Sheet %s verification failed: %s", sheet_id, e)
            message = (
                "Эрх хүрэлцэхгүй байна (403). Үйлчилгээний и-мэйлд 'Editor' эрх өгнө үү."
                if "403" in str(e)
                else "Spreadsheet олдсонгүй эсвэл ID буруу байна."
            )
            return SheetVerifyResponse(success=False, message=message)
        return SheetVerifyResponse(success=True, **info)

    async def analyze_sheet(self, sheet_url: str) -> SheetAnalyzeResponse:
        """Suggest a column mapping from the header row and a few sample rows."""
        sheet_id = extract_sheet_id(sheet_url)
        snapshot = await self.sheets_factory().get_snapshot(sheet_id)
        samples = [row.values for row in snapshot.rows[:SAMPLE_ROW_COUNT]]
        suggestion = await self.extraction.suggest_column_mapping(snapshot.headers, samples)
        return SheetAnalyzeResponse(
            sheet_id=sheet_id,
            sheet_name=snapshot.sheet_name,
            headers=snapshot.headers,
            sample_rows=samples,
            mapping=suggestion.mapping,
            confidence=suggestion.confidence,
        )
