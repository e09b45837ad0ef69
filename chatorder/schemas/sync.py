"""Catalog sync schemas."""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from pydantic import Field

from chatorder.schemas.common import BaseSchema


@dataclass
class SheetRow:
    """A data row; ``row_number`` is the 1-based row in the sheet."""

    row_number: int
    values: list[Any]


@dataclass
class SheetSnapshot:
    """Header row plus data rows of the catalog tab."""

    sheet_name: str
    headers: list[str]
    rows: list[SheetRow] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass."""

    upserted: int = 0
    errors: int = 0
    deactivated: int = 0
    observed_rows: list[int] = field(default_factory=list)


class SyncProductsRequest(BaseSchema):
    store_id: UUID = Field(alias="storeId")
    sheet_id: str | None = Field(default=None, alias="sheetId")


class SyncProductsResponse(BaseSchema):
    success: bool = True
    upserted: int
    errors: int
    deactivated: int
    message: str


class SheetVerifyRequest(BaseSchema):
    """Spreadsheet URL or bare id."""

    sheet_url: str = Field(alias="sheetUrl")


class SheetVerifyResponse(BaseSchema):
    success: bool
    sheet_name: str | None = None
    headers: list[str] = Field(default_factory=list)
    row_count: int = 0
    message: str | None = None


class SheetAnalyzeRequest(BaseSchema):
    sheet_url: str = Field(alias="sheetUrl")


class SheetAnalyzeResponse(BaseSchema):
    sheet_id: str
    sheet_name: str
    headers: list[str]
    sample_rows: list[list[Any]]
    mapping: dict[str, str]
    confidence: float
