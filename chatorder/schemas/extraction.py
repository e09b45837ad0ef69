"""Structured results returned by the extraction oracle.

The oracle answers with JSON shaped like::

    {
      "intent": "ordering",
      "isOrderReady": true,
      "data": {"items": [...], "phone": "...", "full_address": "..."},
      "missingFields": [],
      "confidence": 0.9
    }

It is validated into a union discriminated on ``intent``. Only
``OrderingResult`` carries order data.
"""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, field_validator, model_validator

from chatorder.schemas.common import BaseSchema


def _loose_int(value: Any) -> int | None:
    """Best-effort integer from oracle output ("2", 2.0, "45,000")."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return int(value)
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    return int(digits) if digits else None


class ExtractedItem(BaseSchema):
    """An item as the customer described it. Price is informational only."""

    name: str
    quantity: int | None = None
    price: int | None = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> str:
        return str(v).strip() if v is not None else ""

    @field_validator("quantity", "price", mode="before")
    @classmethod
    def coerce_number(cls, v: Any) -> int | None:
        return _loose_int(v)


class _ExtractionBase(BaseSchema):
    is_order_ready: bool = Field(default=False, alias="isOrderReady")
    missing_fields: list[str] = Field(default_factory=list, alias="missingFields")
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        return min(max(value, 0.0), 1.0)

    @field_validator("missing_fields", mode="before")
    @classmethod
    def default_missing_fields(cls, v: Any) -> Any:
        return [] if v is None else v


class BrowsingResult(_ExtractionBase):
    intent: Literal["browsing"] = "browsing"


class InquiryResult(_ExtractionBase):
    intent: Literal["inquiry"] = "inquiry"


class OrderStatusResult(_ExtractionBase):
    intent: Literal["order_status"] = "order_status"


class OrderingResult(_ExtractionBase):
    intent: Literal["ordering"] = "ordering"
    items: list[ExtractedItem] = Field(default_factory=list)
    phone: str | None = None
    full_address: str | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_data(cls, values: Any) -> Any:
        """Move ``data.{items, phone, full_address}`` to the top level."""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            values = {**values.get("data", {}), **{k: v for k, v in values.items() if k != "data"}}
        return values

    @field_validator("items", mode="before")
    @classmethod
    def drop_blank_items(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict) and str(item.get("name") or "").strip()]
        return v

    @field_validator("phone", "full_address", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str | None:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


ExtractionResult = Annotated[
    BrowsingResult | InquiryResult | OrderingResult | OrderStatusResult,
    Field(discriminator="intent"),
]

extraction_adapter: TypeAdapter[ExtractionResult] = TypeAdapter(ExtractionResult)


def default_extraction() -> BrowsingResult:
    """The result used whenever the oracle fails or answers nonsense."""
    return BrowsingResult(is_order_ready=False, missing_fields=[], confidence=0.0)


class ColumnMappingSuggestion(BaseSchema):
    """Oracle suggestion mapping sheet headers to catalog fields."""

    mapping: dict[str, str] = Field(default_factory=dict)
    confidence: float = 0.0
