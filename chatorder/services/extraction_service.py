"""Extraction oracle adapter: free text -> structured intent/order result."""

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from chatorder.core.config import settings
from chatorder.models.conversation import ConversationStatus
from chatorder.models.message import Message, MessageSender
from chatorder.models.order import Order
from chatorder.models.product import Product
from chatorder.models.store import Store
from chatorder.schemas.extraction import (
    ColumnMappingSuggestion,
    ExtractionResult,
    default_extraction,
    extraction_adapter,
)
from chatorder.services.prompts import (
    COLUMN_MAPPING_PROMPT,
    DEFAULT_PERSONA,
    EMPTY_CATALOG,
    EXTRACTION_SYSTEM_PROMPT,
    EXTRACTION_USER_PROMPT,
    NO_ORDERS,
)

logger = logging.getLogger(__name__)

CATALOG_FIELDS = ("name", "price", "stock", "category", "description")

_PHONE_RE = re.compile(r"^[6-9]\d{7}$")

_SENDER_LABELS = {
    MessageSender.CUSTOMER: "Хэрэглэгч",
    MessageSender.BOT: "Бот",
    MessageSender.ADMIN: "Админ",
}


def validate_phone_number(phone: str | None) -> bool:
    """Mongolian mobile number: 8 digits starting with 6-9, separators ignored."""
    cleaned = re.sub(r"\D", "", phone or "")
    return bool(_PHONE_RE.match(cleaned))


def strip_code_fences(content: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    content = re.sub(r"^```(?:json)?\s*\n?", "", content.strip())
    return re.sub(r"\n?```\s*$", "", content.strip())


def parse_extraction(content: str) -> ExtractionResult:
    """Validate raw oracle output; anything unusable becomes the safe default."""
    try:
        raw = json.loads(strip_code_fences(content))
        return extraction_adapter.validate_python(raw)
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning("Discarding invalid extraction response: %s (%s)", content[:200], e)
        return default_extraction()


def format_catalog(catalog: Sequence[Product]) -> str:
    if not catalog:
        return EMPTY_CATALOG
    lines = []
    for product in catalog:
        line = f"- {product.name}: ₮{product.price:,} (Үлдэгдэл: {product.stock})"
        if product.attributes:
            attrs = ", ".join(f"{k}: {v}" for k, v in product.attributes.items())
            line += f" [{attrs}]"
        if product.category:
            line += f" [Төрөл: {product.category}]"
        lines.append(line)
    return "\n".join(lines)


def format_history(history: Sequence[Message]) -> str:
    return "\n".join(f"{_SENDER_LABELS[m.sender]}: {m.text}" for m in history)


def format_orders(orders: Sequence[Order]) -> str:
    if not orders:
        return NO_ORDERS
    return "\n".join(
        f"- ID: {str(o.id)[-4:]}, Төлөв: {o.status.value}, Дүн: ₮{o.total_amount:,}"
        for o in orders
    )


def format_business_rules(store: Store) -> str:
    if store.has_delivery:
        delivery = "Хүргэлттэй. Хүргэлтийн хаяг заавал шаардлагатай."
    else:
        delivery = (
            "Хүргэлтгүй. Хэрэглэгч өөрөө ирж авна"
            f" ({store.pickup_address or 'дэлгүүрийн хаяг'}). Хаяг бүү асуу."
        )
    return f"- {delivery}\n- Төлбөрийн хэлбэр: {store.payment_method.value}"


class ExtractionService:
    """Asks the LLM to classify a message and pull order fields out of it."""

    def __init__(self, llm: Any | None = None) -> None:
        self._llm = llm

    def _get_llm(self) -> Any:
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=settings.oracle_model,
                api_key=settings.openai_api_key,
                temperature=0.0,
                timeout=settings.oracle_timeout_seconds,
            )
        return self._llm

    def build_messages(
        self,
        text: str,
        history: Sequence[Message],
        catalog: Sequence[Product],
        store: Store,
        recent_orders: Sequence[Order],
        current_status: ConversationStatus,
    ) -> list[Any]:
        system = EXTRACTION_SYSTEM_PROMPT.format(
            persona=store.custom_instructions or DEFAULT_PERSONA,
            business_rules=format_business_rules(store),
            catalog=format_catalog(catalog),
            order_history=format_orders(recent_orders),
            conversation_status=current_status.value,
        )
        user = EXTRACTION_USER_PROMPT.format(history=format_history(history), message=text)
        return [SystemMessage(content=system), HumanMessage(content=user)]

    async def extract(
        self,
        text: str,
        history: Sequence[Message],
        catalog: Sequence[Product],
        store: Store,
        recent_orders: Sequence[Order],
        current_status: ConversationStatus,
    ) -> ExtractionResult:
        """Classify ``text`` and extract order data.

        Never raises: LLM errors, timeouts and malformed output all yield the
        browsing default with readiness false.
        """
        messages = self.build_messages(
            text, history, catalog, store, recent_orders, current_status
        )
        try:
            response = await asyncio.wait_for(
                self._get_llm().ainvoke(messages),
                timeout=settings.oracle_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("Extraction timed out after %ss", settings.oracle_timeout_seconds)
            return default_extraction()
        except Exception:
            logger.exception("Extraction oracle call failed")
            return default_extraction()

        content = response.content if isinstance(response.content, str) else ""
        result = parse_extraction(content)
        logger.info(
            "Extraction: intent=%s, ready=%s, confidence=%.2f",
            result.intent,
            result.is_order_ready,
            result.confidence,
        )
        return result

    async def suggest_column_mapping(
        self,
        headers: Sequence[str],
        sample_rows: Sequence[Sequence[Any]],
    ) -> ColumnMappingSuggestion:
        """Suggest which sheet header holds each catalog field."""
        prompt = COLUMN_MAPPING_PROMPT.format(
            headers=json.dumps(list(headers), ensure_ascii=False),
            samples=json.dumps([list(r) for r in sample_rows], ensure_ascii=False, default=str),
        )
        try:
            response = await asyncio.wait_for(
                self._get_llm().ainvoke([HumanMessage(content=prompt)]),
                timeout=settings.oracle_timeout_seconds,
            )
            content = response.content if isinstance(response.content, str) else ""
            parsed = json.loads(strip_code_fences(content))
            suggestion = ColumnMappingSuggestion.model_validate(parsed)
        except Exception:
            logger.exception("Column mapping suggestion failed")
            return ColumnMappingSuggestion()

        # Drop anything that is not a known field or not an actual header
        mapping = {
            field: header
            for field, header in suggestion.mapping.items()
            if field in CATALOG_FIELDS and header in headers
        }
        confidence = min(max(suggestion.confidence, 0.0), 1.0)
        return ColumnMappingSuggestion(mapping=mapping, confidence=confidence)
