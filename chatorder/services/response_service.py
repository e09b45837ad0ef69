"""Customer-facing reply generation."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from chatorder.core.config import settings
from chatorder.models.order import Order
from chatorder.models.store import Store
from chatorder.schemas.extraction import ExtractionResult
from chatorder.services.prompts import (
    DEFAULT_PERSONA,
    RESPONSE_SYSTEM_PROMPT,
    RESPONSE_USER_PROMPT,
)

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Уучлаарай, түр хүлээгээрэй. 😊"


class ResponseService:
    """Turns an extraction (and optional order) into a natural reply."""

    def __init__(self, llm: Any | None = None) -> None:
        self._llm = llm

    def _get_llm(self) -> Any:
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=settings.oracle_model,
                api_key=settings.openai_api_key,
                temperature=0.7,
                timeout=settings.response_timeout_seconds,
            )
        return self._llm

    async def generate(
        self,
        extraction: ExtractionResult,
        message: str,
        store: Store,
        order: Order | None = None,
        unknown_items: Sequence[str] = (),
    ) -> str:
        order_summary = (
            f"Захиалга үүссэн: нийт ₮{order.total_amount:,}, утас: {order.phone_number}"
            if order is not None
            else "захиалга үүсээгүй"
        )
        system = RESPONSE_SYSTEM_PROMPT.format(
            persona=store.custom_instructions or DEFAULT_PERSONA,
            order_summary=order_summary,
            missing_fields=", ".join(extraction.missing_fields) or "байхгүй",
            unknown_items=", ".join(unknown_items) or "байхгүй",
        )
        user = RESPONSE_USER_PROMPT.format(
            analysis=extraction.model_dump_json(by_alias=True),
            message=message,
        )

        try:
            response = await asyncio.wait_for(
                self._get_llm().ainvoke([SystemMessage(content=system), HumanMessage(content=user)]),
                timeout=settings.response_timeout_seconds,
            )
        except Exception:
            logger.exception("Reply generation failed, using fallback")
            return FALLBACK_REPLY

        content = response.content if isinstance(response.content, str) else ""
        return content.strip() or FALLBACK_REPLY
