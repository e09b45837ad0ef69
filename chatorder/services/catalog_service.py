"""Catalog snapshot, item matching and pricing."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatorder.models.product import Product
from chatorder.schemas.extraction import ExtractedItem
from chatorder.schemas.order import OrderLineItem

logger = logging.getLogger(__name__)

# Tokens this short ("ын", "2") are too common to identify a product
MIN_TOKEN_LENGTH = 3

_TOKEN_RE = re.compile(r"\w+")


@dataclass
class CatalogMatch:
    """Items split into catalog-validated lines and names nobody sells."""

    validated: list[OrderLineItem] = field(default_factory=list)
    unknown: list[str] = field(default_factory=list)

    @property
    def all_matched(self) -> bool:
        return bool(self.validated) and not self.unknown


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) >= MIN_TOKEN_LENGTH}


def find_product(name: str, catalog: Sequence[Product]) -> Product | None:
    """First product whose name contains, is contained in, or shares a word with ``name``."""
    wanted = name.strip().lower()
    if not wanted:
        return None
    wanted_tokens = _tokens(wanted)

    for product in catalog:
        candidate = product.name.lower()
        if wanted in candidate or candidate in wanted:
            return product
        if wanted_tokens & _tokens(candidate):
            return product
    return None


def match_catalog(items: Sequence[ExtractedItem], catalog: Sequence[Product]) -> CatalogMatch:
    """Validate extracted items against the catalog.

    Prices always come from the matched product; any price the customer or
    the oracle mentioned is ignored. Missing or non-positive quantities
    become 1.
    """
    match = CatalogMatch()
    for item in items:
        product = find_product(item.name, catalog)
        if product is None:
            match.unknown.append(item.name)
            continue

        quantity = item.quantity if item.quantity and item.quantity >= 1 else 1
        match.validated.append(
            OrderLineItem(
                product_id=product.id,
                name=product.name,
                quantity=quantity,
                price=product.price,
            )
        )

    if match.unknown:
        logger.info("Unmatched catalog items: %s", match.unknown)
    return match


def compute_total(lines: Sequence[OrderLineItem]) -> int:
    return sum(line.price * line.quantity for line in lines)


class CatalogService:
    """Read access to a store's active catalog."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def snapshot(self, store_id: UUID) -> list[Product]:
        """Active products of a store, ordered by name.

        Taken once per extraction pass so the oracle and the matcher see the
        same catalog.
        """
        result = await self.db.execute(
            select(Product)
            .where(Product.store_id == store_id, Product.is_active.is_(True))
            .order_by(Product.name, Product.category)
        )
        return list(result.scalars().all())

    async def get_products_by_ids(self, product_ids: Sequence[UUID]) -> dict[UUID, Product]:
        if not product_ids:
            return {}
        result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {p.id: p for p in result.scalars().all()}
