"""Catalogue products, as far as the cart needs them (read-only here).

The catalogue owns products; the cart pipeline only reads them. A product may
be deleted at any time, including between an optimistic projection and the
authoritative application of a queued job.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, Float, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from cartstream.utils.db import Base


def _now() -> datetime:
    return datetime.now(UTC)


class Product(Base):
    __tablename__ = "products"

    product_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    discount_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)


class ProductCatalogue:
    """Read port over the products table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, product_id: str) -> Product | None:
        return await self.session.get(Product, str(product_id))

    async def get_many(self, product_ids) -> dict[str, Product]:
        ids = {str(pid) for pid in product_ids}
        if not ids:
            return {}
        result = await self.session.execute(select(Product).where(Product.product_id.in_(ids)))
        return {product.product_id: product for product in result.scalars()}
