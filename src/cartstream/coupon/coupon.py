"""Discount codes with usage tracking.

Coupons are administered elsewhere; the cart pipeline is the only writer of
``used_count``, ``users_used`` and the expiry-triggered status flip.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cartstream.cart.pricing import AppliedDiscount, DiscountType, discount_amount_for
from cartstream.utils.db import Base


class CouponStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _now() -> datetime:
    return datetime.now(UTC)


class Coupon(Base):
    __tablename__ = "coupons"

    coupon_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    discount_type: Mapped[str] = mapped_column(String(10), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    users_used: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default=CouponStatus.ACTIVE.value, index=True)
    min_order_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    @property
    def type(self) -> DiscountType:
        return DiscountType(self.discount_type)

    def has_been_used_by(self, user_id: str) -> bool:
        return str(user_id) in (self.users_used or [])

    def would_discount(self, order_total: float) -> float:
        snapshot = AppliedDiscount(coupon_id=self.coupon_id, code=self.code, type=self.type, value=self.value)
        return discount_amount_for(order_total, snapshot)
