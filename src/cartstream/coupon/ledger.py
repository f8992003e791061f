"""Validate, redeem and detach discount codes.

Validation is side-effect free except for one case: a coupon found past its
expiry is flipped to inactive on the spot. Redemption is permanent; removing
a discount from a cart never gives the use back.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cartstream.cart.cart import Cart
from cartstream.cart.pricing import AppliedDiscount, round_money
from cartstream.coupon.coupon import Coupon, CouponStatus, normalize_code
from cartstream.exceptions import ConflictError, ObjectNotFoundError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CouponCheck:
    valid: bool
    coupon: Coupon | None = None
    discount_amount: float = 0.0
    final_total: float = 0.0
    reason: str | None = None
    error: type[Exception] | None = None

    @classmethod
    def failed(cls, reason: str, error: type[Exception] = ValidationError, coupon: Coupon | None = None):
        return cls(valid=False, coupon=coupon, reason=reason, error=error)

    def raise_if_invalid(self) -> None:
        if self.valid:
            return
        error = self.error or ValidationError
        if issubclass(error, ValidationError):
            raise error({"code": [self.reason]})
        raise error(self.reason)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class CouponLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, code: str) -> Coupon | None:
        result = await self.session.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
        return result.scalar_one_or_none()

    async def validate(self, code: str, order_total: float, user_id: str | None) -> CouponCheck:
        """Check ``code`` against ``order_total`` for ``user_id`` without redeeming it."""
        if not normalize_code(code):
            raise ValidationError({"code": ["Coupon code is required"]})
        if order_total is None or not math.isfinite(order_total) or order_total < 0:
            raise ValidationError({"order_total": ["Order total must be a non-negative number"]})

        coupon = await self.find(code)
        if coupon is None:
            return CouponCheck.failed("Coupon code not found", ObjectNotFoundError)

        now = datetime.now(UTC)

        if coupon.status != CouponStatus.ACTIVE.value:
            return CouponCheck.failed("Coupon is not active", coupon=coupon)

        if coupon.expires_at is not None and now > _as_utc(coupon.expires_at):
            await self._deactivate(coupon)
            return CouponCheck.failed("This coupon has expired", coupon=coupon)

        if coupon.starts_at is not None and now < _as_utc(coupon.starts_at):
            return CouponCheck.failed("Coupon is not yet valid", coupon=coupon)

        if user_id is not None and coupon.has_been_used_by(user_id):
            return CouponCheck.failed("You have already used this code", ConflictError, coupon=coupon)

        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            return CouponCheck.failed("Coupon usage limit reached", coupon=coupon)

        if coupon.min_order_amount and order_total < coupon.min_order_amount:
            return CouponCheck.failed(f"Minimum order amount is {coupon.min_order_amount:g}", coupon=coupon)

        discount_amount = coupon.would_discount(order_total)
        return CouponCheck(
            valid=True,
            coupon=coupon,
            discount_amount=discount_amount,
            final_total=round_money(order_total - discount_amount),
        )

    async def apply(self, cart: Cart, coupon: Coupon, user_id: str) -> None:
        """Attach ``coupon`` to ``cart`` and record the redemption for ``user_id``.

        A repeated call for a redemption that already landed on this cart is a
        no-op; any other repeat by the same user is a conflict.
        """
        user_id = str(user_id)
        if coupon.has_been_used_by(user_id):
            current = cart.discount
            if current is not None and current.coupon_id == coupon.coupon_id:
                logger.info("Coupon already redeemed on this cart", code=coupon.code, user_id=user_id)
                return
            raise ConflictError("You have already used this code")

        # Compare-and-swap on used_count: a concurrent redemption makes this a no-op
        result = await self.session.execute(
            update(Coupon)
            .where(Coupon.coupon_id == coupon.coupon_id, Coupon.used_count == coupon.used_count)
            .values(used_count=Coupon.used_count + 1, users_used=[*(coupon.users_used or []), user_id])
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Coupon was redeemed concurrently, please retry")
        await self.session.refresh(coupon)

        snapshot = AppliedDiscount(coupon_id=coupon.coupon_id, code=coupon.code, type=coupon.type, value=coupon.value)
        cart.applied_discount = snapshot.to_dict()
        cart.touch()
        await self.session.flush()

        logger.info(
            "Coupon redeemed",
            code=coupon.code,
            user_id=user_id,
            cart_id=cart.cart_id,
            used_count=coupon.used_count,
        )

    async def remove(self, cart: Cart) -> None:
        cart.applied_discount = None
        cart.touch()
        await self.session.flush()

    async def _deactivate(self, coupon: Coupon) -> None:
        await self.session.execute(
            update(Coupon)
            .where(Coupon.coupon_id == coupon.coupon_id, Coupon.status == CouponStatus.ACTIVE.value)
            .values(status=CouponStatus.INACTIVE.value)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(coupon)
        logger.info("Expired coupon deactivated", code=coupon.code, coupon_id=coupon.coupon_id)
