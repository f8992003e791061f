from uuid import uuid4

import pytest
from faker import Faker
from sqlalchemy import delete

from cartstream.catalogue.product import Product
from cartstream.coupon.coupon import Coupon, CouponStatus, normalize_code
from cartstream.coupon.ledger import CouponLedger

fake = Faker()


@pytest.fixture
def user_id():
    return f"user-{uuid4().hex[:8]}"


@pytest.fixture
def make_product(cart_domain):
    """Insert a catalogue product; price defaults to a random amount."""

    async def _make(price: float | None = None, discount_percent: float = 0.0, name: str | None = None) -> Product:
        product = Product(
            name=name or fake.catch_phrase()[:255],
            price=price if price is not None else fake.pyfloat(min_value=1, max_value=500, right_digits=2),
            discount_percent=discount_percent,
        )
        async with cart_domain.session_factory() as session:
            async with session.begin():
                session.add(product)
        return product

    return _make


@pytest.fixture
def delete_product(cart_domain):
    async def _delete(product_id: str) -> None:
        async with cart_domain.session_factory() as session:
            async with session.begin():
                await session.execute(delete(Product).where(Product.product_id == product_id))

    return _delete


@pytest.fixture
def make_coupon(cart_domain):
    async def _make(code: str | None = None, discount_type: str = "percent", value: float = 15, **fields) -> Coupon:
        coupon = Coupon(
            code=normalize_code(code or f"{fake.word()}{fake.random_int(10, 99)}"),
            discount_type=discount_type,
            value=value,
            used_count=fields.pop("used_count", 0),
            users_used=fields.pop("users_used", []),
            status=fields.pop("status", CouponStatus.ACTIVE.value),
            **fields,
        )
        async with cart_domain.session_factory() as session:
            async with session.begin():
                session.add(coupon)
        return coupon

    return _make


@pytest.fixture
def load_coupon(cart_domain):
    async def _load(code: str) -> Coupon | None:
        async with cart_domain.session_factory() as session:
            return await CouponLedger(session).find(code)

    return _load
