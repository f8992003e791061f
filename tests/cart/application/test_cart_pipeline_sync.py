"""Application tests for synchronous cart mutations."""

import pytest
from sqlalchemy import update

from cartstream.cart.pricing import unit_price
from cartstream.catalogue.product import Product
from cartstream.exceptions import ObjectNotFoundError, StaleStateError, ValidationError

pytestmark = pytest.mark.anyio


async def _set_price(cart_domain, product_id, price, discount_percent=0.0):
    async with cart_domain.session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Product)
                .where(Product.product_id == product_id)
                .values(price=price, discount_percent=discount_percent)
            )


class TestGetCart:
    async def test_absent_cart_is_zero_state(self, pipeline, user_id):
        view = await pipeline.get_cart(user_id)
        assert view.cart_id is None
        assert view.user_id == user_id
        assert view.items == []
        assert view.total == 0
        assert view.tax_rate == 0.13
        assert view.optimistic is False

    async def test_blank_user_is_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            await pipeline.get_cart("  ")

    async def test_prices_are_refreshed_on_read(self, cart_domain, pipeline, make_product, user_id):
        product = await make_product(price=100)
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)

        await _set_price(cart_domain, product.product_id, 80, discount_percent=25)

        view = await pipeline.get_cart(user_id)
        assert view.items[0].price == 60.0
        assert view.subtotal == 60.0

    async def test_orphaned_line_keeps_last_price(self, pipeline, make_product, delete_product, user_id):
        product = await make_product(price=40)
        await pipeline.add_item(user_id, product.product_id, 2, optimistic=False)

        await delete_product(product.product_id)

        view = await pipeline.get_cart(user_id)
        assert len(view.items) == 1
        assert view.items[0].price == 40.0
        assert view.items[0].product_name is None
        assert view.subtotal == 80.0


class TestAddItem:
    @pytest.mark.parametrize("quantity", [1, 7, 99])
    async def test_add_then_get(self, pipeline, make_product, user_id, quantity):
        product = await make_product(price=12.5, discount_percent=10)
        await pipeline.add_item(user_id, product.product_id, quantity, optimistic=False)

        view = await pipeline.get_cart(user_id)
        assert view.items[0].quantity == quantity
        assert view.items[0].price == unit_price(product)
        assert view.items[0].product_name == product.name

    async def test_two_units_at_one_hundred(self, pipeline, make_product, user_id):
        product = await make_product(price=100)
        view = await pipeline.add_item(user_id, product.product_id, 2, optimistic=False)

        assert view.cart_id is not None
        assert view.subtotal == 200.0
        assert view.tax == 26.0
        assert view.total == 226.0

    async def test_same_product_merges_and_caps(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 60, optimistic=False)
        view = await pipeline.add_item(user_id, product.product_id, 60, optimistic=False)

        assert len(view.items) == 1
        assert view.items[0].quantity == 99

    async def test_quantity_is_clamped(self, pipeline, make_product, user_id):
        product = await make_product()
        view = await pipeline.add_item(user_id, product.product_id, 0, optimistic=False)
        assert view.items[0].quantity == 1

    async def test_missing_product(self, pipeline, user_id):
        with pytest.raises(ObjectNotFoundError):
            await pipeline.add_item(user_id, "no-such-product", 1, optimistic=False)

        view = await pipeline.get_cart(user_id)
        assert view.cart_id is None

    @pytest.mark.parametrize("quantity", ["2", 1.5, None, True])
    async def test_non_integer_quantity(self, pipeline, make_product, user_id, quantity):
        product = await make_product()
        with pytest.raises(ValidationError):
            await pipeline.add_item(user_id, product.product_id, quantity, optimistic=False)

    async def test_blank_product(self, pipeline, user_id):
        with pytest.raises(ValidationError):
            await pipeline.add_item(user_id, "", 1, optimistic=False)


class TestUpdateItem:
    async def test_sets_quantity(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)

        view = await pipeline.update_item(user_id, product.product_id, 5, optimistic=False)
        assert view.items[0].quantity == 5

    async def test_clamps_quantity(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)

        view = await pipeline.update_item(user_id, product.product_id, 250, optimistic=False)
        assert view.items[0].quantity == 99

    async def test_zero_removes_line(self, pipeline, make_product, user_id):
        p1 = await make_product(price=100)
        p2 = await make_product(price=10)
        await pipeline.add_item(user_id, p1.product_id, 2, optimistic=False)
        await pipeline.add_item(user_id, p2.product_id, 1, optimistic=False)

        view = await pipeline.update_item(user_id, p1.product_id, 0, optimistic=False)
        assert [item.product_id for item in view.items] == [p2.product_id]
        assert view.subtotal == 10.0

    async def test_absent_cart(self, pipeline, user_id):
        with pytest.raises(ObjectNotFoundError):
            await pipeline.update_item(user_id, "p1", 2, optimistic=False)

    async def test_absent_line(self, pipeline, make_product, user_id):
        p1 = await make_product()
        await pipeline.add_item(user_id, p1.product_id, 1, optimistic=False)

        with pytest.raises(ObjectNotFoundError):
            await pipeline.update_item(user_id, "not-in-cart", 2, optimistic=False)

    async def test_vanished_product_is_stale(self, pipeline, make_product, delete_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)
        await delete_product(product.product_id)

        with pytest.raises(StaleStateError):
            await pipeline.update_item(user_id, product.product_id, 3, optimistic=False)

        view = await pipeline.get_cart(user_id)
        assert view.items[0].quantity == 1

    async def test_vanished_product_can_still_be_zeroed(self, pipeline, make_product, delete_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)
        await delete_product(product.product_id)

        view = await pipeline.update_item(user_id, product.product_id, 0, optimistic=False)
        assert view.items == []


class TestRemoveItem:
    async def test_removes_line(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 3, optimistic=False)

        view = await pipeline.remove_item(user_id, product.product_id, optimistic=False)
        assert view.items == []
        assert view.cart_id is not None

    async def test_absent_line_is_a_no_op(self, pipeline, make_product, user_id):
        product = await make_product()
        before = await pipeline.add_item(user_id, product.product_id, 3, optimistic=False)

        after = await pipeline.remove_item(user_id, "not-in-cart", optimistic=False)
        assert after == before

    async def test_absent_cart(self, pipeline, user_id):
        with pytest.raises(ObjectNotFoundError):
            await pipeline.remove_item(user_id, "p1", optimistic=False)


class TestClearCart:
    async def test_clear_twice_is_identical(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 3, optimistic=False)

        first = await pipeline.clear_cart(user_id, optimistic=False)
        second = await pipeline.clear_cart(user_id, optimistic=False)

        assert first == second
        assert first.items == []
        assert first.total == 0

    async def test_clear_absent_cart_creates_nothing(self, pipeline, user_id):
        view = await pipeline.clear_cart(user_id, optimistic=False)
        assert view.cart_id is None

        view = await pipeline.get_cart(user_id)
        assert view.cart_id is None

    async def test_clear_drops_discount(self, pipeline, make_product, make_coupon, user_id):
        product = await make_product(price=100)
        coupon = await make_coupon(code="CLEAR10", value=10)
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)
        await pipeline.apply_discount_code(user_id, coupon.code)

        view = await pipeline.clear_cart(user_id, optimistic=False)
        assert view.discount is None
        assert view.discount_amount == 0


class TestReplaceCart:
    async def test_replace_then_get_returns_normalized_items(self, pipeline, make_product, user_id):
        p1 = await make_product()
        p2 = await make_product()
        p3 = await make_product()
        await pipeline.add_item(user_id, p3.product_id, 1, optimistic=False)

        await pipeline.replace_cart(
            user_id,
            [
                {"product_id": p1.product_id, "quantity": 3},
                {"product_id": "missing-product", "quantity": 2},
                {"product_id": p2.product_id, "quantity": 0},
                {"product_id": p2.product_id, "quantity": 4},
                {"product_id": p1.product_id, "quantity": 500},
            ],
        )

        view = await pipeline.get_cart(user_id)
        assert [(item.product_id, item.quantity) for item in view.items] == [
            (p1.product_id, 99),
            (p2.product_id, 4),
        ]

    async def test_replace_keeps_existing_products(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)

        view = await pipeline.replace_cart(user_id, [{"product_id": product.product_id, "quantity": 6}])
        assert [(item.product_id, item.quantity) for item in view.items] == [(product.product_id, 6)]

    async def test_replace_with_nothing_empties_cart(self, pipeline, make_product, user_id):
        product = await make_product()
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)

        view = await pipeline.replace_cart(user_id, [])
        assert view.items == []
        assert view.cart_id is not None

    async def test_replace_keeps_discount(self, pipeline, make_product, make_coupon, user_id):
        product = await make_product(price=50)
        coupon = await make_coupon(code="KEEP5", discount_type="fixed", value=5)
        await pipeline.add_item(user_id, product.product_id, 1, optimistic=False)
        await pipeline.apply_discount_code(user_id, coupon.code)

        view = await pipeline.replace_cart(user_id, [{"product_id": product.product_id, "quantity": 2}])
        assert view.discount.code == "KEEP5"
        assert view.discount_amount == 5.0
