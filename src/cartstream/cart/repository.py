"""Authoritative cart storage: read, refresh and write primitives.

All methods work inside the caller's session and transaction; the caller
(the mutation pipeline) owns the unit of work and the per-user lock.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cartstream.cart.cart import Cart, CartLine
from cartstream.cart.lines import LineDraft, clamp_quantity, merged_quantity
from cartstream.cart.pricing import summarize, unit_price
from cartstream.catalogue.product import Product, ProductCatalogue
from cartstream.exceptions import ObjectNotFoundError, StaleStateError
from cartstream.projections.cart_view import CartView

logger = structlog.get_logger(__name__)


class CartRepository:
    def __init__(self, session: AsyncSession, default_tax_rate: float, default_shipping: float = 0.0):
        self.session = session
        self.catalogue = ProductCatalogue(session)
        self.default_tax_rate = default_tax_rate
        self.default_shipping = default_shipping

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get(self, user_id: str) -> Cart | None:
        result = await self.session.execute(select(Cart).where(Cart.user_id == str(user_id)))
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> Cart:
        cart = await self.get(user_id)
        if cart is None:
            cart = Cart(
                user_id=str(user_id),
                tax_rate=self.default_tax_rate,
                shipping=self.default_shipping,
                lines=[],
            )
            self.session.add(cart)
            await self.session.flush()
            logger.info("Cart created", user_id=str(user_id), cart_id=cart.cart_id)
        return cart

    async def snapshot(self, user_id: str) -> tuple[Cart | None, list[LineDraft]]:
        """Header plus detached line copies, without touching products."""
        cart = await self.get(user_id)
        if cart is None:
            return None, []
        return cart, [line.to_draft() for line in cart.lines]

    async def fetch(self, user_id: str) -> CartView:
        """Current cart with every line re-priced against the catalogue.

        Lines whose product no longer exists keep their last-known price. The
        refreshed prices and the computed total are written back to the cart.
        """
        cart = await self.get(user_id)
        if cart is None:
            return self.zero_state(user_id)

        products = await self.catalogue.get_many(line.product_id for line in cart.lines)
        drafts = []
        for line in cart.lines:
            product = products.get(line.product_id)
            if product is None:
                logger.debug("Cart line product missing, keeping cached price", product_id=line.product_id)
            else:
                price = unit_price(product)
                if line.price != price:
                    line.price = price
            drafts.append(
                LineDraft(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.price,
                    product_name=product.name if product is not None else None,
                )
            )

        view = CartView.build(
            user_id=cart.user_id,
            cart_id=cart.cart_id,
            lines=drafts,
            totals=summarize(drafts, cart.tax_rate, cart.shipping, cart.discount),
        )
        if cart.total != view.total:
            cart.total = view.total
        await self.session.flush()
        return view

    def zero_state(self, user_id: str) -> CartView:
        return CartView.build(
            user_id=str(user_id),
            cart_id=None,
            lines=[],
            totals=summarize([], self.default_tax_rate, self.default_shipping),
        )

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def upsert_line(self, cart: Cart, product: Product, delta: int) -> CartLine:
        price = unit_price(product)
        line = cart.line_for(product.product_id)
        if line is not None:
            line.quantity = merged_quantity(line.quantity, clamp_quantity(delta))
            line.price = price
        else:
            line = CartLine(product_id=product.product_id, quantity=clamp_quantity(delta), price=price)
            cart.lines.append(line)
        cart.touch()
        await self.session.flush()
        return line

    async def set_line_quantity(self, cart: Cart, product_id: str, quantity: int) -> CartLine | None:
        """Replace a line's quantity and re-price it; ``quantity <= 0`` deletes the line."""
        line = cart.line_for(product_id)
        if line is None:
            raise ObjectNotFoundError("Item not found in cart")

        if quantity <= 0:
            await self.remove_line(cart, product_id)
            return None

        product = await self.catalogue.get(product_id)
        if product is None:
            raise StaleStateError(f"Product {product_id} no longer exists")

        line.quantity = clamp_quantity(quantity)
        line.price = unit_price(product)
        cart.touch()
        await self.session.flush()
        return line

    async def remove_line(self, cart: Cart, product_id: str) -> bool:
        line = cart.line_for(product_id)
        if line is None:
            return False
        cart.lines.remove(line)
        cart.touch()
        await self.session.flush()
        return True

    async def clear_all_lines(self, cart: Cart) -> None:
        cart.lines.clear()
        cart.touch()
        await self.session.flush()

    async def replace_all_lines(self, cart: Cart, normalized: dict[str, int]) -> list[CartLine]:
        """Delete every line, then insert ``normalized`` ({product_id: quantity}).

        Products that no longer exist are skipped.
        """
        cart.lines.clear()
        # Deletes must reach the database before re-inserting the same products
        await self.session.flush()

        products = await self.catalogue.get_many(normalized)
        for product_id, quantity in normalized.items():
            product = products.get(product_id)
            if product is None:
                logger.warning("Product not found during cart replace, skipping", product_id=product_id)
                continue
            cart.lines.append(CartLine(product_id=product_id, quantity=quantity, price=unit_price(product)))

        cart.touch()
        await self.session.flush()
        return list(cart.lines)
