"""Cart view — the cart state returned to callers and pushed to subscribers."""

from collections.abc import Iterable

from pydantic import BaseModel

from cartstream.cart.lines import LineDraft
from cartstream.cart.pricing import CartTotals


class CartItemView(BaseModel):
    product_id: str
    quantity: int
    price: float
    product_name: str | None = None


class DiscountView(BaseModel):
    type: str
    value: float
    code: str


class CartView(BaseModel):
    cart_id: str | None
    user_id: str
    items: list[CartItemView]
    subtotal: float
    tax_rate: float
    tax: float
    shipping: float
    discount: DiscountView | None = None
    discount_amount: float
    total: float
    optimistic: bool = False
    mutation_id: str | None = None

    @classmethod
    def build(
        cls,
        user_id: str,
        cart_id: str | None,
        lines: Iterable[LineDraft],
        totals: CartTotals,
        optimistic: bool = False,
        mutation_id: str | None = None,
    ) -> "CartView":
        discount = totals.discount
        return cls(
            cart_id=cart_id,
            user_id=str(user_id),
            items=[
                CartItemView(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.price,
                    product_name=line.product_name,
                )
                for line in lines
            ],
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax=totals.tax,
            shipping=totals.shipping,
            discount=(
                DiscountView(type=discount.type.value, value=discount.value, code=discount.code)
                if discount is not None
                else None
            ),
            discount_amount=totals.discount_amount,
            total=totals.total,
            optimistic=optimistic,
            mutation_id=mutation_id,
        )
