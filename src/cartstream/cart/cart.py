"""Shopping cart aggregate — cart header plus its line items.

One cart per user, created lazily on the first mutation and never deleted; an
emptied cart stays in place. Lines are unique per (cart, product) and always
hold a quantity in [1, 99]. Each line caches the discounted unit price it was
last priced at; the cached price is refreshed whenever the cart is read.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cartstream.cart.lines import MAX_QUANTITY, MIN_QUANTITY, LineDraft
from cartstream.cart.pricing import AppliedDiscount
from cartstream.utils.db import Base


def _now() -> datetime:
    return datetime.now(UTC)


class Cart(Base):
    __tablename__ = "carts"

    cart_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    applied_discount: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=None)
    tax_rate: Mapped[float] = mapped_column(Float, nullable=False)
    shipping: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    lines: Mapped[list["CartLine"]] = relationship(
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartLine.id",
        lazy="selectin",
    )

    @property
    def discount(self) -> AppliedDiscount | None:
        return AppliedDiscount.from_dict(self.applied_discount)

    def line_for(self, product_id: str) -> "CartLine | None":
        return next((line for line in self.lines if line.product_id == str(product_id)), None)

    def touch(self) -> None:
        self.updated_at = _now()


class CartLine(Base):
    __tablename__ = "cart_lines"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_lines_cart_product"),
        CheckConstraint(
            f"quantity >= {MIN_QUANTITY} AND quantity <= {MAX_QUANTITY}",
            name="ck_cart_lines_quantity_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cart_id: Mapped[str] = mapped_column(ForeignKey("carts.cart_id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    cart: Mapped[Cart] = relationship(back_populates="lines")

    def to_draft(self) -> LineDraft:
        return LineDraft(product_id=self.product_id, quantity=self.quantity, price=self.price)
