"""Events pushed to cart subscribers once a queued mutation settles."""

from datetime import UTC, datetime
from typing import ClassVar

from pydantic import BaseModel, Field

from cartstream.projections.cart_view import CartView


def _now() -> datetime:
    return datetime.now(UTC)


class CartEvent(BaseModel):
    name: ClassVar[str]

    user_id: str
    mutation_id: str | None = None
    operation: str
    occurred_at: datetime = Field(default_factory=_now)


class CartUpdated(CartEvent):
    """A queued mutation was applied; ``state`` is the authoritative cart."""

    name: ClassVar[str] = "cart.updated"

    state: CartView


class CartFailed(CartEvent):
    """A queued mutation was dropped without being applied."""

    name: ClassVar[str] = "cart.failed"

    reason: str
