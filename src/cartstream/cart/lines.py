"""Cart line rules shared by the optimistic projection and the authoritative path.

Both execution paths call into this module so that a projection and the
persisted outcome agree whenever they start from the same state.
"""

from dataclasses import dataclass

MIN_QUANTITY = 1
MAX_QUANTITY = 99


def clamp_quantity(quantity: int) -> int:
    return max(MIN_QUANTITY, min(MAX_QUANTITY, quantity))


def merged_quantity(current: int, delta: int) -> int:
    """Quantity after adding ``delta`` to an existing line, capped at 99."""
    return min(MAX_QUANTITY, current + delta)


def normalize_items(items) -> dict[str, int]:
    """Normalize a full-replace payload into ``{product_id: quantity}``.

    Entries without a product id or with a non-positive (or non-integer)
    quantity are dropped, quantities are clamped to [1, 99], and duplicates
    keep the quantity of their last occurrence at the position of their first.
    """
    normalized: dict[str, int] = {}
    for item in items or ():
        if not item:
            continue
        product_id = item.get("product_id")
        raw_quantity = item.get("quantity")
        if not product_id or isinstance(raw_quantity, bool):
            continue
        if isinstance(raw_quantity, float) and not raw_quantity.is_integer():
            continue
        try:
            quantity = int(raw_quantity)
        except (TypeError, ValueError, OverflowError):
            continue
        if quantity <= 0:
            continue
        normalized[str(product_id)] = clamp_quantity(quantity)
    return normalized


@dataclass
class LineDraft:
    """Detached, in-memory copy of a cart line used for projections."""

    product_id: str
    quantity: int
    price: float
    product_name: str | None = None


def apply_add(lines: list[LineDraft], product_id: str, quantity: int, price: float) -> list[LineDraft]:
    quantity = clamp_quantity(quantity)
    result = [LineDraft(**vars(line)) for line in lines]
    for line in result:
        if line.product_id == product_id:
            line.quantity = merged_quantity(line.quantity, quantity)
            line.price = price
            return result
    result.append(LineDraft(product_id=product_id, quantity=quantity, price=price))
    return result


def apply_set_quantity(
    lines: list[LineDraft], product_id: str, quantity: int, price: float | None = None
) -> list[LineDraft]:
    """Replace a line's quantity; ``quantity <= 0`` drops it. Absent lines are left alone."""
    result = []
    for line in lines:
        if line.product_id != product_id:
            result.append(LineDraft(**vars(line)))
            continue
        if quantity <= 0:
            continue
        updated = LineDraft(**vars(line))
        updated.quantity = clamp_quantity(quantity)
        if price is not None:
            updated.price = price
        result.append(updated)
    return result


def apply_remove(lines: list[LineDraft], product_id: str) -> list[LineDraft]:
    return [LineDraft(**vars(line)) for line in lines if line.product_id != product_id]
