"""Pydantic request/response schemas for the cart API.

Responses for cart reads and mutations reuse ``CartView`` directly.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Cart Request Schemas
# ---------------------------------------------------------------------------
class AddItemRequest(BaseModel):
    product_id: str
    quantity: int = 1
    optimistic: bool = True

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "0b7e7f57-7c1f-4a50-9a4c-2f0f3d2c9b11",
                    "quantity": 2,
                    "optimistic": True,
                }
            ]
        }
    }


class UpdateItemRequest(BaseModel):
    quantity: int
    optimistic: bool = True


class ReplaceItemSchema(BaseModel):
    product_id: str | None = None
    quantity: int | float | str | None = None


class ReplaceCartRequest(BaseModel):
    items: list[ReplaceItemSchema] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Coupon Schemas
# ---------------------------------------------------------------------------
class ApplyDiscountRequest(BaseModel):
    code: str


class ValidateCouponRequest(BaseModel):
    code: str
    order_total: float
    user_id: str | None = None


class CouponValidationResponse(BaseModel):
    valid: bool
    code: str
    discount_type: str
    value: float
    discount_amount: float
    final_total: float


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str = "ok"
    env: str
    pending_jobs: int
