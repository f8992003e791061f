"""FastAPI routes for carts, discount codes and the cart event stream."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from cartstream.api.schemas import (
    AddItemRequest,
    ApplyDiscountRequest,
    CouponValidationResponse,
    ReplaceCartRequest,
    UpdateItemRequest,
    ValidateCouponRequest,
)
from cartstream.cart.pipeline import MutationPipeline
from cartstream.domain import CartDomain
from cartstream.notifications.stream import event_stream
from cartstream.projections.cart_view import CartView


def get_domain(request: Request) -> CartDomain:
    return request.app.state.cart_domain


def get_pipeline(request: Request) -> MutationPipeline:
    return get_domain(request).pipeline


Pipeline = Annotated[MutationPipeline, Depends(get_pipeline)]

# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.get("/{user_id}", response_model=CartView)
async def get_cart(user_id: str, pipeline: Pipeline) -> CartView:
    return await pipeline.get_cart(user_id)


@cart_router.post("/{user_id}/items", response_model=CartView)
async def add_cart_item(user_id: str, body: AddItemRequest, pipeline: Pipeline) -> CartView:
    return await pipeline.add_item(user_id, body.product_id, body.quantity, optimistic=body.optimistic)


@cart_router.put("/{user_id}/items/{product_id}", response_model=CartView)
async def update_cart_item(user_id: str, product_id: str, body: UpdateItemRequest, pipeline: Pipeline) -> CartView:
    return await pipeline.update_item(user_id, product_id, body.quantity, optimistic=body.optimistic)


@cart_router.delete("/{user_id}/items/{product_id}", response_model=CartView)
async def remove_cart_item(user_id: str, product_id: str, pipeline: Pipeline, optimistic: bool = True) -> CartView:
    return await pipeline.remove_item(user_id, product_id, optimistic=optimistic)


@cart_router.delete("/{user_id}/items", response_model=CartView)
async def clear_cart(user_id: str, pipeline: Pipeline, optimistic: bool = True) -> CartView:
    return await pipeline.clear_cart(user_id, optimistic=optimistic)


@cart_router.put("/{user_id}", response_model=CartView)
async def replace_cart(user_id: str, body: ReplaceCartRequest, pipeline: Pipeline) -> CartView:
    return await pipeline.replace_cart(user_id, [item.model_dump() for item in body.items])


@cart_router.post("/{user_id}/discount", response_model=CartView)
async def apply_discount(user_id: str, body: ApplyDiscountRequest, pipeline: Pipeline) -> CartView:
    return await pipeline.apply_discount_code(user_id, body.code)


@cart_router.delete("/{user_id}/discount", response_model=CartView)
async def remove_discount(user_id: str, pipeline: Pipeline) -> CartView:
    return await pipeline.remove_discount_code(user_id)


# ---------------------------------------------------------------------------
# Coupon Router
# ---------------------------------------------------------------------------
coupon_router = APIRouter(prefix="/coupons", tags=["coupons"])


@coupon_router.post("/validate", response_model=CouponValidationResponse)
async def validate_coupon(body: ValidateCouponRequest, pipeline: Pipeline) -> CouponValidationResponse:
    check = await pipeline.validate_discount_code(body.code, body.order_total, body.user_id)
    check.raise_if_invalid()
    return CouponValidationResponse(
        valid=True,
        code=check.coupon.code,
        discount_type=check.coupon.discount_type,
        value=check.coupon.value,
        discount_amount=check.discount_amount,
        final_total=check.final_total,
    )


# ---------------------------------------------------------------------------
# Events Router
# ---------------------------------------------------------------------------
events_router = APIRouter(prefix="/events", tags=["events"])


@events_router.get("/{user_id}")
async def cart_events(user_id: str, request: Request) -> StreamingResponse:
    """Server-sent ``cart.updated`` / ``cart.failed`` events for one user."""
    domain = get_domain(request)
    return StreamingResponse(
        event_stream(domain.notifier, user_id, domain.settings.keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
