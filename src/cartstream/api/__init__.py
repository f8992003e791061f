"""Cart API package."""
from cartstream.api.errors import conflict_error_handler
from cartstream.api.routes import cart_router, coupon_router, events_router

__all__ = ["cart_router", "conflict_error_handler", "coupon_router", "events_router"]
