"""cartstream FastAPI application.

Serves the cart API and the per-user event stream. The cart domain is
initialized in the app lifespan and drained on shutdown.

Usage:
    uvicorn cartstream.app:app --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from protean.integrations.fastapi import register_exception_handlers

from cartstream.api import cart_router, conflict_error_handler, coupon_router, events_router
from cartstream.api.schemas import HealthResponse
from cartstream.domain import CartDomain, cart_domain
from cartstream.exceptions import ConflictError
from cartstream.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def create_app(domain: CartDomain | None = None) -> FastAPI:
    domain = domain or cart_domain

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await domain.init()
        yield
        await domain.shutdown()

    app = FastAPI(
        title="cartstream API",
        description="Shopping cart mutations with optimistic responses and pushed updates",
        lifespan=lifespan,
    )
    app.state.cart_domain = domain

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    # Starlette resolves handlers along the MRO, so this wins over protean's 422
    app.add_exception_handler(ConflictError, conflict_error_handler)

    app.include_router(cart_router)
    app.include_router(coupon_router)
    app.include_router(events_router)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        current = request.app.state.cart_domain
        return HealthResponse(
            env=current.settings.env,
            pending_jobs=current.queue.pending() if current.queue is not None else 0,
        )

    return app


configure_logging(cart_domain.settings.log_level, cart_domain.settings.log_format)
app = create_app()
