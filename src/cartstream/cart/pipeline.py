"""Cart mutation pipeline — optimistic projections plus authoritative writes.

Every cart mutation can run two ways:

    - synchronously: applied inside one transaction under the user's lock,
      returning the persisted, re-priced cart;
    - optimistically (the default for add/update/remove/clear): the delta is
      projected in memory over an unlocked snapshot and returned at once,
      tagged with a ``mutation_id``, while the same operation is queued for
      the user's partition. When the job settles, a ``cart.updated`` or
      ``cart.failed`` event carries the outcome to subscribers.

Both paths share the line rules in ``cartstream.cart.lines``, so a projection
matches the persisted result whenever both start from the same state.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from functools import partial
from uuid import uuid4
from weakref import WeakValueDictionary

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cartstream.cart.events import CartFailed, CartUpdated
from cartstream.cart.lines import LineDraft, apply_add, apply_remove, apply_set_quantity, normalize_items
from cartstream.cart.pricing import summarize, unit_price
from cartstream.cart.repository import CartRepository
from cartstream.config import Settings
from cartstream.coupon.ledger import CouponCheck, CouponLedger
from cartstream.exceptions import ObjectNotFoundError, ValidationError, reason_for
from cartstream.jobs.queue import Job, JobQueue
from cartstream.notifications.notifier import Notifier
from cartstream.projections.cart_view import CartView
from cartstream.utils.db import WRITE_OPTIONS

logger = structlog.get_logger(__name__)

Projector = Callable[[CartRepository, list[LineDraft]], Awaitable[list[LineDraft]]]


def _require_id(value, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError({field: [f"{field} is required"]})
    return str(value).strip()


def _require_quantity(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError({"quantity": ["Quantity must be an integer"]})
    return value


def new_mutation_id(operation: str) -> str:
    return f"{operation}_{uuid4().hex[:12]}"


class MutationPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        queue: JobQueue,
        notifier: Notifier,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.queue = queue
        self.notifier = notifier
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

        queue.on_success = self._on_applied
        queue.on_failure = self._on_failed
        queue.register("add_item", partial(self.add_item, optimistic=False))
        queue.register("update_item", partial(self.update_item, optimistic=False))
        queue.register("remove_item", partial(self.remove_item, optimistic=False))
        queue.register("clear_cart", partial(self.clear_cart, optimistic=False))

    # -------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------
    def _repository(self, session: AsyncSession) -> CartRepository:
        return CartRepository(session, self.settings.default_tax_rate, self.settings.default_shipping)

    def lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def _unit_of_work(self, user_id: str, write: bool = True):
        """Session with an open transaction, held under the user's lock.

        Commits on a clean exit and rolls back when the block raises. A
        writing unit takes the database write lock when it begins.
        """
        async with self.lock_for(user_id):
            async with self.session_factory() as session:
                async with session.begin():
                    if write:
                        await session.connection(execution_options=WRITE_OPTIONS)
                    yield session

    async def _project(self, operation: str, user_id: str, payload: dict, project: Projector) -> CartView:
        mutation_id = new_mutation_id(operation)

        async with self.session_factory() as session:
            repo = self._repository(session)
            cart, drafts = await repo.snapshot(user_id)
            drafts = await project(repo, drafts)

        if operation == "clear_cart" or cart is None:
            discount = None
        else:
            discount = cart.discount
        totals = summarize(
            drafts,
            cart.tax_rate if cart is not None else self.settings.default_tax_rate,
            cart.shipping if cart is not None else self.settings.default_shipping,
            discount,
        )
        view = CartView.build(
            user_id=user_id,
            cart_id=cart.cart_id if cart is not None else None,
            lines=drafts,
            totals=totals,
            optimistic=True,
            mutation_id=mutation_id,
        )

        self.queue.enqueue(operation, {"user_id": user_id, **payload}, partition_key=user_id, mutation_id=mutation_id)
        logger.debug("Optimistic mutation projected", operation=operation, user_id=user_id, mutation_id=mutation_id)
        return view

    async def _on_applied(self, job: Job, state: CartView) -> None:
        self.notifier.publish(
            CartUpdated(
                user_id=job.partition_key,
                mutation_id=job.mutation_id,
                operation=job.operation,
                state=state,
            )
        )

    async def _on_failed(self, job: Job, exc: Exception) -> None:
        reason = reason_for(exc)
        self.notifier.publish(
            CartFailed(
                user_id=job.partition_key,
                mutation_id=job.mutation_id,
                operation=job.operation,
                reason=reason,
            )
        )

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get_cart(self, user_id: str) -> CartView:
        user_id = _require_id(user_id, "user_id")
        async with self._unit_of_work(user_id, write=False) as session:
            return await self._repository(session).fetch(user_id)

    # -------------------------------------------------------------------
    # Line mutations
    # -------------------------------------------------------------------
    async def add_item(self, user_id: str, product_id: str, quantity: int = 1, optimistic: bool = True) -> CartView:
        user_id = _require_id(user_id, "user_id")
        product_id = _require_id(product_id, "product_id")
        quantity = _require_quantity(quantity)

        if optimistic:

            async def project(repo: CartRepository, drafts: list[LineDraft]) -> list[LineDraft]:
                product = await repo.catalogue.get(product_id)
                if product is None:
                    raise ObjectNotFoundError("Product not found")
                return apply_add(drafts, product_id, quantity, unit_price(product))

            return await self._project(
                "add_item", user_id, {"product_id": product_id, "quantity": quantity}, project
            )

        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            product = await repo.catalogue.get(product_id)
            if product is None:
                raise ObjectNotFoundError("Product not found")
            cart = await repo.get_or_create(user_id)
            line = await repo.upsert_line(cart, product, quantity)
            logger.info("Cart line added", user_id=user_id, product_id=product_id, quantity=line.quantity)
            return await repo.fetch(user_id)

    async def update_item(self, user_id: str, product_id: str, quantity: int, optimistic: bool = True) -> CartView:
        user_id = _require_id(user_id, "user_id")
        product_id = _require_id(product_id, "product_id")
        quantity = _require_quantity(quantity)

        if optimistic:

            async def project(repo: CartRepository, drafts: list[LineDraft]) -> list[LineDraft]:
                price = None
                if quantity > 0 and any(line.product_id == product_id for line in drafts):
                    product = await repo.catalogue.get(product_id)
                    if product is not None:
                        price = unit_price(product)
                return apply_set_quantity(drafts, product_id, quantity, price)

            return await self._project(
                "update_item", user_id, {"product_id": product_id, "quantity": quantity}, project
            )

        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            cart = await repo.get(user_id)
            if cart is None:
                raise ObjectNotFoundError("Cart not found")
            line = await repo.set_line_quantity(cart, product_id, quantity)
            if line is None:
                logger.info("Cart line removed", user_id=user_id, product_id=product_id)
            else:
                logger.info("Cart line updated", user_id=user_id, product_id=product_id, quantity=line.quantity)
            return await repo.fetch(user_id)

    async def remove_item(self, user_id: str, product_id: str, optimistic: bool = True) -> CartView:
        user_id = _require_id(user_id, "user_id")
        product_id = _require_id(product_id, "product_id")

        if optimistic:

            async def project(repo: CartRepository, drafts: list[LineDraft]) -> list[LineDraft]:
                return apply_remove(drafts, product_id)

            return await self._project("remove_item", user_id, {"product_id": product_id}, project)

        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            cart = await repo.get(user_id)
            if cart is None:
                raise ObjectNotFoundError("Cart not found")
            if await repo.remove_line(cart, product_id):
                logger.info("Cart line removed", user_id=user_id, product_id=product_id)
            return await repo.fetch(user_id)

    async def clear_cart(self, user_id: str, optimistic: bool = True) -> CartView:
        user_id = _require_id(user_id, "user_id")

        if optimistic:

            async def project(repo: CartRepository, drafts: list[LineDraft]) -> list[LineDraft]:
                return []

            return await self._project("clear_cart", user_id, {}, project)

        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            cart = await repo.get(user_id)
            if cart is None:
                return repo.zero_state(user_id)
            await repo.clear_all_lines(cart)
            cart.applied_discount = None
            logger.info("Cart cleared", user_id=user_id, cart_id=cart.cart_id)
            return await repo.fetch(user_id)

    async def replace_cart(self, user_id: str, items) -> CartView:
        """Replace every line with ``items`` (a list of ``{product_id, quantity}``)."""
        user_id = _require_id(user_id, "user_id")
        normalized = normalize_items(items)

        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            cart = await repo.get_or_create(user_id)
            lines = await repo.replace_all_lines(cart, normalized)
            logger.info("Cart replaced", user_id=user_id, cart_id=cart.cart_id, lines=len(lines))
            return await repo.fetch(user_id)

    # -------------------------------------------------------------------
    # Discount codes
    # -------------------------------------------------------------------
    async def apply_discount_code(self, user_id: str, code: str) -> CartView:
        user_id = _require_id(user_id, "user_id")
        code = _require_id(code, "code")

        # The transaction must commit even when the code is rejected, so that
        # an expiry-triggered deactivation is kept.
        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            ledger = CouponLedger(session)
            current = await repo.fetch(user_id)
            check = await ledger.validate(code, current.subtotal, user_id)
            if check.valid:
                cart = await repo.get_or_create(user_id)
                await ledger.apply(cart, check.coupon, user_id)
                view = await repo.fetch(user_id)

        if not check.valid:
            logger.info("Discount code rejected", user_id=user_id, code=code, reason=check.reason)
            check.raise_if_invalid()
        return view

    async def remove_discount_code(self, user_id: str) -> CartView:
        user_id = _require_id(user_id, "user_id")
        async with self._unit_of_work(user_id) as session:
            repo = self._repository(session)
            cart = await repo.get(user_id)
            if cart is None:
                raise ObjectNotFoundError("Cart not found")
            await CouponLedger(session).remove(cart)
            logger.info("Discount code removed", user_id=user_id, cart_id=cart.cart_id)
            return await repo.fetch(user_id)

    async def validate_discount_code(self, code: str, order_total: float, user_id: str | None = None) -> CouponCheck:
        """Check a code against ``order_total`` without redeeming it."""
        if user_id is not None:
            user_id = _require_id(user_id, "user_id")
        async with self.session_factory() as session:
            async with session.begin():
                # Validation may deactivate an expired coupon
                await session.connection(execution_options=WRITE_OPTIONS)
                return await CouponLedger(session).validate(code, order_total, user_id)
