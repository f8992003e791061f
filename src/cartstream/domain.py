"""Wiring for storage, the job queue, the notifier and the pipeline.

One ``CartDomain`` lives for the whole process. The web app initializes it in
its lifespan; tests build their own against a temporary database.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cartstream.cart.pipeline import MutationPipeline
from cartstream.config import Settings, load_settings
from cartstream.jobs.queue import JobQueue
from cartstream.notifications.notifier import Notifier
from cartstream.utils.db import create_engine_for, session_factory_for, setup_db

logger = structlog.get_logger(__name__)


class CartDomain:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or load_settings()
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self.queue: JobQueue | None = None
        self.notifier: Notifier | None = None
        self.pipeline: MutationPipeline | None = None

    @property
    def initialized(self) -> bool:
        return self.pipeline is not None

    async def init(self, create_schema: bool = True) -> "CartDomain":
        if self.initialized:
            return self
        self.engine = create_engine_for(self.settings)
        if create_schema:
            await setup_db(self.engine)
        self.session_factory = session_factory_for(self.engine)
        self.queue = JobQueue()
        self.notifier = Notifier(buffer_size=self.settings.subscriber_buffer)
        self.pipeline = MutationPipeline(self.session_factory, self.settings, self.queue, self.notifier)
        logger.info("Cart domain initialized", env=self.settings.env, database_url=self.settings.database_url)
        return self

    async def drain(self) -> None:
        """Wait for every queued mutation to settle."""
        if self.queue is not None:
            await self.queue.join()

    async def shutdown(self, drain: bool = True) -> None:
        if not self.initialized:
            return
        if drain:
            await self.queue.join()
        await self.queue.close()
        self.notifier.close()
        await self.engine.dispose()
        self.pipeline = None
        self.queue = None
        self.notifier = None
        self.session_factory = None
        self.engine = None
        logger.info("Cart domain shut down")


cart_domain = CartDomain()
