"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from letterstyle.config import settings
from letterstyle.config_store import ConfigStore
from letterstyle.style.aggregator import AnalyticsAggregator
from letterstyle.style.cache import TTLProfileCache
from letterstyle.style.pipeline import AnalysisQueue, StyleLearner
from letterstyle.style.profiles import ProfileService

logger = logging.getLogger(__name__)


def create_app(session_factory=None, analyzer=None) -> FastAPI:
    """Build the API around one database.

    ``analyzer`` is the external style analyzer; without one, edits are still
    recorded but analysis requests are refused.
    """
    if session_factory is None:
        from letterstyle.database import SessionLocal
        session_factory = SessionLocal

    config = ConfigStore(session_factory)
    service = ProfileService(session_factory, cache=TTLProfileCache(settings.profile_cache_ttl_seconds))
    learner = StyleLearner(service, analyzer=analyzer, config=config)
    queue = AnalysisQueue(learner)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Waiting for queued style analyses to finish")
        queue.shutdown(wait=True)

    app = FastAPI(title="letterstyle", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.config = config
    app.state.service = service
    app.state.learner = learner
    app.state.queue = queue
    app.state.aggregator = AnalyticsAggregator(session_factory, config=config)

    from letterstyle.web.routes import analytics, edits, profiles

    app.include_router(edits.router)
    app.include_router(profiles.router)
    app.include_router(analytics.router)
    return app


app = create_app()
