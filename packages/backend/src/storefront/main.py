"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, open SSE streams,
database). The live-update services are built once per app and hung on
app.state, so routes get them through dependencies instead of reaching
for module globals.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront import __version__
from storefront.api import api_router
from storefront.cache import close_redis, get_redis, init_redis
from storefront.config import settings
from storefront.realtime import (
    ConnectionRegistry,
    ProductUpdateBroadcaster,
    RedisUpdateStore,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Closing the registry first ends every SSE stream, otherwise
    the server would wait on them forever.
    """
    logger.info(
        "storefront.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await init_redis()
        logger.info("storefront.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("storefront.redis_unavailable", error=str(e))
        # Redis is optional — no cache, no catch-up, no rate limiting
        await close_redis()

    yield

    # Shutdown
    logger.info("storefront.shutdown", open_streams=len(app.state.connection_registry))

    app.state.connection_registry.close()

    await close_redis()

    from storefront.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Storefront",
        description="Catalog API and live product updates for the shop",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Live product updates ─────────────────────────────────
    registry = ConnectionRegistry()
    store = RedisUpdateStore(
        get_redis,
        key=settings.product_update_key,
        ttl_seconds=settings.product_update_ttl_seconds,
    )
    app.state.connection_registry = registry
    app.state.update_store = store
    app.state.broadcaster = ProductUpdateBroadcaster(registry, store)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from storefront.middleware.rate_limit import RateLimitMiddleware
    from storefront.middleware.request_id import RequestIdMiddleware
    from storefront.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RateLimitMiddleware, rpm=settings.rate_limit_rpm)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: storefront.main:app)
app = create_app()
