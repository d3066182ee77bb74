from contextlib import asynccontextmanager
from typing import AsyncGenerator, Iterable, Optional

from fastapi import FastAPI

from distlimit.app.api.metrics import router as metrics_router
from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_logger, setup_logging
from distlimit.app.middleware.rate_limit import RateLimitMiddleware
from distlimit.app.services.engine import DecisionEngine
from distlimit.app.services.rules import RuleRegistry, get_rule_registry
from distlimit.app.services.rules.registry import RawRule
from distlimit.app.services.state_store import StateStore, get_state_store


def create_app(
    rules: Optional[Iterable[RawRule]] = None,
    store: Optional[StateStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        rules: Rule definitions; settings.rules_file is used when omitted
        store: State store; chosen from settings.redis_enabled when omitted

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    # Invalid rules fail here, once, before the app serves anything
    registry = RuleRegistry(rules) if rules is not None else get_rule_registry()
    if store is None:
        store = get_state_store()
    engine = DecisionEngine(registry=registry, store=store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Log the active configuration on startup, close the store on shutdown."""
        logger.info(
            "Rate limiter startup complete",
            extra={
                "rules_loaded": len(registry.rules),
                "store": type(store).__name__,
                "short_circuit": settings.short_circuit,
            },
        )
        yield {"engine": engine}
        await store.close()
        logger.info("Rate limiter shutdown complete")

    app = FastAPI(
        title="distlimit",
        description="Distributed rate limiting engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(RateLimitMiddleware, engine=engine)
    app.include_router(metrics_router, prefix="")

    return app
