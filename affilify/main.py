"""
AFFILIFY - FastAPI Application
Composition root: wires configuration, the user store, the admission layer,
routers, middleware and error handlers.

Run with:
    uvicorn affilify.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affilify.admission import Admission, build_admission
from affilify.config import Settings, get_settings
from affilify.database import Base, create_engine, create_session_factory
from affilify.errors import register_error_handlers
from affilify.middleware.request_context import RequestContextMiddleware
from affilify.routers.ai import WebsiteGenerator, router as ai_router
from affilify.routers.auth import router as auth_router
from affilify.routers.user import router as user_router
from affilify.seed import seed_database
from affilify.users import SqlUserStore

# Ensure models are imported so Base.metadata knows about them
import affilify.models  # noqa: F401

logger = logging.getLogger("affilify")


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    admission: Optional[Admission] = None,
    website_generator: Optional[WebsiteGenerator] = None,
) -> FastAPI:
    """Build the application. Tests pass their own session factory and admission."""
    settings = settings or get_settings()

    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
    if admission is None:
        admission = build_admission(settings, SqlUserStore(session_factory))

    # ═══════════════════════════════════════════════════
    #  LIFESPAN - startup / shutdown
    # ═══════════════════════════════════════════════════

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

        if engine is not None:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created / verified.")

        if settings.SEED_DEMO_USERS:
            async with session_factory() as session:
                await seed_database(session)

        yield

        await admission.close()
        if engine is not None:
            await engine.dispose()
        logger.info("%s shut down.", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Affiliate landing page generator API",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.admission = admission
    app.state.website_generator = website_generator

    # ── Middleware ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset",
            "X-Quota-Limit", "X-Quota-Remaining", "X-Quota-Reset",
            "Retry-After", "X-Request-ID",
        ],
    )
    app.add_middleware(RequestContextMiddleware)

    # ── Errors ──
    register_error_handlers(app)

    # ── Routers ──
    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(ai_router)

    # ═══════════════════════════════════════════════════
    #  HEALTH CHECK
    # ═══════════════════════════════════════════════════

    @app.get("/api/health")
    async def health_check(request: Request):
        """App info plus window-store reachability."""
        store = request.app.state.admission.store
        store_ok = await store.ping()
        return {
            "status": "healthy" if store_ok else "degraded",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "rate_limit_store": {"backend": store.backend, "reachable": store_ok},
        }

    return app


# ═══════════════════════════════════════════════════════
#  RUN (for direct execution)
# ═══════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "affilify.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
