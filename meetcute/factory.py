"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.database import init_db, close_db
from .core.redis import close_redis
from .api.router import router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="MeetCute",
        description="Memory matching and mutual confirmation",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if origins != ["*"] else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        logger.info("Starting MeetCute (env=%s)", settings.env)

        # Create database tables
        await init_db()

        # Log feature flag state
        from .core.flags import get_flags
        flags = get_flags()
        logger.info(
            "Flags: auth0=%s redis=%s embeddings=%s llm_extraction=%s llm=%s",
            flags.use_auth0, flags.use_redis, flags.use_embeddings,
            flags.use_llm_extraction, flags.llm_provider,
        )
        logger.info(
            "Matching: threshold=%.2f keyword_confidence=%.2f reopen_on_decline=%s",
            settings.match_threshold, settings.keyword_match_confidence,
            settings.reopen_memories_on_decline,
        )

        logger.info("MeetCute is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .services import embeddings, llm
        await llm.close_client()
        await embeddings.close_client()
        await close_db()
        await close_redis()
        logger.info("MeetCute shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
