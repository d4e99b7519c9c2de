"""
Business portal — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import health_router
from api.routes import router as api_router
from auth.routes import router as auth_router
from auth.sessions import purge_expired_sessions
from config.settings import config
from connectors.encryption import is_encryption_enabled
from connectors.routes import router as freshbooks_router
from database.helpers import ensure_bootstrap_admin
from database.session import init_db

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Business Portal",
        version="1.0.0",
        description="Client inquiries, approvals and FreshBooks sync.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")
    app.include_router(freshbooks_router, prefix="/api/v1/freshbooks")
    app.include_router(api_router, prefix="/api/v1")
    app.include_router(health_router, prefix="/api")

    @app.on_event("startup")
    async def on_startup():
        if config.freshbooks_configured():
            logger.info("FreshBooks connector configured (redirect=%s)", config.freshbooks_redirect_uri)
        else:
            logger.warning("FRESHBOOKS_CLIENT_ID / FRESHBOOKS_CLIENT_SECRET not set — connect is disabled")
        is_encryption_enabled()

        await init_db()
        if await ensure_bootstrap_admin():
            logger.info("Bootstrap admin account created")
        purged = await purge_expired_sessions()
        if purged:
            logger.info("Removed %d expired sessions from previous runs", purged)

        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
