"""
ServiceM8 credential service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_token_cipher
from api.middleware import register_exception_handlers, register_middleware
from config.settings import config
from connectors.routes import router as servicem8_router

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="ServiceM8 Credential Service",
        version="1.0.0",
        description="OAuth2 connect, encrypted token storage and silent refresh for ServiceM8.",
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
    register_exception_handlers(app)

    # Routes
    app.include_router(servicem8_router, prefix="/api/v1/servicem8")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict:
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        # ConfigError here aborts startup; nothing is served half-configured.
        logger.info("Validating configuration…")
        config.validate_required()
        get_token_cipher()
        logger.info("Redirect URI: %s", config.redirect_uri)
        logger.info("Token expiry buffer: %ss", config.expiry_buffer_seconds)
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
