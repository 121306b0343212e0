"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .dependencies import ServiceContainer, build_container  # noqa: E402
from .middleware import register_error_handlers  # noqa: E402
from .routes import action_cards, chat, conversations, system, vault  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema on startup; close the tool gateway session on shutdown."""
    services: ServiceContainer = app.state.container
    logger.info("Running startup: initializing conversation database...")
    try:
        db_path = services.database.initialize()
        logger.info(f"Startup complete: database ready at {db_path}")
    except Exception as exc:
        logger.exception("Startup failed: %s", exc)
        logger.error("App starting without a usable database")

    yield

    await services.gateway.close()


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application around an explicit service container."""
    app = FastAPI(
        title="Vault Assistant API",
        description="Chat assistant for a personal note vault with confirmation-gated tools",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container or build_container()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app.state.container.config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(chat.router)
    app.include_router(vault.router)
    app.include_router(action_cards.router)
    app.include_router(conversations.router)
    app.include_router(system.router, tags=["system"])
    return app


app = create_app()
