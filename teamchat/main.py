# teamchat/main.py

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teamchat.api import websocket as websocket_module
from teamchat.api.routes import ai, chat, health, projects, rooms, root, users
from teamchat.core.config import Settings, settings as default_settings
from teamchat.core.logging import get_logger, setup_logging
from teamchat.core.state import AppState, build_state
from teamchat.services import auth_service

# Configure logging first
setup_logging()
logger = get_logger(__name__)


async def sweep_idle_pollers(state: AppState) -> None:
    """Background task: drop polling participants that stopped polling."""
    while True:
        await asyncio.sleep(state.settings.SWEEP_INTERVAL)
        removed = await state.hub.prune_idle(state.settings.POLL_IDLE_TIMEOUT)
        if removed:
            logger.info("Removed %d idle pollers", removed)


def create_app(settings: Optional[Settings] = None, state: Optional[AppState] = None) -> FastAPI:
    settings = settings or default_settings
    state = state or build_state(settings)

    app = FastAPI(title="TeamChat")
    app.state.chat = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(auth_service.router)
    app.include_router(users.router)
    app.include_router(projects.router)
    app.include_router(rooms.router)
    app.include_router(ai.router)
    app.include_router(chat.router)

    # WebSocket routes
    app.include_router(websocket_module.router)

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 Application starting - storage=%s assistant=%s",
                    settings.STORAGE_BACKEND, settings.ASSISTANT_PROVIDER)

        if state.redis is not None:
            await state.redis.ping()
            logger.info("✓ Connected to Redis at %s:%s", settings.REDIS_HOST, settings.REDIS_PORT)

        app.state.sweeper = asyncio.create_task(sweep_idle_pollers(state))

    @app.on_event("shutdown")
    async def on_shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper:
            sweeper.cancel()
        await state.hub.close()
        await state.gateway.aclose()
        if state.redis is not None:
            await state.redis.aclose()
        logger.info("Application stopped")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("teamchat.main:app", host="0.0.0.0", port=8000)
