"""
FastAPI application factory for the people counter.

Routes:
- /api/* -> REST API (counts, entry/exit, reports, locations, live feed)
- /ws -> WebSocket event stream
- / -> built dashboard (frontend/dist) when present
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from models.config import Config
from models.errors import PeopleCounterError
from models.tier import detect_resource_tier
from runtime.context import build_runtime
from .events import EventHub
from .routes import api
from .state import state


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and tear it down on shutdown."""
    config = state.config or Config()
    if state.config is None:
        state.set_config(config)
    tier = state.tier or detect_resource_tier(override=config.tier.override)
    state.tier = tier

    events = EventHub()
    state.set_events(events)
    ctx = build_runtime(config, tier, events=events)
    state.set_database(ctx.db)
    state.set_session(ctx.session)
    state.set_sink(ctx.sink)

    removed = ctx.db.cleanup_old_data(config.storage.retention_days)
    if removed:
        logging.info(f"Removed {removed} records older than {config.storage.retention_days} days")

    if config.web.autostart:
        await ctx.session.start()
    try:
        yield
    finally:
        logging.info("Shutting down live feed")
        await ctx.close()
        state.reset()


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse({"error": message}, status_code=400)

    @app.exception_handler(PeopleCounterError)
    async def app_error(request: Request, exc: PeopleCounterError):
        logging.error(f"Unhandled application error on {request.url.path}: {exc}")
        return JSONResponse({"error": exc.user_message, "code": exc.code}, status_code=500)


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI app and wire routes/static assets."""
    app = FastAPI(
        title="People Counter",
        version="0.1.0",
        description="Edge-deployed people counting system",
        lifespan=lifespan if use_lifespan else None,
    )

    # CORS for development (Vite dev server)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    app.include_router(api.router, prefix="/api")
    app.include_router(api.ws_router)

    dist_path = Path("frontend/dist")
    if dist_path.exists():
        app.mount("/", StaticFiles(directory=str(dist_path), html=True), name="dashboard")

    return app


# Exported application instance for uvicorn
app = create_app()
