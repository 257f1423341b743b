"""
Sneuz – Backend API
Start with: uvicorn main:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_settings
from deps import Container, build_container
from errors import (
    AlreadyTracking,
    NotTracking,
    PersistenceError,
    SessionNotFound,
    SneuzError,
    Unauthenticated,
    ValidationError,
)
from routers import auth as auth_router, intents, sessions, settings as settings_router, stats, widget

STATUS_BY_ERROR = {
    Unauthenticated: 401,
    SessionNotFound: 404,
    AlreadyTracking: 409,
    NotTracking: 409,
    ValidationError: 422,
    PersistenceError: 502,
}

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = build_container(get_settings())
    yield
    if owned:
        await app.state.container.aclose()


def create_app(container: Optional[Container] = None) -> FastAPI:
    app = FastAPI(
        title="Sneuz API",
        description="Manual sleep tracking: start/stop sessions, history and stats",
        version="0.1.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container
    origins = container.settings.cors_origins if container else get_settings().cors_origins

    # Allow the web dashboard (Next.js) to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SneuzError)
    async def sneuz_error_handler(request: Request, exc: SneuzError):
        status = next((code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"detail": exc.message})

    @app.get("/health")
    def health():
        """Check that the API is running. Frontend can call this first."""
        return {"status": "ok", "message": "Sneuz API is running"}

    @app.get("/")
    def root():
        """Root welcome."""
        return {"app": "Sneuz", "docs": "/docs"}

    app.include_router(auth_router.router)
    app.include_router(sessions.router)
    app.include_router(intents.router)
    app.include_router(stats.router)
    app.include_router(settings_router.router)
    app.include_router(widget.router)
    return app


logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
