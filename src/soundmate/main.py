"""FastAPI application factory."""

from fastapi import FastAPI

from soundmate import __version__
from soundmate.api.exception_handlers import register_exception_handlers
from soundmate.api.routers import api_router, health
from soundmate.config import Settings, get_settings
from soundmate.infrastructure.lifecycle import lifespan
from soundmate.infrastructure.observability.middleware import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Explicit settings (tests); defaults to the cached environment settings
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="SoundMate",
        description="Location-based music map: what is playing around you, as colored hexagons.",
        version=__version__,
        debug=settings.app.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        RequestLoggingMiddleware,
        log_request_body=settings.observability.log_request_body,
    )
    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(api_router, prefix=settings.app.api_prefix)
    return app


def run() -> None:
    """Console entry point: serve with uvicorn."""
    import uvicorn

    uvicorn.run("soundmate.main:create_app", factory=True, host="0.0.0.0", port=8000)
