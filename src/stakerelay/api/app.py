"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stakerelay import __version__
from stakerelay.config import Settings, get_settings
from stakerelay.errors import RelayError
from stakerelay.services import RelayServices

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: RelayServices = app.state.services
    # Startup
    await services.start()
    yield
    # Shutdown
    await services.close()


def register_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Render every failure as ``{"error": ...}``."""

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(include_details=settings.expose_error_details),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        content = {"error": "Invalid request parameters"}
        if settings.expose_error_details:
            content["details"] = "; ".join(
                f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
                for err in exc.errors()
            )
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content={"error": "Route not found", "path": request.url.path},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        content = {"error": "Internal server error"}
        if settings.expose_error_details:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[RelayServices] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    services = services or RelayServices(settings)

    app = FastAPI(
        title="Stake Relay API",
        description="Gasless staking relay and chain data API",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug and not settings.is_production,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_error_handlers(app, settings)

    # Register routes
    from stakerelay.api.routes import chain, health, relay

    app.include_router(health.router, tags=["Health"])
    app.include_router(relay.router, prefix=settings.api_prefix, tags=["Relay"])
    app.include_router(chain.router, prefix=settings.api_prefix, tags=["Chain"])

    return app
