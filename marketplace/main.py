"""
FastAPI application for the marketplace booking engine

Scheduling, policies and escrow; follow-up effects run in Celery workers
"""
import logging
from collections import defaultdict
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from marketplace.api.v1.router import api_v1_router
from marketplace.config.settings import get_settings
from marketplace.core.exceptions import BookingEngineError
from marketplace.core.middleware import correlation_id_middleware, request_logging_middleware
from marketplace.core.monitoring import health_router
from marketplace.utils.my_logging import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging()
    logger.info(f"🚀 {settings.APP_NAME} starting up...")

    routes_by_tag = defaultdict(list)
    for route in app.routes:
        if isinstance(route, APIRoute):
            tag = route.tags[0] if route.tags else "other"
            for method in sorted(route.methods):
                routes_by_tag[tag].append(f"{method:7} {route.path}")

    for tag, routes in sorted(routes_by_tag.items()):
        logger.info(f"[{tag}] " + ", ".join(sorted(routes)))
    logger.info(f"✅ Total routes registered: {sum(len(r) for r in routes_by_tag.values())}")

    yield

    # Shutdown
    logger.info(f"🛑 {settings.APP_NAME} shutting down...")


async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    """Translate the service error taxonomy into HTTP responses"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="Availability, booking lifecycle, recurring series, policies and escrow",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "PUT"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)

    # Include routers
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    def root():
        return {
            "service": settings.APP_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "api": "/api/v1/",
                "health": "/health",
                "docs": "/docs" if settings.DEBUG else "disabled"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "marketplace.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
