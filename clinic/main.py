"""ASGI entry point: builds the leave API and wires its cross-cutting pieces."""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from clinic.common.exceptions import register_exception_handlers
from clinic.common.rate_limit import limiter
from clinic.config import settings
from clinic.database import dispose_engine
from clinic.leave.router import balances_router, requests_router, types_router
from clinic.logging_config import setup_logging

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
API_PREFIX = "/api/v1"

_ROUTERS: list[tuple[APIRouter, str]] = [
    (types_router, "leave-types"),
    (balances_router, "leave-balances"),
    (requests_router, "leave-requests"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Leave service up (env=%s, version=%s)", settings.ENVIRONMENT, VERSION)
    yield
    await dispose_engine()
    logger.info("Leave service shut down, connection pool disposed")


def create_app() -> FastAPI:
    setup_logging()
    show_docs = settings.ENVIRONMENT != "production"

    app = FastAPI(
        title="Clinic Leave Management",
        description="Leave types, yearly balances and leave requests for clinic staff, doctors and users",
        version=VERSION,
        docs_url=f"{API_PREFIX}/docs" if show_docs else None,
        redoc_url=f"{API_PREFIX}/redoc" if show_docs else None,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.get(f"{API_PREFIX}/health", tags=["system"])
    async def health_check():
        return {"status": "healthy", "version": VERSION, "environment": settings.ENVIRONMENT}

    for router, name in _ROUTERS:
        app.include_router(router, prefix=f"{API_PREFIX}/{name}", tags=[name])

    return app


app = create_app()
