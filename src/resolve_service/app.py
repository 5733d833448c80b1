"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from resolve_service.config import get_settings
from resolve_service.core.exceptions import register_exception_handlers
from resolve_service.core.lifespan import lifespan
from resolve_service.core.middleware import RequestValidationMiddleware
from resolve_service.routers import accounts, agents, disputes, health, operations, transactions


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(agents.router, tags=["Agents"])
    app.include_router(accounts.router, tags=["Accounts"])
    app.include_router(transactions.router, tags=["Transactions"])
    app.include_router(disputes.router, tags=["Disputes"])
    app.include_router(operations.router, tags=["Operations"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
