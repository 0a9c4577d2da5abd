"""
Standalone FastAPI app wiring for the DoNa entitlement service.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import dona.config as config
from dona import __version__
from dona.db import dispose_db, init_db
from dona.errors import AccountNotFound, StorageUnavailable, Unauthenticated, ValidationIssue
from app.middleware import configure_middleware
from app.routes.entitlements import router as entitlements_router
from app.routes.health import router as health_router
from app.routes.root import router as root_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    try:
        yield
    finally:
        dispose_db()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(Unauthenticated)
    async def _unauthenticated(request: Request, exc: Unauthenticated):
        return JSONResponse(status_code=401, content={"error": "unauthenticated", "message": str(exc)})

    @app.exception_handler(AccountNotFound)
    async def _account_not_found(request: Request, exc: AccountNotFound):
        return JSONResponse(
            status_code=404,
            content={"error": "account_not_found", "account_id": exc.account_id},
        )

    @app.exception_handler(ValidationIssue)
    async def _validation_issue(request: Request, exc: ValidationIssue):
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": str(exc),
                "field": exc.field,
                "error_type": exc.error_type,
            },
        )

    @app.exception_handler(StorageUnavailable)
    async def _storage_unavailable(request: Request, exc: StorageUnavailable):
        config.logger.error(f"Storage unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content={"error": "storage_unavailable", "retryable": True},
            headers={"Retry-After": "1"},
        )


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="DoNa Entitlements",
        version=__version__,
        redirect_slashes=False,
        lifespan=lifespan if with_lifespan else None,
    )
    configure_middleware(app)
    _register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(root_router)
    app.include_router(entitlements_router)
    return app


app = create_app()
