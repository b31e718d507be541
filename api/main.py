"""
FastAPI application for the identity and session engine.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from api.account import router as account_router
from api.auth import router as auth_router
from api.errors import (
    AppException,
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from auth.config import get_settings
from auth.container import AuthContainer, build_container
from db.engine import SessionLocal, dispose_engine, init_engine

logger = logging.getLogger(__name__)


def create_app(container: AuthContainer | None = None) -> FastAPI:
    """Build the app. Tests pass a prepared container; otherwise one is wired on startup."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown."""
        owned = container is None
        if owned:
            init_engine()
            app.state.auth = build_container(SessionLocal, settings)
        else:
            app.state.auth = container
        logger.info("Identity service started", extra={"environment": settings.ENVIRONMENT})
        yield
        if owned:
            await app.state.auth.close()
            await dispose_engine()

    app = FastAPI(
        title="Identity API",
        description="Phone, email and federated sign-in with per-device sessions",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(account_router, prefix="/api/v1/account", tags=["account"])

    @app.get("/health")
    async def health():
        """Health check."""
        return {"status": "healthy"}

    return app


app = create_app()
