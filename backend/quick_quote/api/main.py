# api/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .models import HealthResponse
from .routers import quick_order
from ..config import settings, setup_logging
from ..core.exceptions import QuickQuoteError, UnsupportedModelError
from ..processes.print_3d.slicer import find_slicer_executable
from ..services.quote_service import QuickQuoteService

logger = logging.getLogger(__name__)


# --- FastAPI App Initialization --- #

def create_app(service: Optional[QuickQuoteService] = None) -> FastAPI:
    """Factory function to create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Quick Quote API...")
        yield
        logger.info("Shutting down Quick Quote API...")

    app = FastAPI(
        title="Quick Quote API",
        description="Model analysis, build orientation, slicing estimates and pricing for 3D print quick orders.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.quote_service = service or QuickQuoteService()

    # --- Include Routers --- #
    app.include_router(quick_order.router)
    logger.info("Included API routers.")

    # --- Exception Handlers --- #
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTPException caught: {exc.status_code} - {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(QuickQuoteError)
    async def quick_quote_exception_handler(request: Request, exc: QuickQuoteError):
        # NoItemsError and the remaining application errors are client errors
        status_code = 415 if isinstance(exc, UnsupportedModelError) else 400
        logger.error(f"{type(exc).__name__} caught: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    # Generic handler for unexpected errors
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception caught at application level")
        return JSONResponse(
            status_code=500,
            content={"detail": f"Internal server error: {type(exc).__name__}"},
        )

    logger.info("Registered exception handlers.")

    @app.get("/health", tags=["Health"], response_model=HealthResponse, summary="Liveness and slicer availability")
    async def health():
        app_settings = app.state.quote_service.settings
        return HealthResponse(
            slicer_available=bool(app_settings.slicer_path or find_slicer_executable()),
            slicer_disabled=app_settings.slicer_disable,
        )

    return app


def get_app() -> FastAPI:
    """Entry point for `uvicorn --factory quick_quote.api.main:get_app`."""
    setup_logging(settings.log_level)
    return create_app()
