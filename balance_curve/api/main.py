"""
FastAPI main application for the balance curve service.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from balance_curve import __version__
from balance_curve.api.schemas.api_models import ErrorResponse
from balance_curve.core.exceptions.equity import EquityCurveError
from balance_curve.services.equity_curve_builder import EquityCurveBuilder

from .routers import curve


def create_app(builder: EquityCurveBuilder | None = None) -> FastAPI:
    """Create the API application.

    Without a ``builder`` one is assembled from the data directory on the
    first request.
    """
    app = FastAPI(
        title="Balance Curve API",
        version=__version__,
        description="Daily account equity reconstructed from trades, cash flows and closes",
    )
    app.state.builder = builder

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",  # Development frontend
            "http://localhost:8080",
        ],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Accept", "Origin"],
    )

    app.include_router(curve.router, prefix="/api/curve", tags=["curve"])

    @app.exception_handler(EquityCurveError)
    async def handle_equity_curve_error(request: Request, exc: EquityCurveError) -> JSONResponse:
        logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error=type(exc).__name__, message=str(exc)).model_dump(),
        )

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint returning API information."""
        return {"message": "Balance Curve API", "version": __version__, "status": "running"}

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
