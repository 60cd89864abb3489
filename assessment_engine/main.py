# Standard library imports
import asyncio
from contextlib import asynccontextmanager, suppress

# Third-party imports
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Local imports
from assessment_engine.api.v1.routes.router import router as api_v1_router
from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import AssessmentError
from assessment_engine.core.logging_config import get_logger
from assessment_engine.core.response import (
    assessment_error_response,
    error_response,
    validation_error_response,
)
from assessment_engine.services.expiry_sweeper import run_expiry_sweeper_task

# Initialize centralized logger
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown operations."""
    # Startup: finalize abandoned timed attempts in the background
    sweeper = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweeper = asyncio.create_task(
            run_expiry_sweeper_task(settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
            name="expiry-sweeper",
        )
    yield
    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


def register_exception_handlers(app: FastAPI) -> None:
    # Domain errors carry their own status and error_code
    @app.exception_handler(AssessmentError)
    async def assessment_error_handler(request: Request, exc: AssessmentError):
        logger.warning(
            f"{exc.error_code}: {exc.message}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return assessment_error_response(exc)

    # Custom exception handler
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with logging"""
        # exc.detail might be a dict or str
        msg = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

        logger.warning(
            f"HTTP Exception: {exc.status_code} - {msg}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
                "client_ip": request.client.host if request.client else None,
            },
        )
        return error_response(msg, status_code=exc.status_code)

    # Pydantic validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Validation error handler with structured error details and logging"""
        error_count = len(exc.errors())
        logger.warning(
            f"Validation Error: {error_count} field(s) failed validation",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_count": error_count,
            },
        )
        return validation_error_response(exc.errors(), status_code=422)


def create_app(*, lifespan_enabled: bool = True) -> FastAPI:
    app = FastAPI(
        title="Assessment Engine API",
        description="Timed, resumable test attempts: autosave, submission, scoring and grading",
        version="1.0.0",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan if lifespan_enabled else None,
    )

    # Include the router with prefix
    app.include_router(api_v1_router, prefix="/api/v1")
    register_exception_handlers(app)

    logger.info(f"Configuring CORS middleware with origins: {settings.ALLOWED_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=settings.ALLOW_CREDENTIALS,
        allow_methods=settings.ALLOWED_METHODS,
        allow_headers=settings.ALLOWED_HEADERS,
    )
    return app


app = create_app()


# Run the app
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
