"""Delphi Panels: Main FastAPI Application.

Backend for Delphi-method expert panels: anonymous multi-round feedback,
consensus metrics, AI-assisted topics and summaries, and notifications.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import DelphiError, close_db, get_settings, init_db
from .schemas import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables are migrated separately)
    if settings.environment != "production":
        await init_db()
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Delphi Panels API

    Structured, anonymous expert consensus using the **Delphi method**.

    ### Key Features

    - **Rounds**: Topics move through feedback rounds; closing a round produces a summary and consensus metrics.
    - **Anonymous Feedback**: Experts rate each other's contributions from -2 to +2 without seeing who wrote them.
    - **AI Assistance**: Extract topics from raw notes and summarize rounds.
    - **Notifications**: In-app notifications with immediate or digest email delivery.

    ### Authentication

    All endpoints except `/health` and invitation token lookup require a
    Firebase ID token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

# CORS middleware with explicit origins (credentials require explicit origins, not "*")
cors_origins = [
    "http://localhost:5173",
    "http://localhost:3000",
]
for origin in settings.allowed_origins:
    if origin and origin not in cors_origins:
        cors_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


@app.exception_handler(DelphiError)
async def delphi_error_handler(request: Request, exc: DelphiError):
    """Render domain errors with their taxonomy code and HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.code,
            message=exc.message,
            details=[ErrorDetail(**d) for d in exc.details],
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Request validation failures are invalid_argument / 400."""
    details = [
        ErrorDetail(
            field=".".join(str(p) for p in err.get("loc", ())) or None,
            message=err.get("msg", "Invalid value"),
            code=err.get("type", "invalid"),
        )
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="invalid_argument",
            message="Request validation failed",
            details=details,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and hide their detail from the client."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal",
            message="An unexpected error occurred",
            details=[],
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "delphi_panels.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
