import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from campus_identity.api.router import api_router
from campus_identity.config import get_settings
from campus_identity.database import engine
from campus_identity.services.campus_service import get_campus_service

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings.validate_security()

    campus_service = get_campus_service()
    prefetch_task = None
    if settings.campus_configured() and settings.campus_prefetch_token:
        # Startup does not wait for the campus system
        prefetch_task = asyncio.create_task(campus_service.credentials.prefetch())
    elif not settings.campus_configured():
        logger.warning("Campus service account not configured; student lookups will fail")

    yield

    if prefetch_task is not None and not prefetch_task.done():
        prefetch_task.cancel()
    await campus_service.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Identity and authentication backend integrated with the campus information system",
    version=settings.app_version,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


def _validation_errors(errors: list[dict]) -> JSONResponse:
    formatted = []
    for error in errors:
        field = " -> ".join(str(loc) for loc in error["loc"])
        formatted.append({"field": field, "message": error["msg"]})

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": formatted,
        },
    )


# Global exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _validation_errors(exc.errors())


@app.exception_handler(ValidationError)
async def pydantic_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _validation_errors(exc.errors())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")

    # Don't expose internal error details in production
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "An unexpected error occurred. Please try again later.",
        },
    )
