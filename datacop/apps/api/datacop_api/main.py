"""Datacop API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from datacop_api import __version__
from datacop_api.config.env import get_cors_allowed_origins
from datacop_api.context import organization_id_var, request_id_var, user_id_var
from datacop_api.errors import PROBLEM_BASE_URI, DatacopError, PartialDeprovision
from datacop_api.routers import catalog, health, invitations, organizations, users
from datacop_api.schemas import ProblemDetail
from datacop_api.utils import configure_json_logging

logger = logging.getLogger(__name__)


def _instance() -> str:
    """Opaque problem instance built from the request id."""
    request_id = request_id_var.get()
    return f"urn:datacop:trace:{request_id}" if request_id else f"urn:datacop:trace:{uuid.uuid4()}"


def _problem_response(problem: ProblemDetail, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        410: "Gone",
        422: "Unprocessable Entity",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# ============================================================================
# RFC 9457 Exception Handlers
# ============================================================================


async def datacop_error_handler(request: Request, exc: DatacopError) -> JSONResponse:
    """Domain errors → problem+json with the error's own type, title and status."""
    detail: str | dict = exc.detail
    if isinstance(exc, PartialDeprovision):
        detail = {
            "message": exc.detail,
            "uid": exc.uid,
            "profileDeleted": exc.profile_deleted,
            "identityDeleted": exc.identity_deleted,
        }

    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request.domain_error",
        extra={"error_code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )

    problem = ProblemDetail(
        type=exc.error_type,
        title=exc.title,
        status=exc.status_code,
        detail=detail,
        instance=_instance(),
    )
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return _problem_response(problem, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP exceptions → problem+json, preserving dict details."""
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)
    problem = ProblemDetail(
        type=f"{PROBLEM_BASE_URI}/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_instance(),
    )
    return _problem_response(problem, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation errors → 422 problem+json (no store access happened)."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type=f"{PROBLEM_BASE_URI}/validation-error",
        title="Request Validation Failed",
        status=422,
        detail=f"Invalid field '{field}': {msg}",
        instance=_instance(),
    )
    return _problem_response(problem)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Uncaught exceptions → 500 problem+json; details are logged, never returned."""
    logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=True)
    problem = ProblemDetail(
        type=f"{PROBLEM_BASE_URI}/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_instance(),
    )
    return _problem_response(problem)


# ============================================================================
# Middlewares
# ============================================================================


async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every HTTP request emits "http.request.completed"
    - Fields: request_id, method, path, status_code, duration_ms
    - Per-request contextvars are cleared at start and end
    """
    user_id_var.set("")
    organization_id_var.set("")

    start_time = time.perf_counter()
    status_code = 500  # unhandled exception

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        user_id_var.set("")
        organization_id_var.set("")


async def request_id_middleware(request: Request, call_next):
    """Accept or generate X-Request-ID, expose it to logs and echo it back.

    Registered last so it is the outermost middleware and the request id is
    set before inner middlewares run.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    new_app = FastAPI(
        title="Datacop API",
        description="Invitation, membership and role-based visibility services for the Datacop portal.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
    )

    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    new_app.add_exception_handler(DatacopError, datacop_error_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(invitations.router)
    new_app.include_router(organizations.router)
    new_app.include_router(users.router)
    new_app.include_router(catalog.router)

    # Completion logging first (inner), request id last (outermost)
    new_app.middleware("http")(http_completion_logging_middleware)
    new_app.middleware("http")(request_id_middleware)

    return new_app


# Set DATACOP_JSON_LOGS=false to disable structured JSON logging
if os.getenv("DATACOP_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))
    logger.info("Structured JSON logging enabled")

app = create_app()
