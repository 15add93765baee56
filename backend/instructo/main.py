# backend/instructo/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import Base, engine
from .errors import InstructoError, RateLimited, Unauthenticated

from .apps.accounts.router_public import router as accounts_public_router
from .apps.accounts.router_admin import router as accounts_admin_router
from .apps.trainees.router_admin import router as trainees_admin_router
from .apps.trainees.router_instructor import router as trainees_instructor_router
from .apps.projects.router import router as projects_router
from .apps.documents.router import router as documents_router
from .apps.reviews.router import router as reviews_router
from .apps.notifications.router import router as notifications_router
from .apps.audit.router import router as audit_router

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:3000",
    ]


def _error_response(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def instructo_error_handler(request: Request, exc: InstructoError) -> JSONResponse:
    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(exc, RateLimited) and exc.retry_after_seconds:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message, exc.detail, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "reason": err.get("msg", "invalid"),
        }
        for err in exc.errors()
    ]
    return _error_response(400, "Validation error", errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return _error_response(500, "Internal server error")


def create_app() -> FastAPI:
    if os.getenv("INSTRUCTO_CREATE_TABLES", "").lower() in {"1", "true", "yes", "on"}:
        Base.metadata.create_all(bind=engine)

    app = FastAPI(title="Instructo API", version="1.0.0")
    cors_origins = _allowed_origins()
    allow_credentials = "*" not in cors_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InstructoError, instructo_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/", tags=["health"])
    def read_root():
        return {"success": True, "message": "Instructo backend is running"}

    @app.get("/health", tags=["health"])
    def health():
        return {"success": True, "data": {"status": "ok"}}

    app.include_router(accounts_public_router)
    app.include_router(accounts_admin_router)
    app.include_router(trainees_admin_router)
    app.include_router(trainees_instructor_router)
    app.include_router(projects_router)
    app.include_router(documents_router)
    app.include_router(reviews_router)
    app.include_router(notifications_router)
    app.include_router(audit_router)
    return app


app = create_app()
