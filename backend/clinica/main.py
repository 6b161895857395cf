"""Clinic onboarding API application."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinica.api.routes import health, integrity, onboarding
from clinica.core.circuit_breaker import CircuitBreakerOpen
from clinica.core.config import get_settings, settings
from clinica.core.exceptions import ClinicaException, sanitize_error

REQUEST_ID_HEADER = "X-Request-ID"


def _configure_logging() -> None:
    """Install a single root handler per LOG_FORMAT ("json" or "text")."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        handler.setFormatter(
            JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
                static_fields={"app": "clinica-api", "env": settings.APP_ENV},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> Any:
    """Refuse to start without store credentials."""
    app_settings = get_settings()
    logger.info(
        "Clinic API starting",
        extra={"env": app_settings.APP_ENV, "cors_origins": app_settings.cors_origins_list},
    )
    yield
    logger.info("Clinic API stopped")


app = FastAPI(
    title="Clinic Onboarding API",
    description="Clinic onboarding saga, wizard validation and integrity verification",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)

for module in (health, integrity, onboarding):
    app.include_router(module.router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def root_health_check() -> dict[str, str]:
    """Liveness only; store health lives under /api/v1/health."""
    return {"status": "healthy"}


def _error_response(request: Request, status_code: int, code: str, detail: str) -> JSONResponse:
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    logger.warning(
        "Request failed with %s",
        code,
        extra={"status_code": status_code, "request_id": request_id, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": code, "request_id": request_id},
        headers={REQUEST_ID_HEADER: request_id},
    )


@app.exception_handler(ClinicaException)
async def clinica_exception_handler(request: Request, exc: ClinicaException) -> JSONResponse:
    """Client errors keep their message; server errors get the sanitized one."""
    detail = exc.message if exc.status_code < 500 else sanitize_error(exc)
    return _error_response(request, exc.status_code, exc.code, detail)


@app.exception_handler(CircuitBreakerOpen)
async def circuit_open_handler(request: Request, exc: CircuitBreakerOpen) -> JSONResponse:
    return _error_response(request, 503, "SERVICE_UNAVAILABLE", sanitize_error(exc))
