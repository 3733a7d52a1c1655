# backend/app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .domain.errors import DomainError
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.applications import router as applications_router
from .routers.health import router as health_router
from .routers.leases import router as leases_router
from .routers.notifications import router as notifications_router
from .routers.properties import router as properties_router
from .routers.rent_payments import router as rent_payments_router

API_PREFIX = "/api"

log = logging.getLogger("leasehub.api")


def _cors_origins() -> list[str]:
    val = settings.cors_allow_origins
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("domain error: %s", exc.message, extra={"path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "detail": exc.message},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc") or []), "msg": str(err.get("msg")), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "request_validation_error", "detail": errors},
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="LeaseHub Tenancy Engine", version="0.1.0")

    app.add_middleware(StructuredLoggingMiddleware)
    # must wrap StructuredLoggingMiddleware so the request log line carries the id
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(properties_router, prefix=API_PREFIX)
    app.include_router(applications_router, prefix=API_PREFIX)
    app.include_router(leases_router, prefix=API_PREFIX)
    app.include_router(rent_payments_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)
    return app


app = create_app()
