from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.response import err
from app.core.errors import (
    ConflictError,
    DependencyError,
    NotFound,
    PharmacyError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_for(exc: PharmacyError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, DependencyError):
        return 503
    if isinstance(exc, NotFound):
        return 404
    return 400


def storage_error(exc: DBAPIError) -> Optional[DependencyError]:
    """DependencyError for a database that cannot be reached, else None."""
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        return DependencyError("Storage is unavailable, please retry")
    return None


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PharmacyError)
    async def pharmacy_exception_handler(request: Request, exc: PharmacyError) -> JSONResponse:
        return err(msg=exc.message,
                   status_code=status_for(exc),
                   code=exc.code,
                   details=exc.details)

    @app.exception_handler(DBAPIError)
    async def storage_exception_handler(request: Request, exc: DBAPIError) -> JSONResponse:
        dep = storage_error(exc)
        if dep is None:
            logger.exception("Database error on %s %s", request.method, request.url.path)
            return err(msg="Internal server error", status_code=500)
        logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
        return err(msg=dep.message,
                   status_code=status_for(dep),
                   code=dep.code,
                   details=dep.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        details = None if isinstance(exc.detail, str) else exc.detail
        return err(msg=msg, status_code=exc.status_code, details=details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg="Validation error",
                   status_code=422,
                   code="VALIDATION_ERROR",
                   details=exc.errors())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return err(msg="Internal server error", status_code=500)
