# backend/therapy_booking/errors.py
"""
Error envelope for the HTTP surface.

Domain exceptions become ``{"detail": {"message", "code", "details"}}``
with their mapped status. Anything else becomes a generic 500 that does
not leak internals.
"""

import logging
from typing import NoReturn

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .core.exceptions import DomainException, RepositoryException

logger = logging.getLogger(__name__)

_INTERNAL_ERROR_DETAIL = {
    "message": "An error occurred processing your request",
    "code": "INTERNAL_ERROR",
    "details": {},
}


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        http_exc = exc.to_http_exception()
        if http_exc.status_code >= 500:
            logger.error(
                f"Unhandled service failure on {request.url.path}: {exc.message}",
                extra={"code": exc.code},
            )
        return JSONResponse({"detail": http_exc.detail}, status_code=http_exc.status_code)

    @app.exception_handler(RepositoryException)
    async def repository_exception_handler(
        request: Request, exc: RepositoryException
    ) -> JSONResponse:
        logger.error(f"Repository failure on {request.url.path}: {exc}")
        return JSONResponse({"detail": _INTERNAL_ERROR_DETAIL}, status_code=500)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse({"detail": _INTERNAL_ERROR_DETAIL}, status_code=500)
