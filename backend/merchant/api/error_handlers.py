"""Error Handlers — global exception handlers for the merchant API.

Invariants:
    - MerchantError -> structured JSON with error code, message, severity
      (marketplace outages on /marketplace/relist surface as 502)
    - Exception (catch-all) -> never leaks internal details
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from merchant.core.errors import ErrorSeverity, MerchantError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_merchant_error_handler(app)
    _register_generic_error_handler(app)


def _register_merchant_error_handler(app: FastAPI) -> None:

    @app.exception_handler(MerchantError)
    async def merchant_error_handler(request: Request, exc: MerchantError):
        logger.error(
            f"MerchantError: {exc.message}",
            extra={"error_code": exc.code, "path": request.url.path},
        )
        return JSONResponse(
            status_code=exc.http_status, content=exc.to_response(),
        )


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all — never leaks internal details."""
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "category": "internal",
                    "severity": ErrorSeverity.CRITICAL.value,
                },
            },
        )
