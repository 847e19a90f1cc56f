"""
Error Handling & Sanitization - HIPAA-Compliant
Prevents information leakage through error messages

- Alert engine failures carry precise, PHI-free reasons and are returned as-is
- Everything else is logged in full and returned as a generic error with an id
"""

import logging
import uuid
from typing import Dict, Any
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from alert_triage.core.logging import log_error
from alert_triage.services.alert_engine.errors import AlertEngineError

logger = logging.getLogger(__name__)


class ErrorSanitizer:
    """Sanitizes errors to prevent information leakage"""

    @staticmethod
    def sanitize_error(error: Exception) -> Dict[str, Any]:
        if isinstance(error, AlertEngineError):
            return error.to_dict()

        return {
            "error": "An error occurred processing your request",
            "status_code": 500,
            "type": "internal_error",
            "error_id": ErrorSanitizer._generate_error_id()
        }

    @staticmethod
    def _generate_error_id() -> str:
        """Generate a unique error ID for tracking"""
        return str(uuid.uuid4())[:8]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to catch and sanitize unhandled errors
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            sanitized = ErrorSanitizer.sanitize_error(e)
            error_id = sanitized.setdefault("error_id", ErrorSanitizer._generate_error_id())
            log_error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}",
                logger_name="error_handler",
                exc_info=True
            )
            return JSONResponse(
                status_code=sanitized["status_code"],
                content=sanitized
            )


async def alert_engine_error_handler(request: Request, exc: AlertEngineError) -> JSONResponse:
    logger.info(f"Alert operation rejected ({exc.error_type}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AlertEngineError, alert_engine_error_handler)
    app.add_middleware(ErrorHandlingMiddleware)
