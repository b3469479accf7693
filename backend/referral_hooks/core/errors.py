"""API error taxonomy and the JSON envelope they are rendered into"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map onto an HTTP response.

    Rendered as ``{"success": false, "error": ..., "details": ...}`` by
    :func:`register_exception_handlers`. ``details`` is omitted when empty.
    """

    status_code = 500

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.details = details

    def to_response(self) -> Dict[str, Any]:
        content: Dict[str, Any] = {"success": False, "error": self.error}
        if self.details:
            content["details"] = self.details
        return content


class ValidationError(ApiError):
    """Missing or malformed required field"""
    status_code = 400


class NotFoundError(ApiError):
    """No matching customer, purchase, product or session"""
    status_code = 404


class ConflictError(ApiError):
    """Record is in a state that makes the request ineligible"""
    status_code = 400


class MalformedRequestError(ApiError):
    """Request body could not be parsed"""
    status_code = 400


class UpstreamError(ApiError):
    """A call to Stripe, Airtable or Brevo failed"""
    status_code = 500

    def __init__(self, error: str, details: Optional[str] = None, service: str = "unknown"):
        super().__init__(error, details)
        self.service = service


def register_exception_handlers(app: FastAPI):
    """Attach the error envelope handlers to the app"""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc.error} ({exc.details})")
        else:
            logger.info(f"{request.url.path} rejected with {exc.status_code}: {exc.error}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "details": str(exc)}
        )
