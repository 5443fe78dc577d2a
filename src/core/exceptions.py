"""
Global Exception Handling

Error taxonomy for the composition pipeline and the FastAPI handlers that
turn it into structured JSON error responses. Error responses never carry
image bytes.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from src.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageServiceError(Exception):
    """Base exception for the image service."""

    code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class OriginRejectedError(ImageServiceError):
    """Raised when the request origin is not on the allow-list."""

    code = 403

    def __init__(self, origin: Optional[str], **kwargs):
        super().__init__("origin is not allowed", **kwargs)
        self.details["origin"] = origin


class InvalidImageUrlError(ImageServiceError):
    """Raised when the avatar URL is not an acceptable absolute URL."""

    code = 400


class UnknownTemplateError(ImageServiceError):
    """Raised when no template is registered for the requested kind."""

    code = 404

    def __init__(self, kind: str, **kwargs):
        super().__init__("the provided image type does not exist", **kwargs)
        self.details["kind"] = kind


# -----------------------------------------------------------------------------
# Fetch errors
# -----------------------------------------------------------------------------

class FetchError(ImageServiceError):
    """Base class for failures retrieving the remote avatar."""

    code = 502


class FetchUnreachableError(FetchError):
    """Raised when the CDN cannot be reached (DNS, connect, timeout)."""


class FetchHttpStatusError(FetchError):
    """Raised when the CDN answers with a non-2xx status."""

    def __init__(self, status_code: int, **kwargs):
        super().__init__(f"upstream responded with status {status_code}", **kwargs)
        self.status_code = status_code
        self.details["http_status"] = status_code


class PayloadTooLargeError(FetchError):
    """Raised when the remote payload exceeds the configured byte cap."""

    code = 413

    def __init__(self, limit: int, **kwargs):
        super().__init__(f"remote image exceeds {limit} bytes", **kwargs)
        self.details["limit_bytes"] = limit


# -----------------------------------------------------------------------------
# Decode errors
# -----------------------------------------------------------------------------

class DecodeError(ImageServiceError):
    """Base class for failures interpreting fetched bytes."""

    code = 400


class UnsupportedFormatError(DecodeError):
    """Raised when the image format is not one the decoder accepts."""

    code = 415


class CorruptDataError(DecodeError):
    """Raised when the bytes do not decode as the selected format."""

    code = 400


class DimensionsExceedLimitError(DecodeError):
    """Raised when an image has more pixels than the configured ceiling."""

    code = 413


# -----------------------------------------------------------------------------
# Internal errors
# -----------------------------------------------------------------------------

class EncodeFailureError(ImageServiceError):
    """Raised when the composited buffer cannot be serialized."""

    code = 500


class InternalPipelineError(ImageServiceError):
    """Catch-all for unexpected failures inside a pipeline stage."""

    code = 500


class TemplateLoadError(ImageServiceError):
    """Raised at startup when a template asset cannot be loaded."""

    code = 500


class RequestCancelledError(ImageServiceError):
    """Raised when the client went away before the pipeline finished."""

    code = 499

    def __init__(self, **kwargs):
        super().__init__("client closed request", **kwargs)


# =============================================================================
# FastAPI Handlers
# =============================================================================

def error_body(exc: ImageServiceError) -> Dict[str, Any]:
    """Structured JSON error body for a service error."""
    return {
        "error": exc.message,
        "request_id": exc.request_id or request_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": _utc_timestamp()
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(OriginRejectedError)
    async def origin_rejected_handler(request: Request, exc: OriginRejectedError):
        # CORS denial: bare status, nothing for a foreign page to read
        return Response(status_code=exc.code)

    @app.exception_handler(ImageServiceError)
    async def image_service_exception_handler(request: Request, exc: ImageServiceError):
        log = logger.error if exc.code >= 500 else logger.warning
        log(
            "image_service_error",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(status_code=exc.code, content=error_body(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id_var.get(),
                "code": 500,
                "timestamp": _utc_timestamp()
            }
        )
