"""Error taxonomy shared by the token codec, the presence layer and the API.

Every error carries the HTTP status it maps to; the API installs a single
handler that renders ``{"error": message}``.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Missing or malformed request parameter."""

    status_code = 400


class ConfigurationError(ServiceError):
    """Server-side credentials are missing. Never include the secret in the message."""

    status_code = 500


class EncodingError(ServiceError, ValueError):
    """A value does not fit the token wire format (or a token cannot be decoded)."""

    status_code = 500


class CryptoError(ServiceError):
    status_code = 500


class UpstreamUnavailable(ServiceError):
    """The channel room cannot be reached; callers fall back to the presence store."""

    status_code = 503


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
