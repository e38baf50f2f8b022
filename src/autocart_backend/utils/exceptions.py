from typing import Any, Optional
from fastapi.exceptions import RequestValidationError
from fastapi import Request, status
from fastapi.responses import JSONResponse
from ..logging_util import get_logger
import time


logger = get_logger(__name__)


class TokenExchangeError(Exception):
    """
    Base class for every failure of the OAuth code exchange.

    The message is the client-facing summary. It must never contain
    credentials, tokens or raw provider payloads.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "token_exchange_failed"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload without secrets."""
        return {
            "error": self.message,
            "error_code": self.error_code,
        }


class MissingCodeError(TokenExchangeError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "missing_code"

    def __init__(self, message: str = "Missing code parameter"):
        super().__init__(message)


class ConfigurationError(TokenExchangeError):
    error_code = "server_misconfigured"

    def __init__(self, message: str = "OAuth client credentials are not configured on the server"):
        super().__init__(message)


class ProviderError(TokenExchangeError):
    """Upstream rejected the code or could not be reached."""

    error_code = "provider_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: Optional[str] = None):
        super().__init__(message)
        # Kept for server-side logs only, never serialised
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.upstream_status is not None:
            payload["upstream_status"] = self.upstream_status
        return payload


class MissingTokenError(TokenExchangeError):
    """Upstream answered with success but no recognizable access token field."""

    error_code = "missing_access_token"

    def __init__(self, fields: list[str]):
        super().__init__("No access token received from Payman")
        self.fields = fields

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fields"] = self.fields
        return payload


class InternalError(TokenExchangeError):
    error_code = "internal_error"

    def __init__(self, message: str = "Token exchange failed"):
        super().__init__(message)


async def token_exchange_exception_handler(request: Request, exc: TokenExchangeError):
    log_extra = {
        "url": str(request.url.path),
        "method": request.method,
        "error_code": exc.error_code,
    }
    if isinstance(exc, ProviderError) and exc.upstream_body:
        logger.error(f"Upstream body for {request.method} {request.url.path}: {exc.upstream_body}", extra=log_extra)
    logger.error(f"Token exchange failed for {request.method} {request.url.path}: {exc.message}", extra=log_extra)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.to_payload(),
            "timestamp": time.time(),
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):

    invalid_params = []
    for error in exc.errors():
        invalid_params.append({
            "field": ".".join(map(str, error["loc"])), # e.g., "body.code"
            "reason": error["msg"],
            "type": error["type"]
        })

    log_extra = {
        "url": str(request.url.path),
        "method": request.method,
        "errors": invalid_params
    }
    logger.error(f"Validation failed for {request.method} {request.url.path}", extra=log_extra)

    return JSONResponse(
        status_code=422,
        content={
            "error": "The data provided is invalid. Please check the 'details' field.",
            "error_code": "validation_error",
            "details": invalid_params,
            "timestamp": time.time()
        },
    )
