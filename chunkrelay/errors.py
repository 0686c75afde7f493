"""Error taxonomy for the proxy and its single translation into HTTP responses."""

from typing import Any, Optional

from fastapi.responses import JSONResponse


class ProxyError(Exception):
    status_code = 500
    error_type = "proxy_error"

    def __init__(self, message: str, details: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        # upstream HTTP status, when there was one
        self.status = status

    def to_body(self) -> dict[str, Any]:
        error: dict[str, Any] = {"message": self.message, "type": self.error_type}
        if self.status is not None:
            error["status"] = self.status
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


class InputError(ProxyError):
    """Malformed request or unsupported model. Raised before any upstream call."""

    status_code = 400
    error_type = "invalid_request_error"


class UpstreamError(ProxyError):
    """Non-success status or transport failure talking to the upstream API."""

    error_type = "upstream_error"


class StreamRelayError(ProxyError):
    """Failure after SSE headers went out; only reportable as an error frame."""

    error_type = "stream_relay_error"

    @classmethod
    def wrap(cls, exc: Exception) -> "StreamRelayError":
        if isinstance(exc, StreamRelayError):
            return exc
        if isinstance(exc, ProxyError):
            return cls(exc.message, details=exc.details, status=exc.status)
        return cls("Upstream stream relay failed", details=str(exc))


def error_response(exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())
