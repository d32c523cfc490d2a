"""
Error taxonomy for the DeFi API gateway.

Every error raised by the admission / caching layer derives from GatewayError
so consumers can catch one type and turn it into a tool response.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for gateway errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Render the error for a tool or health response"""
        return {
            "error": self.message,
            "error_type": self.__class__.__name__,
            **self.details,
        }


class RateLimitedError(GatewayError):
    """Admission denied for a client; carries backoff guidance."""

    def __init__(self, client_id: str, remaining_requests: int, retry_after_seconds: int):
        self.client_id = client_id
        self.remaining_requests = remaining_requests
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded for {client_id}. "
            f"Please wait {retry_after_seconds} seconds before retrying.",
            details={
                "client_id": client_id,
                "remaining_requests": remaining_requests,
                "retry_after_seconds": retry_after_seconds,
            },
        )


class UpstreamFetchFailed(GatewayError):
    """The upstream API call behind a cache miss failed"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        self.status_code = status_code
        self.endpoint = endpoint
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint is not None:
            details["endpoint"] = endpoint
        super().__init__(message, details=details)


class GatewayValidationError(GatewayError):
    """Request rejected at the façade before touching limiter or cache state"""
    pass


class InvalidClientIdError(GatewayValidationError):
    pass


class InvalidKeyError(GatewayValidationError):
    pass


class InvalidCategoryError(GatewayValidationError):
    pass


class ConfigurationError(GatewayError):
    """Invalid or missing configuration"""
    pass
