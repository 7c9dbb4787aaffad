from __future__ import annotations


class GatewayError(Exception):
    """Base error for gateway failures."""


class ConfigurationError(GatewayError):
    """The server is missing a setting it needs for this operation."""


class InvalidRequestError(GatewayError):
    pass


class AuthenticationError(GatewayError):
    pass


class RateLimitExhaustedError(GatewayError):
    def __init__(
        self,
        retry_after_seconds: int | None = None,
        message: str = "The AI service is busy. Try again in 10-20 seconds.",
    ):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class UpstreamServiceError(GatewayError):
    def __init__(self, status_code: int, detail: str = "", message: str | None = None):
        super().__init__(message or f"Upstream error {status_code}.")
        self.status_code = status_code
        self.detail = detail


class UpstreamNetworkError(GatewayError):
    """The outbound call could not complete (DNS, connect, read)."""


class UpstreamProtocolError(GatewayError):
    """Unexpected upstream response shape / contract mismatch."""


class SearchError(GatewayError):
    pass


class RequestTimeoutError(GatewayError):
    """Server-side request deadline exceeded."""
