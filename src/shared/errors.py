"""Error taxonomy for the tool hub.

Every error raised by the core carries a stable ``code`` so the transport
layer can map it to a result status without inspecting messages.
"""

from typing import Any, Optional


class ToolHubError(Exception):
    """Base exception for tool hub errors."""
    code = "TOOLHUB_ERROR"


class ConfigurationError(ToolHubError):
    """Required OAuth client settings are absent."""
    code = "CONFIGURATION_ERROR"


class AuthenticationError(ToolHubError):
    """No usable credential for a tenant, or an exchange/refresh failed."""
    code = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        subject: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.subject = subject
        self.status = status


class UpstreamError(ToolHubError):
    """The upstream API answered with a non-2xx status after retries."""
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class TransientFault(ToolHubError):
    """
    A retryable failure (rate limit, 5xx, network error).

    Only raised inside the resilient client to drive retries; callers see
    the final ``HttpResult`` instead.
    """
    code = "TRANSIENT_FAULT"

    def __init__(self, result: Any, retry_after: Optional[float] = None) -> None:
        super().__init__(f"transient failure (status {getattr(result, 'status', 0)})")
        self.result = result
        self.retry_after = retry_after


class ValidationError(ToolHubError):
    """Tool input does not satisfy the declared input schema."""
    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Validation failed: {'; '.join(errors)}")
        self.errors = errors
