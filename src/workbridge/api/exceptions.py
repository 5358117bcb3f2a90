"""Provider API exceptions."""

from typing import Optional

from ..exceptions import WorkBridgeError


class ProviderAPIError(WorkBridgeError):
    """Base exception for provider REST API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize provider API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data
        self.operation: Optional[str] = None
        self.target: Optional[str] = None

    def with_context(
        self, operation: str, target: Optional[str] = None
    ) -> 'ProviderAPIError':
        """Prefix the message with the adapter operation that failed.

        Args:
            operation: Adapter operation name
            target: Work item id or scope the operation acted on

        Returns:
            The same error, for re-raising
        """
        if self.operation is None:
            self.operation = operation
            self.target = target
            prefix = f'{operation}({target})' if target else operation
            self.args = (f'{prefix}: {self.args[0]}',) + tuple(self.args[1:])
        return self


class ProviderAuthenticationError(ProviderAPIError):
    """Credentials rejected by the provider. Never retried."""

    pass


class ProviderPermissionError(ProviderAPIError):
    """Access denied for an authenticated caller."""

    pass


class ProviderNotFoundError(ProviderAPIError):
    """Resource not found error."""

    pass


class ProviderRateLimitError(ProviderAPIError):
    """Rate limit exceeded error."""

    def __init__(self, message: str, retry_after: int = 60, **kwargs):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retry
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ProviderServerError(ProviderAPIError):
    """Upstream 5xx error."""

    pass


class ProviderHTTPError(ProviderAPIError):
    """Any other unsuccessful HTTP status."""

    pass
