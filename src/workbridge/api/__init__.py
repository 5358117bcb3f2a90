"""HTTP client and error taxonomy for provider REST APIs."""

from .client import APIResponse, ClientFactory, ProviderClient
from .exceptions import (
    ProviderAPIError,
    ProviderAuthenticationError,
    ProviderHTTPError,
    ProviderNotFoundError,
    ProviderPermissionError,
    ProviderRateLimitError,
    ProviderServerError,
)

__all__ = [
    'APIResponse',
    'ClientFactory',
    'ProviderClient',
    'ProviderAPIError',
    'ProviderAuthenticationError',
    'ProviderHTTPError',
    'ProviderNotFoundError',
    'ProviderPermissionError',
    'ProviderRateLimitError',
    'ProviderServerError',
]
