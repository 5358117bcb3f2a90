"""REST client shared by the provider adapters."""

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urljoin

import aiohttp
import requests
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..config.config import ProviderConfig
from ..exceptions import ConfigurationError
from ..models.work_item import Provider
from .exceptions import (
    ProviderAPIError,
    ProviderAuthenticationError,
    ProviderHTTPError,
    ProviderNotFoundError,
    ProviderPermissionError,
    ProviderRateLimitError,
    ProviderServerError,
)

USER_AGENT = f'workbridge/{__version__}'
AZURE_API_VERSION = '7.0'

DEFAULT_API_URLS = {
    Provider.GITHUB: 'https://api.github.com',
    Provider.GITLAB: 'https://gitlab.com',
}


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


class ProviderClient:
    """HTTP client for one platform connection.

    Sync calls go through a ``requests`` session and are used for quick
    connectivity checks. Adapter traffic uses the ``*_async`` methods.
    """

    def __init__(self, config: ProviderConfig):
        """Initialize provider client.

        Args:
            config: Platform connection configuration
        """
        self.config = config
        self.base_url = self._resolve_base_url(config)
        self.session = requests.Session()
        self.session.headers.update(self._auth_headers())
        self.session.headers.update(
            {'Content-Type': 'application/json', 'User-Agent': USER_AGENT}
        )

        logger.info(f'Initialized {config.provider.value} client for {self.base_url}')

    @staticmethod
    def _resolve_base_url(config: ProviderConfig) -> str:
        if config.provider == Provider.AZURE:
            if config.api_url:
                return config.api_url
            if not config.organization:
                raise ConfigurationError(
                    'Azure DevOps requires an organization to build the API URL'
                )
            return f'https://dev.azure.com/{quote(config.organization)}'

        base_url = config.api_url or DEFAULT_API_URLS[config.provider]
        if config.provider == Provider.GITLAB and not base_url.endswith('/api/v4'):
            base_url += '/api/v4'
        return base_url

    def _auth_headers(self) -> Dict[str, str]:
        token = self.config.token
        if self.config.provider == Provider.GITHUB:
            return {
                'Authorization': f'Bearer {token}',
                'Accept': 'application/vnd.github.v3+json',
            }
        if self.config.provider == Provider.GITLAB:
            return {'Private-Token': token}
        encoded = base64.b64encode(f':{token}'.encode('utf-8')).decode('ascii')
        return {'Authorization': f'Basic {encoded}'}

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint.

        Args:
            endpoint: API endpoint path

        Returns:
            Full API URL
        """
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    def connection_check(self) -> Tuple[str, Optional[Dict[str, Any]]]:
        """Endpoint and params used to verify credentials."""
        if self.config.provider == Provider.AZURE:
            project = quote(self.config.project or '', safe='')
            return f'_apis/projects/{project}', {'api-version': AZURE_API_VERSION}
        return '/user', None

    @staticmethod
    def _error_message(error_data: Any, status: int, text: str) -> str:
        if isinstance(error_data, dict):
            for key in ('message', 'error', 'error_description'):
                if error_data.get(key):
                    return str(error_data[key])
        return f'HTTP {status}: {text}' if text else f'HTTP {status}'

    def _raise_for_status(
        self,
        status: int,
        headers: Dict[str, str],
        error_data: Any,
        text: str,
    ) -> None:
        """Classify an unsuccessful response by status code.

        Raises:
            ProviderAPIError: Subclass matching the status code
        """
        if status == 429:
            try:
                retry_after = int(headers.get('Retry-After', 60))
            except (TypeError, ValueError):
                retry_after = 60
            raise ProviderRateLimitError(
                f'Rate limit exceeded. Retry after {retry_after} seconds',
                retry_after=retry_after,
                status_code=status,
                response_data=error_data,
            )

        if status == 401:
            raise ProviderAuthenticationError(
                'Authentication failed', status_code=status, response_data=error_data
            )

        if status == 403:
            raise ProviderPermissionError(
                'Access denied', status_code=status, response_data=error_data
            )

        if status == 404:
            raise ProviderNotFoundError(
                'Resource not found', status_code=status, response_data=error_data
            )

        message = self._error_message(error_data, status, text)
        if status >= 500:
            raise ProviderServerError(
                f'Server error: {message}', status_code=status, response_data=error_data
            )

        raise ProviderHTTPError(
            f'API request failed: {message}',
            status_code=status,
            response_data=error_data,
        )

    def _handle_response(self, response: requests.Response) -> APIResponse:
        """Handle API response and convert to standard format.

        Args:
            response: Raw HTTP response

        Returns:
            Standardized API response

        Raises:
            ProviderAPIError: For various API errors
        """
        headers = dict(response.headers)

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = None
            self._raise_for_status(
                response.status_code, headers, error_data, response.text
            )

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text

        return APIResponse(
            status_code=response.status_code,
            data=data,
            headers=headers,
            success=200 <= response.status_code < 300,
        )

    async def _make_request_async(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Any = None,
        content_type: Optional[str] = None,
    ) -> APIResponse:
        """Make asynchronous API request.

        Args:
            method: HTTP method
            endpoint: API endpoint
            params: Query parameters
            data: Request body, serialised as JSON
            content_type: Override for the request Content-Type

        Returns:
            API response
        """
        url = self._build_url(endpoint)

        headers = {
            'Content-Type': content_type or 'application/json',
            'User-Agent': USER_AGENT,
        }
        headers.update(self._auth_headers())

        query = {k: str(v) for k, v in params.items()} if params else None
        body = json.dumps(data) if data is not None else None
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
            try:
                async with session.request(
                    method=method, url=url, params=query, data=body
                ) as response:
                    response_headers = dict(response.headers)
                    response_text = await response.text()

                    if response.status >= 400:
                        try:
                            error_data = (
                                json.loads(response_text) if response_text else None
                            )
                        except ValueError:
                            error_data = None
                        self._raise_for_status(
                            response.status, response_headers, error_data, response_text
                        )

                    try:
                        response_data = (
                            json.loads(response_text) if response_text else None
                        )
                    except ValueError:
                        response_data = response_text

                    return APIResponse(
                        status_code=response.status,
                        data=response_data,
                        headers=response_headers,
                        success=200 <= response.status < 300,
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f'Network error during {method} {endpoint}: {e}')
                raise ProviderAPIError(f'Network error: {e}')

    def get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make GET request.

        Args:
            endpoint: API endpoint
            params: Query parameters
            **kwargs: Additional request arguments

        Returns:
            API response
        """
        url = self._build_url(endpoint)
        kwargs.setdefault('timeout', self.config.timeout)

        try:
            response = self.session.get(url, params=params, **kwargs)
            return self._handle_response(response)
        except requests.RequestException as e:
            logger.error(f'Network error during GET request: {e}')
            raise ProviderAPIError(f'Network error: {e}')

    async def get_async(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make asynchronous GET request."""
        return await self._make_request_async('GET', endpoint, params=params)

    async def post_async(
        self,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> APIResponse:
        """Make asynchronous POST request.

        Args:
            endpoint: API endpoint
            data: Request body data
            params: Query parameters
            content_type: Override for the request Content-Type

        Returns:
            API response
        """
        return await self._make_request_async(
            'POST', endpoint, params=params, data=data, content_type=content_type
        )

    async def put_async(
        self,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> APIResponse:
        """Make asynchronous PUT request."""
        return await self._make_request_async('PUT', endpoint, params=params, data=data)

    async def patch_async(
        self,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> APIResponse:
        """Make asynchronous PATCH request."""
        return await self._make_request_async(
            'PATCH', endpoint, params=params, data=data, content_type=content_type
        )

    async def delete_async(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> APIResponse:
        """Make asynchronous DELETE request."""
        return await self._make_request_async('DELETE', endpoint, params=params)

    async def get_paginated_async(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        """Get all pages of a page/per_page paginated endpoint.

        Args:
            endpoint: API endpoint
            params: Query parameters
            per_page: Items per page

        Returns:
            List of all items from all pages
        """
        all_items: List[Dict[str, Any]] = []
        page = 1
        params = dict(params or {})
        params['per_page'] = per_page

        while True:
            params['page'] = page
            response = await self.get_async(endpoint, params=params)

            items = response.data
            if not items:
                break

            all_items.extend(items)

            total_pages = response.headers.get('X-Total-Pages')
            if total_pages and page >= int(total_pages):
                break

            if len(items) < per_page:
                break

            page += 1

        logger.debug(f'Retrieved {len(all_items)} items from {endpoint}')
        return all_items

    def test_connection(self) -> bool:
        """Test connection and credentials.

        Returns:
            True if connection successful, False otherwise
        """
        endpoint, params = self.connection_check()
        try:
            response = self.get(endpoint, params=params)
            return response.success
        except ProviderAPIError as e:
            logger.error(f'Connection test failed: {e}')
            return False

    def close(self):
        """Close the client session."""
        self.session.close()
        logger.debug(f'{self.config.provider.value} client session closed')

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class ClientFactory:
    """Factory for creating provider API clients."""

    @staticmethod
    def create_client(config: ProviderConfig) -> ProviderClient:
        """Create a client from configuration.

        Args:
            config: Platform connection configuration

        Returns:
            Configured provider client

        Raises:
            ProviderAuthenticationError: If no token is configured
        """
        if not config.token:
            raise ProviderAuthenticationError(
                f'No token configured for {config.display_name}'
            )

        return ProviderClient(config)
