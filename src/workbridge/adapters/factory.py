"""Adapter registry keyed by provider."""

from typing import Dict, List, Type, Union

from ..config.config import ProviderConfig
from ..exceptions import ConfigurationError
from ..models.work_item import Provider
from .azure import AzureAdapter
from .base import ProviderAdapter
from .github import GitHubAdapter
from .gitlab import GitLabAdapter


class AdapterFactory:
    """Factory for creating provider adapters."""

    _adapters: Dict[Provider, Type[ProviderAdapter]] = {
        Provider.GITHUB: GitHubAdapter,
        Provider.GITLAB: GitLabAdapter,
        Provider.AZURE: AzureAdapter,
    }

    @classmethod
    def _resolve(cls, provider: Union[Provider, str]) -> Provider:
        try:
            return Provider(provider)
        except ValueError:
            raise ConfigurationError(
                f'Unsupported provider: {provider} '
                f'(supported: {", ".join(cls.supported_providers())})'
            )

    @classmethod
    def create(cls, provider: Union[Provider, str]) -> ProviderAdapter:
        """Create an uninitialized adapter.

        Raises:
            ConfigurationError: If no adapter is registered for the provider
        """
        resolved = cls._resolve(provider)
        adapter_class = cls._adapters.get(resolved)
        if adapter_class is None:
            raise ConfigurationError(f'No adapter registered for {resolved.value}')
        return adapter_class()

    @classmethod
    async def create_and_initialize(cls, config: ProviderConfig) -> ProviderAdapter:
        """Create an adapter and connect it with ``config``."""
        adapter = cls.create(config.provider)
        await adapter.initialize(config)
        return adapter

    @classmethod
    def supported_providers(cls) -> List[str]:
        return [provider.value for provider in cls._adapters]

    @classmethod
    def is_supported(cls, name: str) -> bool:
        return name in cls.supported_providers()

    @classmethod
    def register_adapter(
        cls, provider: Union[Provider, str], adapter_class: Type[ProviderAdapter]
    ) -> None:
        """Register or replace the adapter class for a provider."""
        if not issubclass(adapter_class, ProviderAdapter):
            raise ConfigurationError(
                f'{adapter_class.__name__} is not a ProviderAdapter'
            )
        cls._adapters[cls._resolve(provider)] = adapter_class
