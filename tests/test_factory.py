"""Tests for the adapter factory and the cross-platform aggregator."""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from workbridge.adapters import (
    AdapterFactory,
    AzureAdapter,
    GitHubAdapter,
    GitLabAdapter,
)
from workbridge.aggregator import WorkItemAggregator
from workbridge.config.config import ProviderConfig
from workbridge.exceptions import ConfigurationError
from workbridge.models.work_item import Provider, WorkItem


class TestAdapterFactory:
    """Test adapter creation and registration."""

    @pytest.mark.parametrize(
        'name, adapter_class',
        [
            ('github', GitHubAdapter),
            ('gitlab', GitLabAdapter),
            ('azure', AzureAdapter),
            (Provider.AZURE, AzureAdapter),
        ],
    )
    def test_create(self, name, adapter_class):
        """Test each provider resolves to its adapter."""
        adapter = AdapterFactory.create(name)

        assert isinstance(adapter, adapter_class)
        assert adapter.client is None

    def test_unknown_provider(self):
        """Test unknown providers raise a configuration error."""
        with pytest.raises(ConfigurationError, match='Unsupported provider: jira'):
            AdapterFactory.create('jira')

    def test_supported_providers(self):
        """Test the registry lists every provider."""
        assert set(AdapterFactory.supported_providers()) == {'github', 'gitlab', 'azure'}
        assert AdapterFactory.is_supported('gitlab')
        assert not AdapterFactory.is_supported('jira')

    def test_register_adapter(self):
        """Test a registered adapter replaces the built-in one."""

        class EnterpriseGitHubAdapter(GitHubAdapter):
            pass

        with patch.dict(AdapterFactory._adapters):
            AdapterFactory.register_adapter('github', EnterpriseGitHubAdapter)

            assert isinstance(AdapterFactory.create('github'), EnterpriseGitHubAdapter)

        assert type(AdapterFactory.create('github')) is GitHubAdapter

    def test_register_rejects_non_adapter(self):
        """Test only adapter subclasses can be registered."""
        with pytest.raises(ConfigurationError):
            AdapterFactory.register_adapter('github', dict)

    @pytest.mark.asyncio
    async def test_create_and_initialize(self):
        """Test the created adapter is initialized with the config."""
        config = ProviderConfig(provider='github', token='t', project='octo/repo')

        with patch.object(GitHubAdapter, 'initialize', AsyncMock()) as mock_initialize:
            adapter = await AdapterFactory.create_and_initialize(config)

        assert isinstance(adapter, GitHubAdapter)
        mock_initialize.assert_awaited_once_with(config)


def _mock_adapter(name, items=None, error=None):
    adapter = Mock()
    adapter.config.display_name = name
    adapter.list_work_items = AsyncMock(return_value=items or [], side_effect=error)
    adapter.search = AsyncMock(return_value=items or [], side_effect=error)
    return adapter


class TestWorkItemAggregator:
    """Test concurrent reads across platforms."""

    def setup_method(self):
        """Set up test fixtures."""
        self.github_item = WorkItem(id='github:octo/repo#1', provider='github', title='A')
        self.azure_item = WorkItem(id='azure:contoso/Web#2', provider='azure', title='B')

    @pytest.mark.asyncio
    async def test_list_all_merges_results(self):
        """Test items from every adapter are returned in adapter order."""
        aggregator = WorkItemAggregator([
            _mock_adapter('GitHub', [self.github_item]),
            _mock_adapter('Azure', [self.azure_item]),
        ])

        items = await aggregator.list_all()

        assert [item.id for item in items] == [self.github_item.id, self.azure_item.id]

    @pytest.mark.asyncio
    async def test_failing_adapter_is_skipped(self):
        """Test one failing platform does not hide the others."""
        failing = _mock_adapter('GitLab', error=RuntimeError('down'))
        aggregator = WorkItemAggregator([failing, _mock_adapter('Azure', [self.azure_item])])

        items = await aggregator.search_all('login')

        assert items == [self.azure_item]
        failing.search.assert_awaited_once_with('login')

    def test_capabilities_keyed_by_name(self):
        """Test capabilities are reported per display name."""
        adapter = _mock_adapter('GitHub')
        adapter.get_capabilities.return_value = 'caps'

        assert WorkItemAggregator([adapter]).get_capabilities() == {'GitHub': 'caps'}
