"""Tests for behaviour shared by every adapter."""

import pytest
from unittest.mock import AsyncMock

from workbridge.adapters.base import extract_priority, is_priority_label, sanitize_labels
from workbridge.adapters.github import GitHubAdapter
from workbridge.api.client import ProviderClient
from workbridge.api.exceptions import ProviderNotFoundError
from workbridge.config.config import ProviderConfig
from workbridge.exceptions import ValidationError
from workbridge.models.migration import WorkItemImport
from workbridge.models.work_item import (
    CreateWorkItemData,
    Priority,
    Relationships,
    UpdateWorkItemData,
    WorkItem,
)


def _item(number, **overrides):
    return WorkItem(
        id=f'github:octo/repo#{number}', provider='github', title=f'Issue {number}', **overrides
    )


class TestLabelHelpers:
    """Test priority and label utilities."""

    @pytest.mark.parametrize(
        'labels, expected',
        [
            (['critical'], Priority.CRITICAL),
            (['priority: high'], Priority.HIGH),
            (['priority::low'], Priority.LOW),
            (['P-urgent'], Priority.MEDIUM),
            (['urgent'], Priority.CRITICAL),
            (['priority: low', 'priority: high'], Priority.HIGH),
            (['bug'], Priority.MEDIUM),
        ],
    )
    def test_extract_priority(self, labels, expected):
        """Test label text maps to a priority and the most severe wins."""
        assert extract_priority(labels) == expected

    def test_is_priority_label(self):
        """Test priority labels are recognised."""
        assert is_priority_label(' Priority: Medium ')
        assert not is_priority_label('high-impact')

    def test_sanitize_labels(self):
        """Test whitespace, empties and duplicates are removed in order."""
        assert sanitize_labels([' ui ', '', 'bug', 'ui']) == ['ui', 'bug']


class TestProviderAdapterDefaults:
    """Test the default bulk, export and import operations."""

    def setup_method(self):
        """Set up test fixtures."""
        config = ProviderConfig(provider='github', token='t', project='octo/repo')
        self.adapter = GitHubAdapter()
        self.adapter.config = config
        self.adapter.client = ProviderClient(config)
        self.adapter.converter = self.adapter._create_converter(config)

    @pytest.mark.asyncio
    async def test_bulk_create_in_order(self):
        """Test bulk create calls create once per item in order."""
        self.adapter.create_work_item = AsyncMock(side_effect=[_item(1), _item(2)])

        created = await self.adapter.bulk_create(
            [CreateWorkItemData(title='a'), CreateWorkItemData(title='b')]
        )

        assert [c.id for c in created] == ['github:octo/repo#1', 'github:octo/repo#2']
        titles = [c.args[0].title for c in self.adapter.create_work_item.call_args_list]
        assert titles == ['a', 'b']

    @pytest.mark.asyncio
    async def test_bulk_update(self):
        """Test bulk update passes each id with its changes."""
        self.adapter.update_work_item = AsyncMock(side_effect=[_item(1), _item(2)])

        await self.adapter.bulk_update([
            ('github:octo/repo#1', UpdateWorkItemData(title='x')),
            ('github:octo/repo#2', UpdateWorkItemData(title='y')),
        ])

        ids = [c.args[0] for c in self.adapter.update_work_item.call_args_list]
        assert ids == ['github:octo/repo#1', 'github:octo/repo#2']

    @pytest.mark.asyncio
    async def test_export_snapshots_relationships(self):
        """Test exports carry the item's relationships."""
        parented = _item(2, relationships=Relationships(parent='github:octo/repo#1'))
        self.adapter.get_work_item = AsyncMock(return_value=parented)

        exports = await self.adapter.export_work_items(['github:octo/repo#2'])

        assert exports[0].item == parented
        assert exports[0].relationships.parent == 'github:octo/repo#1'

    @pytest.mark.asyncio
    async def test_export_propagates_first_failure(self):
        """Test an export failure stops the export."""
        self.adapter.get_work_item = AsyncMock(
            side_effect=[_item(1), ProviderNotFoundError('Resource not found', status_code=404)]
        )

        with pytest.raises(ProviderNotFoundError):
            await self.adapter.export_work_items(
                ['github:octo/repo#1', 'github:octo/repo#2', 'github:octo/repo#3']
            )

        assert self.adapter.get_work_item.await_count == 2

    @pytest.mark.asyncio
    async def test_import_isolates_failures(self):
        """Test import records failures by correlation id and continues."""
        self.adapter.create_work_item = AsyncMock(
            side_effect=[_item(1), ValidationError('title must not be blank'), _item(3)]
        )
        imports = [
            WorkItemImport(correlation_id=f'c-{n}', title=f'Item {n}') for n in (1, 2, 3)
        ]

        result = await self.adapter.import_work_items(imports)

        assert result.successful == 2
        assert [f.id for f in result.failed] == ['c-2']
        assert result.mapping == {'c-1': 'github:octo/repo#1', 'c-3': 'github:octo/repo#3'}
