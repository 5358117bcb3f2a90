"""Tests for the migration pipeline phases."""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from workbridge.api.exceptions import ProviderNotFoundError
from workbridge.exceptions import MigrationPhaseError
from workbridge.migration.pipeline import MigrationPipeline, correlation_id_for
from workbridge.models.migration import (
    LoadOptions,
    MissingFieldPolicy,
    TransformOptions,
    WorkItemExport,
    WorkItemImport,
)
from workbridge.models.work_item import (
    Milestone,
    Priority,
    ProcessTemplate,
    Provider,
    UpdateWorkItemData,
    User,
    WorkItem,
    WorkItemState,
    WorkItemType,
)


def _user(username, email=None, provider='github'):
    return User(id=username, username=username, display_name=username.title(),
                email=email, provider=provider)


def _export(item):
    return WorkItemExport(item=item, relationships=item.relationships)


def _github_item(number=1, **overrides):
    data = {
        'id': f'github:octo/repo#{number}',
        'provider': 'github',
        'title': f'Issue {number}',
        'description': 'Body',
    }
    data.update(overrides)
    return WorkItem(**data)


def _gitlab_item(**overrides):
    data = {
        'id': 'gitlab:team/app#issue:1',
        'provider': 'gitlab',
        'title': 'Tune cache',
        'description': 'Body',
        'provider_fields': {'weight': 3, 'confidential': True, 'time_estimate': 0},
    }
    data.update(overrides)
    return WorkItem(**data)


def _imports(count):
    return [
        WorkItemImport(correlation_id=f'c-{n}', title=f'Item {n}')
        for n in range(1, count + 1)
    ]


def _target(fail_titles=()):
    created = []

    async def create(data):
        if data.title in fail_titles:
            raise RuntimeError('HTTP 400')
        created.append(data)
        return WorkItem(
            id=f'azure:contoso/Web#{len(created)}', provider='azure', title=data.title
        )

    target = Mock()
    target.create_work_item = AsyncMock(side_effect=create)
    target.update_work_item = AsyncMock()
    return target


class TestExtract:
    """Test the extract phase."""

    def setup_method(self):
        """Set up test fixtures."""
        self.pipeline = MigrationPipeline()

    @pytest.mark.asyncio
    async def test_exports_listed_ids(self):
        """Test extract exports exactly the listed ids."""
        items = [_github_item(1), _github_item(2)]
        source = Mock()
        source.list_work_items = AsyncMock(return_value=items)
        source.export_work_items = AsyncMock(return_value=[_export(i) for i in items])

        exports = await self.pipeline.extract(source)

        source.export_work_items.assert_awaited_once_with(
            ['github:octo/repo#1', 'github:octo/repo#2']
        )
        assert len(exports) == 2

    @pytest.mark.asyncio
    async def test_failure_is_phase_error(self):
        """Test provider errors abort extraction as a phase error."""
        source = Mock()
        source.list_work_items = AsyncMock(return_value=[_github_item(1)])
        source.export_work_items = AsyncMock(
            side_effect=ProviderNotFoundError('Resource not found', status_code=404)
        )

        with pytest.raises(MigrationPhaseError) as exc_info:
            await self.pipeline.extract(source)

        assert exc_info.value.phase == 'extract'
        assert isinstance(exc_info.value.cause, ProviderNotFoundError)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_phase_error(self):
        """Test conversion errors during listing are reported as extract failures."""
        source = Mock()
        source.list_work_items = AsyncMock(side_effect=KeyError('iid'))

        with pytest.raises(MigrationPhaseError) as exc_info:
            await self.pipeline.extract(source)

        assert exc_info.value.phase == 'extract'
        assert isinstance(exc_info.value.cause, KeyError)


class TestTransform:
    """Test the transform phase."""

    def setup_method(self):
        """Set up test fixtures."""
        self.pipeline = MigrationPipeline()

    def test_bug_with_priority_to_azure_agile(self):
        """Test type and priority survive while the priority label is dropped."""
        item = _github_item(
            labels=['bug', 'priority: high'], priority=Priority.HIGH
        )

        result = self.pipeline.transform(
            [_export(item)],
            Provider.AZURE,
            TransformOptions(target_process=ProcessTemplate.AGILE),
        )

        imported = result.items[0]
        assert imported.type == WorkItemType.BUG
        assert imported.target_type == 'Bug'
        assert imported.priority == Priority.HIGH
        assert imported.labels == ['bug']
        assert result.correlations == {item.id: correlation_id_for(item.id)}

    def test_blank_title_is_an_error(self):
        """Test a blank title is reported and the rest continue."""
        blank = _github_item(1, title='  ')
        good = _github_item(2)

        result = self.pipeline.transform([_export(blank), _export(good)], Provider.GITLAB)

        assert [i.title for i in result.items] == ['Issue 2']
        assert result.errors == ['github:octo/repo#1: title is blank']
        assert blank.id not in result.correlations

    def test_deterministic_and_pure(self):
        """Test equal inputs give equal outputs and inputs are untouched."""
        exports = [_export(_github_item(1, labels=['bug'])), _export(_gitlab_item())]
        before = [e.copy(deep=True) for e in exports]

        first = self.pipeline.transform(exports, Provider.AZURE)
        second = self.pipeline.transform(exports, Provider.AZURE)

        assert first == second
        assert exports == before

    def test_correlation_id_is_stable(self):
        """Test correlation ids depend only on the source id."""
        assert correlation_id_for('github:octo/repo#1') == correlation_id_for(
            'github:octo/repo#1'
        )
        assert correlation_id_for('github:octo/repo#1') != correlation_id_for(
            'github:octo/repo#2'
        )

    def test_user_and_label_mapping(self):
        """Test mapped users and labels are recorded; unmapped users warn."""
        item = _github_item(
            assignees=[_user('alice'), _user('bob', email='bob@example.com'), _user('carol')],
            labels=['bug', 'ui'],
        )
        options = TransformOptions(
            user_mapping={'alice': 'alice.a', 'bob@example.com': 'bob.b'},
            label_mapping={'ui': 'frontend'},
        )

        result = self.pipeline.transform([_export(item)], Provider.GITLAB, options)

        assert result.items[0].assignees == ['alice.a', 'bob.b', 'carol']
        assert result.items[0].labels == ['bug', 'frontend']
        assert result.fields_mapped['user:alice'] == 'alice.a'
        assert result.fields_mapped['label:ui'] == 'frontend'
        assert 'No mapping found for user: carol (Carol)' in result.warnings

    def test_preserve_ids(self):
        """Test the provenance marker is prefixed."""
        result = self.pipeline.transform(
            [_export(_github_item(5))],
            Provider.GITLAB,
            TransformOptions(preserve_ids=True),
        )

        assert result.items[0].description == (
            '**Migrated from github:octo/repo#5**\n\nBody'
        )

    def test_lost_fields_metadata_policy(self):
        """Test lost fields are kept as structured metadata."""
        result = self.pipeline.transform([_export(_gitlab_item())], Provider.GITHUB)

        imported = result.items[0]
        assert imported.custom_fields == {}
        assert imported.migration_metadata == {
            'lost_fields': {'confidential': True, 'weight': 3},
            'source_provider': 'gitlab',
        }
        assert imported.description == 'Body'
        assert result.fields_lost == ['confidential', 'weight']
        assert result.warnings == [
            'Lost fields for gitlab:team/app#issue:1: confidential, weight'
        ]

    def test_lost_fields_description_policy(self):
        """Test lost fields are appended to the description."""
        result = self.pipeline.transform(
            [_export(_gitlab_item())],
            Provider.GITHUB,
            TransformOptions(missing_fields=MissingFieldPolicy.DESCRIPTION),
        )

        imported = result.items[0]
        assert imported.migration_metadata is None
        assert imported.description == (
            'Body\n\n---\n**Fields not supported by github:**\n'
            '- confidential: True\n- weight: 3'
        )

    def test_lost_fields_ignore_policy(self):
        """Test ignored fields still appear in the ledger."""
        result = self.pipeline.transform(
            [_export(_gitlab_item())],
            Provider.GITHUB,
            TransformOptions(missing_fields=MissingFieldPolicy.IGNORE),
        )

        imported = result.items[0]
        assert imported.migration_metadata is None
        assert imported.description == 'Body'
        assert result.fields_lost == ['confidential', 'weight']

    def test_custom_field_mapping(self):
        """Test a renamed field lands on a native target field."""
        item = _gitlab_item(provider_fields={'weight': 5})

        result = self.pipeline.transform(
            [_export(item)],
            Provider.AZURE,
            TransformOptions(custom_field_mapping={'weight': 'story_points'}),
        )

        assert result.items[0].custom_fields == {'story_points': 5}
        assert result.fields_mapped['weight'] == 'story_points'
        assert result.fields_lost == []

    def test_milestone_only_within_platform(self):
        """Test milestones are carried to the same platform and lost elsewhere."""
        item = _github_item(
            milestone=Milestone(id='4', title='v1.0', provider='github')
        )

        same = self.pipeline.transform([_export(item)], Provider.GITHUB)
        other = self.pipeline.transform([_export(item)], Provider.AZURE)

        assert same.items[0].milestone == '4'
        assert other.items[0].milestone is None
        assert other.items[0].migration_metadata['lost_fields'] == {'milestone': 'v1.0'}


class TestLoad:
    """Test the load phase."""

    def setup_method(self):
        """Set up test fixtures."""
        self.pipeline = MigrationPipeline()

    @pytest.mark.asyncio
    async def test_failure_isolated_within_batches(self):
        """Test one failing item does not stop the others."""
        target = _target(fail_titles=('Item 14',))

        result = await self.pipeline.load(
            target, _imports(25), LoadOptions(batch_size=10, batch_delay=0)
        )

        assert result.successful == 24
        assert [f.id for f in result.failed] == ['c-14']
        assert result.failed[0].reason == 'HTTP 400'
        assert result.batches_attempted == 3
        assert result.total == 25
        assert result.mapping['c-1'] == 'azure:contoso/Web#1'
        assert 'c-14' not in result.mapping

    @pytest.mark.asyncio
    async def test_stop_on_first_error(self):
        """Test continue_on_error=False aborts the phase."""
        target = _target(fail_titles=('Item 2',))

        with pytest.raises(MigrationPhaseError) as exc_info:
            await self.pipeline.load(
                target,
                _imports(5),
                LoadOptions(batch_size=10, batch_delay=0, continue_on_error=False),
            )

        assert exc_info.value.phase == 'load'
        assert 'Item 2' in str(exc_info.value)
        assert target.create_work_item.await_count == 2

    @pytest.mark.asyncio
    async def test_dry_run_makes_no_calls(self):
        """Test dry run only counts and fabricates placeholder ids."""
        target = _target()

        result = await self.pipeline.load(
            target, _imports(3), LoadOptions(dry_run=True, batch_size=2)
        )

        target.create_work_item.assert_not_awaited()
        assert result.successful == 3
        assert result.mapping == {
            'c-1': 'dry-run-1',
            'c-2': 'dry-run-2',
            'c-3': 'dry-run-3',
        }
        assert result.batches_attempted == 2

    @pytest.mark.asyncio
    async def test_closed_items_closed_after_create(self):
        """Test closed source items are closed on the target."""
        target = _target()
        item = WorkItemImport(correlation_id='c-1', title='Done', state=WorkItemState.CLOSED)

        await self.pipeline.load(target, [item], LoadOptions(batch_delay=0))

        target.update_work_item.assert_awaited_once_with(
            'azure:contoso/Web#1', UpdateWorkItemData(state=WorkItemState.CLOSED)
        )

    @pytest.mark.asyncio
    async def test_close_failure_keeps_created_item(self):
        """Test an item that was created but not closed still counts as migrated."""
        target = _target()
        target.update_work_item = AsyncMock(side_effect=RuntimeError('HTTP 400 state'))
        items = [
            WorkItemImport(correlation_id='c-1', title='Done', state=WorkItemState.CLOSED),
            WorkItemImport(correlation_id='c-2', title='Open'),
        ]

        result = await self.pipeline.load(
            target, items, LoadOptions(batch_delay=0, continue_on_error=False)
        )

        assert result.successful == 2
        assert result.failed == []
        assert result.mapping == {'c-1': 'azure:contoso/Web#1', 'c-2': 'azure:contoso/Web#2'}
        assert len(result.warnings) == 1
        assert 'azure:contoso/Web#1' in result.warnings[0]
        assert 'HTTP 400 state' in result.warnings[0]

    @pytest.mark.asyncio
    async def test_delay_between_batches(self):
        """Test the pause happens between batches only."""
        target = _target()

        with patch('workbridge.migration.pipeline.asyncio.sleep', AsyncMock()) as mock_sleep:
            await self.pipeline.load(
                target, _imports(5), LoadOptions(batch_size=2, batch_delay=0.5)
            )

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)


class TestVerify:
    """Test the verify phase."""

    def setup_method(self):
        """Set up test fixtures."""
        self.pipeline = MigrationPipeline()

    def test_reports_discrepancies(self):
        """Test unmapped, missing and mismatched items are reported."""
        unmapped = _github_item(1)
        missing = _github_item(2)
        changed = _github_item(
            3, state=WorkItemState.CLOSED, assignees=[_user('alice'), _user('bob')]
        )
        migrated = WorkItem(
            id='azure:contoso/Web#30',
            provider='azure',
            title='Renamed',
            assignees=[_user('alice', provider='azure')],
        )

        report = self.pipeline.verify(
            [_export(unmapped), _export(missing), _export(changed)],
            [migrated],
            {missing.id: 'azure:contoso/Web#20', changed.id: migrated.id},
            max_assignees=1,
        )

        assert report.total_items == 3
        assert report.successful == 1
        assert report.failed == 2
        issues = [(i.original_id, i.issue) for i in report.data_integrity_issues]
        assert (missing.id, 'Target item not found') in issues
        assert (changed.id, 'Title mismatch: expected "Issue 3", got "Renamed"') in issues
        assert (changed.id, 'State mismatch: expected "closed", got "open"') in issues
        assert not any('Assignee' in issue for _, issue in issues)
