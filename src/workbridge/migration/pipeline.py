"""Extract, transform, load and verify phases for work item migration."""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..adapters.base import ProviderAdapter, is_priority_label
from ..exceptions import MigrationPhaseError
from ..mapping.type_mapper import TypeMappingInput, map_type
from ..models.migration import (
    IntegrityIssue,
    LoadFailure,
    LoadOptions,
    MigrationResult,
    MissingFieldPolicy,
    TransformOptions,
    TransformResult,
    VerificationReport,
    WorkItemExport,
    WorkItemImport,
)
from ..models.work_item import (
    Provider,
    UpdateWorkItemData,
    WorkItem,
    WorkItemFilter,
    WorkItemState,
)

CORRELATION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, 'workbridge/correlation')

# provider_fields worth carrying when the source is this platform
CUSTOM_FIELD_ALLOWLIST: Dict[Provider, Tuple[str, ...]] = {
    Provider.GITHUB: (),
    Provider.GITLAB: ('weight', 'time_estimate'),
    Provider.AZURE: ('story_points', 'effort', 'area_path', 'iteration_path'),
}

# Fields each platform stores natively on create
TARGET_NATIVE_FIELDS: Dict[Provider, Tuple[str, ...]] = {
    Provider.GITHUB: (),
    Provider.GITLAB: ('weight', 'time_estimate', 'confidential'),
    Provider.AZURE: (
        'story_points',
        'effort',
        'original_estimate',
        'remaining_work',
        'area_path',
        'iteration_path',
    ),
}

DEFAULT_MAX_ASSIGNEES = 10


def correlation_id_for(source_id: str) -> str:
    """Deterministic correlation token for a source item."""
    return str(uuid.uuid5(CORRELATION_NAMESPACE, source_id))


def _is_native_field(name: str, target: Provider) -> bool:
    if name in TARGET_NATIVE_FIELDS[target]:
        return True
    # Azure accepts any field reference name, e.g. Custom.Risk
    return target == Provider.AZURE and '.' in name


class MigrationPipeline:
    """The four migration phases, each usable on its own.

    ``transform`` and ``verify`` are pure; ``extract`` and ``load`` talk to
    adapters. One pipeline may be shared, but a single adapter should only
    be driven by one phase at a time.
    """

    def __init__(self):
        self.logger = logger.bind(component='MigrationPipeline')

    async def extract(
        self, source: ProviderAdapter, filter: Optional[WorkItemFilter] = None
    ) -> List[WorkItemExport]:
        """List matching items on ``source`` and export that exact id set.

        Raises:
            MigrationPhaseError: If listing or any export fails
        """
        try:
            items = await source.list_work_items(filter)
            ids = [item.id for item in items]
            self.logger.info(f'Extracting {len(ids)} work items')
            exports = await source.export_work_items(ids)
        except Exception as e:
            raise MigrationPhaseError('extract', str(e), cause=e) from e

        self.logger.info(f'Extracted {len(exports)} work items')
        return exports

    def transform(
        self,
        items: List[WorkItemExport],
        target_provider: Provider,
        options: Optional[TransformOptions] = None,
    ) -> TransformResult:
        """Convert exports into creation payloads for ``target_provider``.

        Each item is handled independently: a problem with one is recorded
        in ``errors`` and never stops the rest.

        Args:
            items: Exports from the extract phase
            target_provider: Platform the items will be created on
            options: Mapping tables and the missing field policy

        Returns:
            Imports in input order plus warnings, errors and field ledgers
        """
        options = options or TransformOptions()
        result = TransformResult()

        for export in items:
            item = export.item
            try:
                imported = self._transform_item(export, target_provider, options, result)
            except Exception as e:
                result.errors.append(f'{item.id}: {e}')
                continue
            if imported is not None:
                result.items.append(imported)
                result.correlations[item.id] = imported.correlation_id

        self.logger.info(
            f'Transformed {len(result.items)}/{len(items)} items for {target_provider.value} '
            f'({len(result.warnings)} warnings, {len(result.errors)} errors)'
        )
        return result

    def _transform_item(
        self,
        export: WorkItemExport,
        target: Provider,
        options: TransformOptions,
        result: TransformResult,
    ) -> Optional[WorkItemImport]:
        item = export.item

        if not item.title or not item.title.strip():
            result.errors.append(f'{item.id}: title is blank')
            return None

        mapping = map_type(
            TypeMappingInput(
                source_provider=item.provider,
                native_type=item.provider_fields.get('native_type'),
                target_provider=target,
                target_process=options.target_process,
                labels=item.labels,
                child_count=len(export.relationships.children),
                description=item.description,
                is_pull_request=bool(item.provider_fields.get('pull_request')),
            )
        )

        assignees = self._map_users(item, options, result)
        labels = self._map_labels(item.labels, options, result)
        for tag in mapping.tags:
            if tag not in labels:
                labels.append(tag)

        custom_fields, lost = self._map_fields(item, target, options, result)

        milestone = None
        if item.milestone:
            if item.provider == target:
                milestone = item.milestone.id
            else:
                lost['milestone'] = item.milestone.title

        description = item.description
        if options.preserve_ids:
            description = f'**Migrated from {item.id}**\n\n{description}'.rstrip()

        metadata = None
        if lost:
            names = sorted(lost)
            for name in names:
                if name not in result.fields_lost:
                    result.fields_lost.append(name)
            result.warnings.append(f'Lost fields for {item.id}: {", ".join(names)}')

            if options.missing_fields == MissingFieldPolicy.METADATA:
                metadata = {
                    'lost_fields': {name: lost[name] for name in names},
                    'source_provider': item.provider.value,
                }
            elif options.missing_fields == MissingFieldPolicy.DESCRIPTION:
                lines = '\n'.join(f'- {name}: {lost[name]}' for name in names)
                description = (
                    f'{description}\n\n---\n'
                    f'**Fields not supported by {target.value}:**\n{lines}'
                ).lstrip()

        return WorkItemImport(
            correlation_id=correlation_id_for(item.id),
            title=item.title,
            description=description,
            type=mapping.type,
            target_type=mapping.target_type,
            state=item.state,
            labels=labels,
            assignees=assignees,
            priority=item.priority,
            milestone=milestone,
            due_date=item.due_date,
            custom_fields=custom_fields,
            migration_metadata=metadata,
        )

    @staticmethod
    def _map_users(
        item: WorkItem, options: TransformOptions, result: TransformResult
    ) -> List[str]:
        usernames = []
        for user in item.assignees:
            mapped = options.user_mapping.get(user.username)
            if mapped is None and user.email:
                mapped = options.user_mapping.get(user.email)
            if mapped:
                result.fields_mapped[f'user:{user.username}'] = mapped
                usernames.append(mapped)
            else:
                result.warnings.append(
                    f'No mapping found for user: {user.username} ({user.display_name})'
                )
                usernames.append(user.username)
        return usernames

    @staticmethod
    def _map_labels(
        labels: List[str], options: TransformOptions, result: TransformResult
    ) -> List[str]:
        mapped_labels: List[str] = []
        for label in labels:
            # Priority travels as a field, not a label
            if is_priority_label(label):
                continue
            mapped = options.label_mapping.get(label)
            if mapped:
                result.fields_mapped[f'label:{label}'] = mapped
                label = mapped
            if label not in mapped_labels:
                mapped_labels.append(label)
        return mapped_labels

    @staticmethod
    def _map_fields(
        item: WorkItem,
        target: Provider,
        options: TransformOptions,
        result: TransformResult,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Split the item's extra fields into carried and lost."""
        candidates: Dict[str, Any] = {}
        for name in CUSTOM_FIELD_ALLOWLIST[item.provider]:
            value = item.provider_fields.get(name)
            if value:
                candidates[name] = value
        if item.provider == Provider.GITLAB and item.provider_fields.get('confidential'):
            candidates['confidential'] = True
        for name, value in item.custom_fields.items():
            if value is not None:
                candidates[name] = value
        for name in options.custom_field_mapping:
            if name not in candidates and item.provider_fields.get(name) is not None:
                candidates[name] = item.provider_fields[name]

        carried: Dict[str, Any] = {}
        lost: Dict[str, Any] = {}
        for name, value in candidates.items():
            target_name = options.custom_field_mapping.get(name, name)
            if _is_native_field(target_name, target):
                carried[target_name] = value
                result.fields_mapped[name] = target_name
            else:
                lost[name] = value
        return carried, lost

    async def load(
        self,
        target: ProviderAdapter,
        items: List[WorkItemImport],
        options: Optional[LoadOptions] = None,
    ) -> MigrationResult:
        """Create items on ``target`` in fixed-size sequential batches.

        Raises:
            MigrationPhaseError: On the first failure when continue_on_error is off
        """
        options = options or LoadOptions()
        result = MigrationResult()
        batches = [
            items[start:start + options.batch_size]
            for start in range(0, len(items), options.batch_size)
        ]

        for index, batch in enumerate(batches):
            if index and options.batch_delay and not options.dry_run:
                await asyncio.sleep(options.batch_delay)

            result.batches_attempted += 1
            self.logger.info(
                f'Loading batch {index + 1}/{len(batches)} ({len(batch)} items)'
                + (' [dry run]' if options.dry_run else '')
            )

            for item in batch:
                if options.dry_run:
                    result.successful += 1
                    result.mapping[item.correlation_id] = f'dry-run-{result.successful}'
                    continue

                try:
                    created = await target.create_work_item(item.to_create_data())
                except Exception as e:
                    self.logger.warning(f'Failed to create "{item.title}": {e}')
                    result.failed.append(
                        LoadFailure(id=item.correlation_id, title=item.title, reason=str(e))
                    )
                    if not options.continue_on_error:
                        raise MigrationPhaseError(
                            'load', f'item "{item.title}" ({item.correlation_id}): {e}', cause=e
                        ) from e
                    continue

                # Created items count as migrated even if closing them fails
                result.mapping[item.correlation_id] = created.id
                result.successful += 1
                if item.state == WorkItemState.CLOSED and created.state != WorkItemState.CLOSED:
                    try:
                        await target.update_work_item(
                            created.id, UpdateWorkItemData(state=WorkItemState.CLOSED)
                        )
                    except Exception as e:
                        message = (
                            f'Created {created.id} for "{item.title}" '
                            f'but could not close it: {e}'
                        )
                        self.logger.warning(message)
                        result.warnings.append(message)

        self.logger.info(
            f'Loaded {result.successful} items, {len(result.failed)} failed '
            f'in {result.batches_attempted} batches'
        )
        return result

    def verify(
        self,
        exports: List[WorkItemExport],
        target_items: List[WorkItem],
        id_mapping: Dict[str, str],
        max_assignees: int = DEFAULT_MAX_ASSIGNEES,
    ) -> VerificationReport:
        """Compare each migrated item against its live copy on the target.

        Args:
            exports: Source snapshots from the extract phase
            target_items: Items currently on the target
            id_mapping: Source id to target id
            max_assignees: Target's assignee limit

        Returns:
            Counts plus a list of discrepancies; never raises on mismatches
        """
        report = VerificationReport(total_items=len(exports))
        live = {item.id: item for item in target_items}

        for export in exports:
            source = export.item
            new_id = id_mapping.get(source.id)
            if new_id is None:
                report.failed += 1
                continue

            migrated = live.get(new_id)
            if migrated is None:
                report.failed += 1
                report.data_integrity_issues.append(
                    IntegrityIssue(
                        original_id=source.id,
                        new_id=new_id,
                        issue='Target item not found',
                    )
                )
                continue

            report.successful += 1
            issues = []
            if source.title != migrated.title:
                issues.append(
                    f'Title mismatch: expected "{source.title}", got "{migrated.title}"'
                )
            if source.state != migrated.state:
                issues.append(
                    f'State mismatch: expected "{source.state.value}", '
                    f'got "{migrated.state.value}"'
                )
            expected = min(len(source.assignees), max_assignees)
            if len(migrated.assignees) != expected:
                issues.append(
                    f'Assignee count mismatch: expected {expected}, '
                    f'got {len(migrated.assignees)}'
                )
            report.data_integrity_issues.extend(
                IntegrityIssue(original_id=source.id, new_id=new_id, issue=issue)
                for issue in issues
            )

        self.logger.info(
            f'Verified {report.successful}/{report.total_items} items, '
            f'{len(report.data_integrity_issues)} integrity issues'
        )
        return report
