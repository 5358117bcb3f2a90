"""End-to-end migration between two adapters."""

from datetime import datetime
from typing import Iterable, List, Optional

from loguru import logger

from ..adapters.base import ProviderAdapter
from ..api.exceptions import ProviderNotFoundError
from ..exceptions import MigrationPhaseError
from ..models.migration import (
    LoadOptions,
    MigrationReport,
    TransformOptions,
    VerificationReport,
)
from ..models.work_item import ProcessTemplate, WorkItem, WorkItemFilter
from .pipeline import MigrationPipeline


class MigrationOrchestrator:
    """Runs extract, transform, load and verify in order."""

    def __init__(self, pipeline: Optional[MigrationPipeline] = None):
        self.pipeline = pipeline or MigrationPipeline()
        self.logger = logger.bind(component='MigrationOrchestrator')

    async def migrate(
        self,
        source: ProviderAdapter,
        target: ProviderAdapter,
        filter: Optional[WorkItemFilter] = None,
        transform_options: Optional[TransformOptions] = None,
        load_options: Optional[LoadOptions] = None,
        skip_verification: bool = False,
        strict_verification: bool = False,
    ) -> MigrationReport:
        """Migrate every item matching ``filter`` from ``source`` to ``target``.

        Args:
            source: Initialized adapter to read from
            target: Initialized adapter to create items on
            filter: Selection of source items
            transform_options: Mapping tables and missing field policy
            load_options: Batching, dry run and error handling
            skip_verification: Do not compare the migrated items afterwards
            strict_verification: Raise when verification itself cannot run

        Returns:
            Migration report with the source id to target id mapping

        Raises:
            MigrationPhaseError: If extract fails, transform reports errors,
                load aborts, or verification fails under strict_verification
        """
        started_at = datetime.now()
        load_options = load_options or LoadOptions()
        transform_options = (transform_options or TransformOptions()).copy(
            update={'target_process': self._target_process(target, transform_options)}
        )

        self.logger.info(
            f'Starting migration {source.provider.value} -> {target.provider.value}'
            + (' (dry run)' if load_options.dry_run else '')
        )

        exports = await self.pipeline.extract(source, filter)

        transform_result = self.pipeline.transform(
            exports, target.provider, transform_options
        )
        if transform_result.errors:
            raise MigrationPhaseError('transform', '; '.join(transform_result.errors))

        migration = await self.pipeline.load(target, transform_result.items, load_options)

        id_mapping = {
            source_id: migration.mapping[correlation_id]
            for source_id, correlation_id in transform_result.correlations.items()
            if correlation_id in migration.mapping
        }

        verification: Optional[VerificationReport] = None
        verification_error: Optional[str] = None
        if not skip_verification and not load_options.dry_run:
            try:
                target_items = await self._fetch_migrated(target, id_mapping.values())
                verification = self.pipeline.verify(
                    exports,
                    target_items,
                    id_mapping,
                    target.get_capabilities().max_assignees,
                )
            except Exception as e:
                if strict_verification:
                    raise MigrationPhaseError('verify', str(e), cause=e) from e
                verification_error = str(e)
                self.logger.warning(f'Verification failed: {e}')

        report = MigrationReport(
            transform=transform_result,
            migration=migration,
            verification=verification,
            verification_error=verification_error,
            id_mapping=id_mapping,
            dry_run=load_options.dry_run,
            started_at=started_at,
            completed_at=datetime.now(),
        )
        self.logger.info(
            f'Migration complete: {migration.successful} created, '
            f'{len(migration.failed)} failed'
        )
        return report

    async def _fetch_migrated(
        self, target: ProviderAdapter, ids: Iterable[str]
    ) -> List[WorkItem]:
        """Read back each created item by id; items that are gone are left out.

        Listings do not cover every resource class (GitLab epics only show
        up in typed listings), so each id is fetched directly.
        """
        items = []
        for work_item_id in ids:
            try:
                items.append(await target.get_work_item(work_item_id))
            except ProviderNotFoundError:
                self.logger.warning(f'Migrated item {work_item_id} not found on target')
        return items

    @staticmethod
    def _target_process(
        target: ProviderAdapter, options: Optional[TransformOptions]
    ) -> ProcessTemplate:
        if target.config is not None:
            return target.config.process
        if options is not None:
            return options.target_process
        return ProcessTemplate.AGILE
