"""Migration engine - builds adapters from configuration and runs a migration."""

from typing import List, Optional

from loguru import logger

from ..adapters.base import ProviderAdapter
from ..adapters.factory import AdapterFactory
from ..config.config import Config
from ..models.migration import MigrationReport
from .orchestrator import MigrationOrchestrator


class MigrationEngine:
    """Main entry point tying a Config to a MigrationOrchestrator."""

    def __init__(self, config: Config, orchestrator: Optional[MigrationOrchestrator] = None):
        self.config = config
        self.orchestrator = orchestrator or MigrationOrchestrator()
        self.logger = logger.bind(component='MigrationEngine')
        self.source: Optional[ProviderAdapter] = None
        self.target: Optional[ProviderAdapter] = None

    async def connect(self) -> None:
        """Initialize both adapters, failing fast on bad configuration or credentials."""
        self.logger.info('Connecting to source and target')
        self.source = await AdapterFactory.create_and_initialize(self.config.source)
        self.target = await AdapterFactory.create_and_initialize(self.config.target)

    async def migrate(
        self,
        dry_run: Optional[bool] = None,
        skip_verification: Optional[bool] = None,
    ) -> MigrationReport:
        """Run a migration using the configured filter and options.

        Args:
            dry_run: Overrides ``migration.dry_run`` when given
            skip_verification: Overrides ``migration.skip_verification`` when given

        Returns:
            Migration report
        """
        settings = self.config.migration
        load_options = settings.to_load_options()
        if dry_run is not None:
            load_options.dry_run = dry_run
        if skip_verification is None:
            skip_verification = settings.skip_verification

        try:
            if self.source is None or self.target is None:
                await self.connect()

            return await self.orchestrator.migrate(
                self.source,
                self.target,
                filter=settings.filter,
                transform_options=self.config.transform,
                load_options=load_options,
                skip_verification=skip_verification,
                strict_verification=settings.strict_verification,
            )
        except Exception as e:
            self.logger.error(f'Migration failed: {e}')
            raise
        finally:
            self.close()

    def close(self) -> None:
        """Close the adapters' HTTP sessions."""
        for adapter in self._adapters():
            adapter.client.close()

    def _adapters(self) -> List[ProviderAdapter]:
        return [
            adapter
            for adapter in (self.source, self.target)
            if adapter is not None and adapter.client is not None
        ]
