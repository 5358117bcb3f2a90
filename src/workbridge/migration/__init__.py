"""Migration pipeline, orchestrator and engine."""

from .engine import MigrationEngine
from .orchestrator import MigrationOrchestrator
from .pipeline import MigrationPipeline, correlation_id_for

__all__ = [
    'MigrationEngine',
    'MigrationOrchestrator',
    'MigrationPipeline',
    'correlation_id_for',
]
