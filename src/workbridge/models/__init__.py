"""Canonical data models."""

from .work_item import (
    CreateWorkItemData,
    Iteration,
    LinkType,
    Milestone,
    Priority,
    ProcessTemplate,
    Provider,
    ProviderCapabilities,
    Relationships,
    UpdateWorkItemData,
    User,
    WorkItem,
    WorkItemFilter,
    WorkItemKey,
    WorkItemState,
    WorkItemType,
)
from .migration import (
    IntegrityIssue,
    LoadFailure,
    LoadOptions,
    MigrationReport,
    MigrationResult,
    MissingFieldPolicy,
    TransformOptions,
    TransformResult,
    VerificationReport,
    WorkItemExport,
    WorkItemImport,
)

__all__ = [
    'CreateWorkItemData',
    'Iteration',
    'LinkType',
    'Milestone',
    'Priority',
    'ProcessTemplate',
    'Provider',
    'ProviderCapabilities',
    'Relationships',
    'UpdateWorkItemData',
    'User',
    'WorkItem',
    'WorkItemFilter',
    'WorkItemKey',
    'WorkItemState',
    'WorkItemType',
    'IntegrityIssue',
    'LoadFailure',
    'LoadOptions',
    'MigrationReport',
    'MigrationResult',
    'MissingFieldPolicy',
    'TransformOptions',
    'TransformResult',
    'VerificationReport',
    'WorkItemExport',
    'WorkItemImport',
]
