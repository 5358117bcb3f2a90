"""Models exchanged between migration pipeline phases."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from .work_item import (
    CreateWorkItemData,
    Priority,
    ProcessTemplate,
    Relationships,
    WorkItem,
    WorkItemState,
    WorkItemType,
)


class MissingFieldPolicy(str, Enum):
    """What to do with source fields the target cannot represent."""

    IGNORE = 'ignore'
    METADATA = 'metadata'
    DESCRIPTION = 'description'


class WorkItemExport(BaseModel):
    """Read-only snapshot of a source item captured during extraction."""

    item: WorkItem = Field(..., description='Canonical work item')
    relationships: Relationships = Field(
        default_factory=Relationships, description='Relationships at export time'
    )
    exported_at: datetime = Field(default_factory=datetime.now)

    class Config:
        """Pydantic configuration."""

        frozen = True


class WorkItemImport(BaseModel):
    """Creation payload produced by transform.

    Carries no source or target identifiers; ``correlation_id`` ties the
    created item back to its source through ``TransformResult.correlations``.
    """

    correlation_id: str = Field(..., description='Synthetic per-item token')
    title: str
    description: str = ''
    type: WorkItemType = WorkItemType.ISSUE
    target_type: Optional[str] = Field(
        default=None, description='Native type name on the target platform'
    )
    state: WorkItemState = WorkItemState.OPEN
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list, description='Usernames')
    priority: Priority = Priority.MEDIUM
    milestone: Optional[str] = None
    due_date: Optional[datetime] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    migration_metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        description=(
            'Lost-field record under the metadata policy; kept on the import '
            '(and so in TransformResult.items), never sent to the target'
        ),
    )

    def to_create_data(self) -> CreateWorkItemData:
        """Convert to an adapter creation payload."""
        return CreateWorkItemData(
            title=self.title,
            description=self.description,
            type=self.type,
            assignees=list(self.assignees),
            labels=list(self.labels),
            milestone=self.milestone,
            priority=self.priority,
            due_date=self.due_date,
            custom_fields=dict(self.custom_fields),
        )


class TransformOptions(BaseModel):
    """Options controlling the transform phase."""

    preserve_ids: bool = Field(
        default=False, description='Prefix descriptions with a provenance marker'
    )
    user_mapping: Dict[str, str] = Field(
        default_factory=dict, description='Source username or email to target user'
    )
    label_mapping: Dict[str, str] = Field(
        default_factory=dict, description='Source label to target label'
    )
    missing_fields: MissingFieldPolicy = Field(
        default=MissingFieldPolicy.METADATA,
        description='Policy for fields the target cannot represent',
    )
    custom_field_mapping: Dict[str, str] = Field(
        default_factory=dict, description='Source field name to target field name'
    )
    target_process: ProcessTemplate = Field(
        default=ProcessTemplate.AGILE,
        description='Process template used when the target is Azure DevOps',
    )


class TransformResult(BaseModel):
    """Output of the transform phase."""

    items: List[WorkItemImport] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    fields_mapped: Dict[str, str] = Field(default_factory=dict)
    fields_lost: List[str] = Field(default_factory=list)
    correlations: Dict[str, str] = Field(
        default_factory=dict, description='Source id to correlation id'
    )


class LoadOptions(BaseModel):
    """Options controlling the load phase."""

    batch_size: int = Field(default=10, description='Items per batch')
    continue_on_error: bool = Field(
        default=True, description='Record failures and keep going'
    )
    dry_run: bool = Field(default=False, description='Make no adapter calls')
    batch_delay: float = Field(
        default=1.0, description='Seconds to pause between batches'
    )

    @validator('batch_size')
    def validate_batch_size(cls, v):
        """Validate batch size is positive."""
        if v <= 0:
            raise ValueError('Batch size must be positive')
        return v

    @validator('batch_delay')
    def validate_batch_delay(cls, v):
        """Validate batch delay is not negative."""
        if v < 0:
            raise ValueError('Batch delay must not be negative')
        return v


class LoadFailure(BaseModel):
    """A single item that could not be created."""

    id: str = Field(..., description='Correlation id of the failed item')
    title: str
    reason: str


class MigrationResult(BaseModel):
    """Outcome of the load phase."""

    successful: int = 0
    failed: List[LoadFailure] = Field(default_factory=list)
    mapping: Dict[str, str] = Field(
        default_factory=dict, description='Correlation id to new canonical id'
    )
    warnings: List[str] = Field(
        default_factory=list, description='Follow-up steps that failed on created items'
    )
    batches_attempted: int = 0

    @property
    def total(self) -> int:
        """Number of items attempted."""
        return self.successful + len(self.failed)


class IntegrityIssue(BaseModel):
    """A discrepancy between a source item and its migrated copy."""

    original_id: str
    new_id: Optional[str] = None
    issue: str


class VerificationReport(BaseModel):
    """Outcome of the verify phase."""

    total_items: int = 0
    successful: int = 0
    failed: int = 0
    data_integrity_issues: List[IntegrityIssue] = Field(default_factory=list)


class MigrationReport(BaseModel):
    """Everything an orchestrated migration run produced."""

    transform: TransformResult
    migration: MigrationResult
    verification: Optional[VerificationReport] = None
    verification_error: Optional[str] = None
    id_mapping: Dict[str, str] = Field(
        default_factory=dict, description='Source id to target id'
    )
    dry_run: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}
