"""Canonical work item models shared by every provider adapter."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, validator

from ..exceptions import InvalidWorkItemIdError


class Provider(str, Enum):
    """Supported tracking platforms."""

    GITHUB = 'github'
    GITLAB = 'gitlab'
    AZURE = 'azure'


class WorkItemType(str, Enum):
    """Canonical work item type."""

    EPIC = 'epic'
    FEATURE = 'feature'
    STORY = 'story'
    BUG = 'bug'
    TASK = 'task'
    TEST = 'test'
    ISSUE = 'issue'


class WorkItemState(str, Enum):
    """Canonical work item state."""

    OPEN = 'open'
    CLOSED = 'closed'


class Priority(str, Enum):
    """Canonical priority."""

    CRITICAL = 'critical'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class ProcessTemplate(str, Enum):
    """Azure DevOps process template."""

    AGILE = 'agile'
    SCRUM = 'scrum'
    BASIC = 'basic'


class LinkType(str, Enum):
    """Relationship kinds that adapters can create between items."""

    PARENT_CHILD = 'parent-child'
    BLOCKS = 'blocks'
    RELATED = 'related'
    DUPLICATE = 'duplicate'


class WorkItemKey(BaseModel):
    """Structured composite key of a work item.

    Serialises to ``<provider>:<scope>#<native_type>:<native_id>`` or, when the
    platform has a single resource class, ``<provider>:<scope>#<native_id>``.
    """

    provider: Provider = Field(..., description='Owning platform')
    scope: str = Field(..., description='Repository, project or group path')
    native_id: str = Field(..., description='Platform-native identifier')
    native_type: Optional[str] = Field(
        default=None, description='Native resource class tag (e.g. issue, epic)'
    )

    class Config:
        """Pydantic configuration."""

        frozen = True

    @classmethod
    def parse(cls, value: str) -> 'WorkItemKey':
        """Parse a canonical id string.

        Args:
            value: Canonical id

        Returns:
            Structured key

        Raises:
            InvalidWorkItemIdError: If any component is missing or unknown
        """
        if not isinstance(value, str) or ':' not in value:
            raise InvalidWorkItemIdError(str(value), 'missing provider prefix')

        provider_name, rest = value.split(':', 1)
        try:
            provider = Provider(provider_name)
        except ValueError:
            raise InvalidWorkItemIdError(value, f'unknown provider {provider_name!r}')

        if '#' not in rest:
            raise InvalidWorkItemIdError(value, "missing '#' before native id")

        scope, local = rest.rsplit('#', 1)
        if not scope:
            raise InvalidWorkItemIdError(value, 'empty scope')

        native_type = None
        if ':' in local:
            native_type, local = local.split(':', 1)
            if not native_type:
                raise InvalidWorkItemIdError(value, 'empty native type tag')

        if not local:
            raise InvalidWorkItemIdError(value, 'empty native id')

        return cls(
            provider=provider, scope=scope, native_id=local, native_type=native_type
        )

    def to_string(self) -> str:
        """Serialise to the canonical id string."""
        local = (
            f'{self.native_type}:{self.native_id}' if self.native_type else self.native_id
        )
        return f'{self.provider.value}:{self.scope}#{local}'

    def __str__(self) -> str:
        return self.to_string()


class User(BaseModel):
    """Platform user in canonical form."""

    id: str = Field(..., description='Platform user id')
    username: str = Field(..., description='Login / unique name')
    display_name: str = Field(default='', description='Human readable name')
    email: Optional[str] = Field(default=None, description='Email address')
    provider: Provider = Field(..., description='Owning platform')


class Milestone(BaseModel):
    """Milestone attached to a work item."""

    id: str = Field(..., description='Milestone id')
    title: str = Field(..., description='Milestone title')
    description: Optional[str] = Field(default=None, description='Description')
    start_date: Optional[datetime] = Field(default=None, description='Start date')
    due_date: Optional[datetime] = Field(default=None, description='Due date')
    state: WorkItemState = Field(default=WorkItemState.OPEN, description='State')
    provider: Provider = Field(..., description='Owning platform')


class Iteration(BaseModel):
    """Iteration / sprint attached to a work item."""

    id: str = Field(..., description='Iteration id')
    title: str = Field(..., description='Iteration title')
    path: str = Field(default='', description='Full iteration path')
    start_date: Optional[datetime] = Field(default=None, description='Start date')
    end_date: Optional[datetime] = Field(default=None, description='End date')
    provider: Provider = Field(..., description='Owning platform')


class Relationships(BaseModel):
    """Links between work items, as canonical ids."""

    parent: Optional[str] = None
    children: Tuple[str, ...] = ()
    blocks: Tuple[str, ...] = ()
    blocked_by: Tuple[str, ...] = ()
    related_to: Tuple[str, ...] = ()

    class Config:
        """Pydantic configuration."""

        frozen = True


class WorkItem(BaseModel):
    """Canonical work item."""

    id: str = Field(..., description='Canonical id')
    provider: Provider = Field(..., description='Owning platform')
    type: WorkItemType = Field(default=WorkItemType.ISSUE, description='Type')
    title: str = Field(..., description='Title')
    description: str = Field(default='', description='Body / description')
    state: WorkItemState = Field(default=WorkItemState.OPEN, description='State')
    author: Optional[User] = Field(default=None, description='Author')
    assignees: List[User] = Field(default_factory=list, description='Assignees')
    labels: List[str] = Field(default_factory=list, description='Labels / tags')
    milestone: Optional[Milestone] = Field(default=None, description='Milestone')
    iteration: Optional[Iteration] = Field(default=None, description='Iteration')
    priority: Priority = Field(default=Priority.MEDIUM, description='Priority')

    created_at: Optional[datetime] = Field(default=None, description='Created')
    updated_at: Optional[datetime] = Field(default=None, description='Last update')
    closed_at: Optional[datetime] = Field(default=None, description='Closed')
    due_date: Optional[datetime] = Field(default=None, description='Due date')

    custom_fields: Dict[str, Any] = Field(
        default_factory=dict, description='Platform custom fields'
    )
    provider_fields: Dict[str, Any] = Field(
        default_factory=dict, description='Untranslated native data'
    )
    relationships: Relationships = Field(
        default_factory=Relationships, description='Links to other items'
    )

    class Config:
        """Pydantic configuration."""

        json_encoders = {datetime: lambda v: v.isoformat() if v else None}

    @validator('id')
    def validate_id(cls, v):
        """Reject ids that do not parse into a WorkItemKey."""
        WorkItemKey.parse(v)
        return v

    @property
    def key(self) -> WorkItemKey:
        """Structured form of ``id``."""
        return WorkItemKey.parse(self.id)


class WorkItemFilter(BaseModel):
    """Criteria for listing work items."""

    type: Optional[WorkItemType] = None
    state: Optional[str] = Field(default=None, description='open, closed or all')
    assignee: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    milestone: Optional[str] = None
    iteration: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    @validator('state')
    def validate_state(cls, v):
        """Validate filter state."""
        if v is not None and v not in ('open', 'closed', 'all'):
            raise ValueError("State must be one of: ['open', 'closed', 'all']")
        return v


class CreateWorkItemData(BaseModel):
    """Payload for creating a work item."""

    title: str
    description: str = ''
    type: WorkItemType = WorkItemType.ISSUE
    assignees: List[str] = Field(default_factory=list, description='Usernames')
    labels: List[str] = Field(default_factory=list)
    milestone: Optional[str] = None
    iteration: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    parent_id: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class UpdateWorkItemData(BaseModel):
    """Partial update of a work item. Unset fields are left untouched."""

    title: Optional[str] = None
    description: Optional[str] = None
    state: Optional[WorkItemState] = None
    assignees: Optional[List[str]] = None
    labels: Optional[List[str]] = None
    milestone: Optional[str] = None
    iteration: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    custom_fields: Optional[Dict[str, Any]] = None


class ProviderCapabilities(BaseModel):
    """What a platform can represent natively."""

    supports_epics: bool
    supports_iterations: bool
    supports_milestones: bool
    supports_multiple_assignees: bool
    supports_confidential: bool
    supports_weight: bool
    supports_time_tracking: bool
    supports_custom_fields: bool
    max_assignees: int
    hierarchy_levels: int
    work_item_types: List[str]
