"""Azure DevOps work item tracking adapter."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from loguru import logger

from ..api.client import AZURE_API_VERSION
from ..config.config import ProviderConfig
from ..exceptions import ConfigurationError, InvalidWorkItemIdError
from ..mapping.type_mapper import AZURE_TYPES, TypeMappingInput, map_type
from ..models.work_item import (
    CreateWorkItemData,
    Iteration,
    LinkType,
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
)
from .base import ProviderAdapter, WorkItemConverter, extract_priority, sanitize_labels

JSON_PATCH = 'application/json-patch+json'
# Server-side limit of the work items batch endpoint
FETCH_BATCH_SIZE = 200

CLOSED_STATES = ('Closed', 'Done', 'Resolved', 'Removed')
STATE_NAMES = {
    ProcessTemplate.AGILE: {WorkItemState.OPEN: 'Active', WorkItemState.CLOSED: 'Closed'},
    ProcessTemplate.SCRUM: {WorkItemState.OPEN: 'Committed', WorkItemState.CLOSED: 'Done'},
    ProcessTemplate.BASIC: {WorkItemState.OPEN: 'Doing', WorkItemState.CLOSED: 'Done'},
}

PRIORITY_VALUES = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}
PRIORITIES = {value: priority for priority, value in PRIORITY_VALUES.items()}

RELATION_FIELDS = {
    'System.LinkTypes.Hierarchy-Reverse': 'parent',
    'System.LinkTypes.Hierarchy-Forward': 'children',
    'System.LinkTypes.Dependency-Forward': 'blocks',
    'System.LinkTypes.Dependency-Reverse': 'blocked_by',
    'System.LinkTypes.Related': 'related_to',
}
LINK_RELATIONS = {
    LinkType.PARENT_CHILD: 'System.LinkTypes.Hierarchy-Forward',
    LinkType.BLOCKS: 'System.LinkTypes.Dependency-Forward',
    LinkType.RELATED: 'System.LinkTypes.Related',
    LinkType.DUPLICATE: 'System.LinkTypes.Duplicate-Forward',
}

# Canonical custom field names understood on write
CUSTOM_FIELD_REFS = {
    'story_points': 'Microsoft.VSTS.Scheduling.StoryPoints',
    'effort': 'Microsoft.VSTS.Scheduling.Effort',
    'original_estimate': 'Microsoft.VSTS.Scheduling.OriginalEstimate',
    'remaining_work': 'Microsoft.VSTS.Scheduling.RemainingWork',
    'completed_work': 'Microsoft.VSTS.Scheduling.CompletedWork',
    'area_path': 'System.AreaPath',
    'iteration_path': 'System.IterationPath',
}

SYSTEM_PREFIXES = ('System.', 'Microsoft.VSTS.', 'WEF_')


def _quote_wiql(value: str) -> str:
    return value.replace("'", "''")


def build_wiql(
    filter: WorkItemFilter, project: str, process: ProcessTemplate
) -> str:
    """Translate a filter into a WIQL query scoped to ``project``."""
    clauses = [f"[System.TeamProject] = '{_quote_wiql(project)}'"]

    if filter.type:
        type_name = AZURE_TYPES[process][filter.type]
        clauses.append(f"[System.WorkItemType] = '{type_name}'")

    closed = ', '.join(f"'{state}'" for state in CLOSED_STATES)
    if filter.state == 'open':
        clauses.append(f'[System.State] NOT IN ({closed})')
    elif filter.state == 'closed':
        clauses.append(f'[System.State] IN ({closed})')

    if filter.assignee:
        clauses.append(f"[System.AssignedTo] = '{_quote_wiql(filter.assignee)}'")

    if filter.labels:
        tags = ' OR '.join(
            f"[System.Tags] CONTAINS '{_quote_wiql(label)}'" for label in filter.labels
        )
        clauses.append(f'({tags})')

    if filter.iteration:
        clauses.append(f"[System.IterationPath] UNDER '{_quote_wiql(filter.iteration)}'")

    if filter.since:
        clauses.append(f"[System.ChangedDate] >= '{filter.since.isoformat()}'")
    if filter.until:
        clauses.append(f"[System.ChangedDate] <= '{filter.until.isoformat()}'")

    return (
        'SELECT [System.Id], [System.Title], [System.WorkItemType], [System.State] '
        'FROM WorkItems WHERE '
        + ' AND '.join(clauses)
        + ' ORDER BY [System.ChangedDate] DESC'
    )


def _op(op: str, path: str, value: Any = None) -> Dict[str, Any]:
    operation = {'op': op, 'path': path}
    if op != 'remove':
        operation['value'] = value
    return operation


class AzureConverter(WorkItemConverter):
    """Converts between Azure DevOps work item JSON and canonical work items."""

    def __init__(
        self,
        organization: str,
        project: str,
        process: ProcessTemplate,
        base_url: str,
    ):
        self.organization = organization
        self.project = project
        self.process = process
        self.base_url = base_url
        self.scope = f'{organization}/{project}'
        self.logger = logger.bind(component='AzureConverter')

    def work_item_id(self, native_id: Any) -> str:
        return WorkItemKey(
            provider=Provider.AZURE, scope=self.scope, native_id=str(native_id)
        ).to_string()

    def work_item_url(self, native_id: str) -> str:
        return f'{self.base_url}/_apis/wit/workItems/{native_id}'

    @staticmethod
    def _identity(value: Any) -> Optional[User]:
        if not value:
            return None
        if isinstance(value, str):
            return User(id=value, username=value, display_name=value, provider=Provider.AZURE)
        unique_name = value.get('uniqueName') or value.get('displayName', '')
        return User(
            id=str(value.get('id') or unique_name),
            username=unique_name,
            display_name=value.get('displayName') or unique_name,
            email=unique_name if '@' in unique_name else None,
            provider=Provider.AZURE,
        )

    def _relationships(self, relations: List[Dict[str, Any]]) -> Relationships:
        linked: Dict[str, List[str]] = {
            'parent': [],
            'children': [],
            'blocks': [],
            'blocked_by': [],
            'related_to': [],
        }
        for relation in relations:
            field = RELATION_FIELDS.get(relation.get('rel', ''))
            if not field:
                continue
            native_id = relation.get('url', '').rstrip('/').rsplit('/', 1)[-1]
            if native_id.isdigit():
                linked[field].append(self.work_item_id(native_id))

        return Relationships(
            parent=linked['parent'][0] if linked['parent'] else None,
            children=tuple(linked['children']),
            blocks=tuple(linked['blocks']),
            blocked_by=tuple(linked['blocked_by']),
            related_to=tuple(linked['related_to']),
        )

    def to_work_item(self, data: Dict[str, Any]) -> WorkItem:
        fields = data.get('fields', {})
        native_type = fields.get('System.WorkItemType')
        tags = [
            tag.strip() for tag in (fields.get('System.Tags') or '').split(';') if tag.strip()
        ]
        description = fields.get('System.Description') or ''

        mapping = map_type(
            TypeMappingInput(
                source_provider=Provider.AZURE,
                native_type=native_type,
                labels=tags,
                description=description,
            )
        )

        native_state = fields.get('System.State', '')
        priority = PRIORITIES.get(fields.get('Microsoft.VSTS.Common.Priority'))

        iteration = None
        iteration_path = fields.get('System.IterationPath')
        if iteration_path:
            iteration = Iteration(
                id=iteration_path,
                title=iteration_path.split('\\')[-1],
                path=iteration_path,
                provider=Provider.AZURE,
            )

        assigned = self._identity(fields.get('System.AssignedTo'))

        return WorkItem(
            id=self.work_item_id(data['id']),
            provider=Provider.AZURE,
            type=mapping.type,
            title=fields.get('System.Title') or '',
            description=description,
            state=(
                WorkItemState.CLOSED
                if native_state in CLOSED_STATES
                else WorkItemState.OPEN
            ),
            author=self._identity(fields.get('System.CreatedBy')),
            assignees=[assigned] if assigned else [],
            labels=tags,
            iteration=iteration,
            priority=priority or extract_priority(tags),
            created_at=fields.get('System.CreatedDate'),
            updated_at=fields.get('System.ChangedDate'),
            closed_at=fields.get('Microsoft.VSTS.Common.ClosedDate'),
            due_date=fields.get('Microsoft.VSTS.Scheduling.DueDate'),
            custom_fields={
                name: value
                for name, value in fields.items()
                if not name.startswith(SYSTEM_PREFIXES)
            },
            provider_fields={
                'rev': data.get('rev'),
                'url': data.get('url'),
                'work_item_type': native_type,
                'native_type': native_type,
                'state': native_state,
                'reason': fields.get('System.Reason'),
                'area_path': fields.get('System.AreaPath'),
                'iteration_path': iteration_path,
                'board_column': fields.get('System.BoardColumn'),
                'board_lane': fields.get('System.BoardLane'),
                'story_points': fields.get('Microsoft.VSTS.Scheduling.StoryPoints'),
                'effort': fields.get('Microsoft.VSTS.Scheduling.Effort'),
                'remaining_work': fields.get('Microsoft.VSTS.Scheduling.RemainingWork'),
                'original_estimate': fields.get(
                    'Microsoft.VSTS.Scheduling.OriginalEstimate'
                ),
                'completed_work': fields.get('Microsoft.VSTS.Scheduling.CompletedWork'),
            },
            relationships=self._relationships(data.get('relations') or []),
        )

    def _custom_field_ops(self, op: str, custom_fields: Dict[str, Any]) -> List[Dict[str, Any]]:
        ops = []
        skipped = []
        for name, value in custom_fields.items():
            if value is None:
                continue
            ref = CUSTOM_FIELD_REFS.get(name)
            if ref is None and '.' in name:
                ref = name
            if ref is None:
                skipped.append(name)
                continue
            ops.append(_op(op, f'/fields/{ref}', value))
        if skipped:
            self.logger.warning(f'Azure DevOps has no field for {", ".join(sorted(skipped))}')
        return ops

    def to_create_payload(self, data: CreateWorkItemData) -> List[Dict[str, Any]]:
        ops = [_op('add', '/fields/System.Title', data.title)]
        if data.description:
            ops.append(_op('add', '/fields/System.Description', data.description))
        if data.assignees:
            ops.append(_op('add', '/fields/System.AssignedTo', data.assignees[0]))
        labels = sanitize_labels(data.labels)
        if labels:
            ops.append(_op('add', '/fields/System.Tags', '; '.join(labels)))
        if data.priority:
            ops.append(
                _op('add', '/fields/Microsoft.VSTS.Common.Priority', PRIORITY_VALUES[data.priority])
            )
        if data.iteration:
            ops.append(_op('add', '/fields/System.IterationPath', data.iteration))
        if data.due_date:
            ops.append(
                _op('add', '/fields/Microsoft.VSTS.Scheduling.DueDate', data.due_date.isoformat())
            )
        ops.extend(self._custom_field_ops('add', data.custom_fields))
        if data.parent_id:
            parent = WorkItemKey.parse(data.parent_id)
            ops.append(
                _op(
                    'add',
                    '/relations/-',
                    {
                        'rel': 'System.LinkTypes.Hierarchy-Reverse',
                        'url': self.work_item_url(parent.native_id),
                    },
                )
            )
        return ops

    def to_update_payload(self, updates: UpdateWorkItemData) -> List[Dict[str, Any]]:
        ops = []
        if updates.title is not None:
            ops.append(_op('replace', '/fields/System.Title', updates.title))
        if updates.description is not None:
            ops.append(_op('replace', '/fields/System.Description', updates.description))
        if updates.state is not None:
            ops.append(
                _op('replace', '/fields/System.State', STATE_NAMES[self.process][updates.state])
            )
        if updates.assignees is not None:
            assignee = updates.assignees[0] if updates.assignees else ''
            ops.append(_op('replace', '/fields/System.AssignedTo', assignee))
        if updates.labels is not None:
            ops.append(
                _op('replace', '/fields/System.Tags', '; '.join(sanitize_labels(updates.labels)))
            )
        if updates.priority is not None:
            ops.append(
                _op(
                    'replace',
                    '/fields/Microsoft.VSTS.Common.Priority',
                    PRIORITY_VALUES[updates.priority],
                )
            )
        if updates.iteration is not None:
            ops.append(_op('replace', '/fields/System.IterationPath', updates.iteration))
        if updates.due_date is not None:
            ops.append(
                _op(
                    'replace',
                    '/fields/Microsoft.VSTS.Scheduling.DueDate',
                    updates.due_date.isoformat(),
                )
            )
        if updates.custom_fields:
            ops.extend(self._custom_field_ops('replace', updates.custom_fields))
        return ops


class AzureAdapter(ProviderAdapter):
    """Adapter for Azure DevOps Boards.

    Types follow the project's process template; writes are JSON patch
    documents and listing goes through WIQL.
    """

    provider = Provider.AZURE

    def _validate_config(self, config: ProviderConfig) -> None:
        if not config.organization or not config.project:
            raise ConfigurationError('Azure DevOps requires organization and project')

    def _create_converter(self, config: ProviderConfig) -> AzureConverter:
        return AzureConverter(
            config.organization, config.project, config.process, self.client.base_url
        )

    @property
    def process(self) -> ProcessTemplate:
        return self.config.process if self.config else ProcessTemplate.AGILE

    @property
    def _wit_path(self) -> str:
        return f"{quote(self.config.project)}/_apis/wit"

    def _native_id(self, work_item_id: str) -> str:
        key = self._parse_id(work_item_id)
        if key.native_type is not None:
            raise InvalidWorkItemIdError(
                work_item_id, 'Azure DevOps ids carry no resource type tag'
            )
        if not key.native_id.isdigit():
            raise InvalidWorkItemIdError(work_item_id, 'work item id must be numeric')
        return key.native_id

    async def _get_raw(self, native_id: str, operation: str, target: str) -> Dict[str, Any]:
        with self._operation(operation, target):
            response = await self.client.get_async(
                f'{self._wit_path}/workitems/{native_id}',
                params={'$expand': 'relations', 'api-version': AZURE_API_VERSION},
            )
        return response.data

    async def _query_ids(self, wiql: str) -> List[int]:
        with self._operation('query', self.converter.scope):
            response = await self.client.post_async(
                f'{self._wit_path}/wiql',
                data={'query': wiql},
                params={'api-version': AZURE_API_VERSION},
            )
        return [entry['id'] for entry in (response.data or {}).get('workItems', [])]

    async def _fetch(self, ids: List[int]) -> List[WorkItem]:
        items = []
        for start in range(0, len(ids), FETCH_BATCH_SIZE):
            chunk = ids[start:start + FETCH_BATCH_SIZE]
            with self._operation('fetch_work_items', self.converter.scope):
                response = await self.client.get_async(
                    f'{self._wit_path}/workitems',
                    params={
                        'ids': ','.join(str(i) for i in chunk),
                        '$expand': 'relations',
                        'api-version': AZURE_API_VERSION,
                    },
                )
            items.extend(
                self.converter.to_work_item(data)
                for data in (response.data or {}).get('value', [])
            )
        return items

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        self._ensure_initialized()
        native_id = self._native_id(work_item_id)
        data = await self._get_raw(native_id, 'get_work_item', work_item_id)
        return self.converter.to_work_item(data)

    async def list_work_items(
        self, filter: Optional[WorkItemFilter] = None
    ) -> List[WorkItem]:
        self._ensure_initialized()
        wiql = build_wiql(filter or WorkItemFilter(), self.config.project, self.process)
        self.logger.debug(f'WIQL: {wiql}')
        items = await self._fetch(await self._query_ids(wiql))
        self.logger.info(f'Listed {len(items)} work items from {self.converter.scope}')
        return items

    async def execute_query(self, query: str) -> List[WorkItem]:
        """Run a raw WIQL query."""
        self._ensure_initialized()
        return await self._fetch(await self._query_ids(query))

    async def search(self, query: str) -> List[WorkItem]:
        self._ensure_initialized()
        text = _quote_wiql(query)
        wiql = (
            'SELECT [System.Id] FROM WorkItems WHERE '
            f"[System.TeamProject] = '{_quote_wiql(self.config.project)}' AND "
            f"([System.Title] CONTAINS '{text}' OR [System.Description] CONTAINS '{text}') "
            'ORDER BY [System.ChangedDate] DESC'
        )
        return await self.execute_query(wiql)

    async def create_work_item(self, data: CreateWorkItemData) -> WorkItem:
        self._ensure_initialized()
        self._validate_create_data(data)
        type_name = AZURE_TYPES[self.process][data.type]
        with self._operation('create_work_item', self.converter.scope):
            response = await self.client.post_async(
                f'{self._wit_path}/workitems/${quote(type_name)}',
                data=self.converter.to_create_payload(data),
                params={'api-version': AZURE_API_VERSION},
                content_type=JSON_PATCH,
            )
        return self.converter.to_work_item(response.data)

    async def update_work_item(
        self, work_item_id: str, updates: UpdateWorkItemData
    ) -> WorkItem:
        self._ensure_initialized()
        native_id = self._native_id(work_item_id)
        ops = self.converter.to_update_payload(updates)
        if not ops:
            return await self.get_work_item(work_item_id)
        with self._operation('update_work_item', work_item_id):
            response = await self.client.patch_async(
                f'{self._wit_path}/workitems/{native_id}',
                data=ops,
                params={'api-version': AZURE_API_VERSION},
                content_type=JSON_PATCH,
            )
        return self.converter.to_work_item(response.data)

    async def delete_work_item(self, work_item_id: str) -> None:
        self._ensure_initialized()
        native_id = self._native_id(work_item_id)
        with self._operation('delete_work_item', work_item_id):
            await self.client.delete_async(
                f'{self._wit_path}/workitems/{native_id}',
                params={'api-version': AZURE_API_VERSION},
            )
        self.logger.info(f'Deleted {work_item_id}')

    async def link_work_items(
        self, source_id: str, target_id: str, link_type: LinkType
    ) -> None:
        self._ensure_initialized()
        source = self._native_id(source_id)
        target = self._native_id(target_id)
        relation = {
            'rel': LINK_RELATIONS[link_type],
            'url': self.converter.work_item_url(target),
        }
        with self._operation('link_work_items', source_id):
            await self.client.patch_async(
                f'{self._wit_path}/workitems/{source}',
                data=[_op('add', '/relations/-', relation)],
                params={'api-version': AZURE_API_VERSION},
                content_type=JSON_PATCH,
            )

    async def unlink_work_items(self, source_id: str, target_id: str) -> None:
        self._ensure_initialized()
        source = self._native_id(source_id)
        target = self._native_id(target_id)
        data = await self._get_raw(source, 'unlink_work_items', source_id)

        for index, relation in enumerate(data.get('relations') or []):
            if relation.get('url', '').rstrip('/').endswith(f'/{target}'):
                with self._operation('unlink_work_items', source_id):
                    await self.client.patch_async(
                        f'{self._wit_path}/workitems/{source}',
                        data=[_op('remove', f'/relations/{index}')],
                        params={'api-version': AZURE_API_VERSION},
                        content_type=JSON_PATCH,
                    )
                return

        self.logger.debug(f'No relation from {source_id} to {target_id}')

    def get_capabilities(self) -> ProviderCapabilities:
        types = sorted(set(AZURE_TYPES[self.process].values()))
        return ProviderCapabilities(
            supports_epics=True,
            supports_iterations=True,
            supports_milestones=False,
            supports_multiple_assignees=False,
            supports_confidential=False,
            supports_weight=False,
            supports_time_tracking=True,
            supports_custom_fields=True,
            max_assignees=1,
            hierarchy_levels=3 if self.process == ProcessTemplate.BASIC else 4,
            work_item_types=types,
        )
