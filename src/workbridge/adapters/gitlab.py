"""GitLab issues and epics adapter."""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ..config.config import ProviderConfig
from ..exceptions import (
    ConfigurationError,
    InvalidWorkItemIdError,
    UnsupportedOperationError,
)
from ..mapping.type_mapper import GITLAB_TYPES, TypeMappingInput, map_type
from ..models.work_item import (
    CreateWorkItemData,
    Iteration,
    LinkType,
    Milestone,
    Priority,
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
from .base import (
    ProviderAdapter,
    WorkItemConverter,
    extract_priority,
    is_priority_label,
    parse_date,
    sanitize_labels,
)

ISSUE = 'issue'
EPIC = 'epic'

STATE_PARAMS = {'open': 'opened', 'closed': 'closed', 'all': 'all'}
ISSUE_LINK_TYPES = {LinkType.BLOCKS: 'blocks', LinkType.RELATED: 'relates_to'}


class GitLabConverter(WorkItemConverter):
    """Converts between GitLab issue/epic JSON and canonical work items."""

    def __init__(self, project: Optional[str], group: Optional[str]):
        self.project = project
        self.group = group

    def issue_id(self, iid: Any, project: Optional[str] = None) -> str:
        return WorkItemKey(
            provider=Provider.GITLAB,
            scope=project or self.project,
            native_type=ISSUE,
            native_id=str(iid),
        ).to_string()

    def epic_id(self, iid: Any, group: Optional[str] = None) -> str:
        return WorkItemKey(
            provider=Provider.GITLAB,
            scope=group or self.group,
            native_type=EPIC,
            native_id=str(iid),
        ).to_string()

    @staticmethod
    def _user(data: Optional[Dict[str, Any]]) -> Optional[User]:
        if not data:
            return None
        return User(
            id=str(data['id']),
            username=data['username'],
            display_name=data.get('name') or data['username'],
            email=data.get('email') or data.get('public_email'),
            provider=Provider.GITLAB,
        )

    @staticmethod
    def _milestone(data: Optional[Dict[str, Any]]) -> Optional[Milestone]:
        if not data:
            return None
        return Milestone(
            id=str(data['id']),
            title=data.get('title', ''),
            description=data.get('description'),
            start_date=parse_date(data.get('start_date')),
            due_date=parse_date(data.get('due_date')),
            state=(
                WorkItemState.CLOSED
                if data.get('state') == 'closed'
                else WorkItemState.OPEN
            ),
            provider=Provider.GITLAB,
        )

    @staticmethod
    def _iteration(data: Optional[Dict[str, Any]]) -> Optional[Iteration]:
        if not data:
            return None
        title = data.get('title') or f"Iteration {data.get('iid', data['id'])}"
        return Iteration(
            id=str(data['id']),
            title=title,
            path=title,
            start_date=parse_date(data.get('start_date')),
            end_date=parse_date(data.get('due_date')),
            provider=Provider.GITLAB,
        )

    def to_work_item(self, data: Dict[str, Any]) -> WorkItem:
        is_epic = 'project_id' not in data and 'group_id' in data
        labels = [
            label if isinstance(label, str) else label.get('name', '')
            for label in data.get('labels') or []
        ]
        description = data.get('description') or ''

        if is_epic:
            native_type = EPIC
            item_id = self.epic_id(data['iid'], self.group or str(data['group_id']))
        else:
            native_type = data.get('issue_type') or ISSUE
            item_id = self.issue_id(data['iid'])
        hint = native_type if native_type != ISSUE else None

        mapping = map_type(
            TypeMappingInput(
                source_provider=Provider.GITLAB,
                native_type=hint,
                labels=labels,
                description=description,
            )
        )

        assignees = data.get('assignees')
        if assignees is None:
            assignees = [data['assignee']] if data.get('assignee') else []

        parent = None
        epic = data.get('epic')
        if epic and epic.get('iid'):
            parent = self.epic_id(epic['iid'], self.group or str(epic.get('group_id')))
        elif is_epic and data.get('parent_iid'):
            parent = self.epic_id(data['parent_iid'], self.group or str(data['group_id']))

        time_stats = data.get('time_stats') or {}

        return WorkItem(
            id=item_id,
            provider=Provider.GITLAB,
            type=mapping.type,
            title=data.get('title') or '',
            description=description,
            state=(
                WorkItemState.CLOSED
                if data.get('state') == 'closed'
                else WorkItemState.OPEN
            ),
            author=self._user(data.get('author')),
            assignees=[self._user(a) for a in assignees],
            labels=labels,
            milestone=self._milestone(data.get('milestone')),
            iteration=self._iteration(data.get('iteration')),
            priority=extract_priority(labels),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            closed_at=data.get('closed_at'),
            due_date=parse_date(data.get('due_date')),
            provider_fields={
                'iid': data['iid'],
                'global_id': data.get('id'),
                'project_id': data.get('project_id'),
                'group_id': data.get('group_id'),
                'weight': data.get('weight'),
                'time_estimate': time_stats.get('time_estimate'),
                'time_spent': time_stats.get('total_time_spent'),
                'confidential': data.get('confidential', False),
                'discussion_locked': data.get('discussion_locked'),
                'epic_id': (epic or {}).get('id') or data.get('epic_id'),
                'health_status': data.get('health_status'),
                'issue_type': native_type,
                'native_type': hint,
                'web_url': data.get('web_url'),
            },
            relationships=Relationships(parent=parent),
        )

    @staticmethod
    def _labels_for(labels: List[str], priority: Optional[Priority]) -> str:
        result = list(labels)
        if priority is not None:
            result = [label for label in result if not is_priority_label(label)]
            if priority != Priority.MEDIUM:
                result.append(f'priority::{priority.value}')
        return ','.join(sanitize_labels(result))

    def to_create_payload(
        self, data: CreateWorkItemData, assignee_ids: Optional[List[int]] = None
    ) -> Dict[str, Any]:
        issue_type = GITLAB_TYPES[data.type]
        payload: Dict[str, Any] = {
            'title': data.title,
            'description': data.description,
            'issue_type': ISSUE if issue_type == EPIC else issue_type,
            'labels': self._labels_for(data.labels, data.priority),
        }
        if assignee_ids:
            payload['assignee_ids'] = assignee_ids
        if data.milestone and data.milestone.isdigit():
            payload['milestone_id'] = int(data.milestone)
        if data.due_date:
            payload['due_date'] = data.due_date.date().isoformat()
        if data.custom_fields.get('confidential'):
            payload['confidential'] = True
        if data.custom_fields.get('weight') is not None:
            payload['weight'] = int(data.custom_fields['weight'])
        return payload

    def to_epic_payload(self, data: CreateWorkItemData) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'title': data.title,
            'description': data.description,
            'labels': self._labels_for(data.labels, data.priority),
        }
        if data.due_date:
            payload['due_date_is_fixed'] = True
            payload['due_date_fixed'] = data.due_date.date().isoformat()
        return payload

    def to_update_payload(
        self, updates: UpdateWorkItemData, assignee_ids: Optional[List[int]] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if updates.title is not None:
            payload['title'] = updates.title
        if updates.description is not None:
            payload['description'] = updates.description
        if updates.state is not None:
            payload['state_event'] = (
                'close' if updates.state == WorkItemState.CLOSED else 'reopen'
            )
        if updates.labels is not None:
            payload['labels'] = self._labels_for(updates.labels, updates.priority)
        if assignee_ids is not None:
            payload['assignee_ids'] = assignee_ids
        if updates.milestone is not None and updates.milestone.isdigit():
            payload['milestone_id'] = int(updates.milestone)
        if updates.due_date is not None:
            payload['due_date'] = updates.due_date.date().isoformat()
        if updates.custom_fields and updates.custom_fields.get('weight') is not None:
            payload['weight'] = int(updates.custom_fields['weight'])
        return payload


class GitLabAdapter(ProviderAdapter):
    """Adapter for GitLab project issues and group epics.

    Ids carry the resource class, ``gitlab:<project>#issue:<iid>`` or
    ``gitlab:<group>#epic:<iid>``; ids without it are rejected.
    """

    provider = Provider.GITLAB

    def _validate_config(self, config: ProviderConfig) -> None:
        if not config.project and not config.group:
            raise ConfigurationError('GitLab requires a project or a group')

    def _create_converter(self, config: ProviderConfig) -> GitLabConverter:
        return GitLabConverter(config.project, config.group)

    def _project_path(self, project: Optional[str] = None) -> str:
        if not self.config.project:
            raise ConfigurationError(
                'Project is required for issue operations '
                '(set project in the GitLab provider config)'
            )
        return f"projects/{quote(project or self.config.project, safe='')}"

    def _group_path(self, group: Optional[str] = None) -> str:
        if not self.config.group:
            raise ConfigurationError(
                'Group ID is required for epic operations '
                '(set group in the GitLab provider config)'
            )
        return f"groups/{quote(group or self.config.group, safe='')}"

    def _resource(self, work_item_id: str) -> Tuple[str, str, WorkItemKey]:
        """Resolve an id to its resource class and API path."""
        key = self._parse_id(work_item_id)
        if key.native_type == EPIC:
            return EPIC, f'{self._group_path(key.scope)}/epics/{key.native_id}', key
        if key.native_type == ISSUE:
            return ISSUE, f'{self._project_path(key.scope)}/issues/{key.native_id}', key
        if key.native_type is None:
            raise InvalidWorkItemIdError(
                work_item_id, 'missing resource type tag (expected issue or epic)'
            )
        raise InvalidWorkItemIdError(
            work_item_id, f'unknown resource type {key.native_type!r}'
        )

    async def _resolve_user_ids(self, usernames: List[str]) -> List[int]:
        """Look up numeric user ids; unknown users are skipped with a warning."""
        ids = []
        for username in usernames:
            if username.isdigit():
                ids.append(int(username))
                continue
            with self._operation('resolve_user', username):
                response = await self.client.get_async(
                    'users', params={'username': username}
                )
            if response.data:
                ids.append(response.data[0]['id'])
            else:
                self.logger.warning(f'GitLab user {username} not found, leaving unassigned')
        return ids

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        self._ensure_initialized()
        _, path, _ = self._resource(work_item_id)
        with self._operation('get_work_item', work_item_id):
            response = await self.client.get_async(path)
        return self.converter.to_work_item(response.data)

    async def list_work_items(
        self, filter: Optional[WorkItemFilter] = None
    ) -> List[WorkItem]:
        self._ensure_initialized()
        filter = filter or WorkItemFilter()

        params: Dict[str, Any] = {'state': STATE_PARAMS[filter.state or 'all']}
        if filter.labels:
            params['labels'] = ','.join(filter.labels)
        if filter.since:
            params['updated_after'] = filter.since.isoformat()
        if filter.until:
            params['updated_before'] = filter.until.isoformat()

        raw_items: List[Dict[str, Any]] = []

        if self.config.project:
            issue_params = dict(params)
            if filter.assignee:
                issue_params['assignee_username'] = filter.assignee
            if filter.milestone:
                issue_params['milestone'] = filter.milestone
            if filter.iteration:
                issue_params['iteration_title'] = filter.iteration
            with self._operation('list_work_items', self.config.project):
                raw_items.extend(
                    await self.client.get_paginated_async(
                        f'{self._project_path()}/issues', params=issue_params
                    )
                )

        if filter.type == WorkItemType.EPIC:
            group_path = self._group_path()
            with self._operation('list_work_items', self.config.group):
                raw_items.extend(
                    await self.client.get_paginated_async(
                        f'{group_path}/epics', params=params
                    )
                )

        items = [self.converter.to_work_item(data) for data in raw_items]
        if filter.type:
            items = [item for item in items if item.type == filter.type]

        self.logger.info(f'Listed {len(items)} work items')
        return items

    async def create_work_item(self, data: CreateWorkItemData) -> WorkItem:
        self._ensure_initialized()
        self._validate_create_data(data)

        if data.type == WorkItemType.EPIC:
            group_path = self._group_path()
            payload = self.converter.to_epic_payload(data)
            with self._operation('create_work_item', self.config.group):
                response = await self.client.post_async(
                    f'{group_path}/epics', data=payload
                )
            return self.converter.to_work_item(response.data)

        project_path = self._project_path()
        assignee_ids = await self._resolve_user_ids(data.assignees)
        payload = self.converter.to_create_payload(data, assignee_ids)
        with self._operation('create_work_item', self.config.project):
            response = await self.client.post_async(
                f'{project_path}/issues', data=payload
            )
        item = self.converter.to_work_item(response.data)

        time_estimate = data.custom_fields.get('time_estimate')
        if time_estimate:
            iid = item.provider_fields['iid']
            with self._operation('set_time_estimate', item.id):
                await self.client.post_async(
                    f'{project_path}/issues/{iid}/time_estimate',
                    params={'duration': f'{int(time_estimate)}s'},
                )

        return item

    async def update_work_item(
        self, work_item_id: str, updates: UpdateWorkItemData
    ) -> WorkItem:
        self._ensure_initialized()
        kind, path, _ = self._resource(work_item_id)

        assignee_ids = None
        if kind == ISSUE and updates.assignees is not None:
            assignee_ids = await self._resolve_user_ids(updates.assignees)
        payload = self.converter.to_update_payload(updates, assignee_ids)

        with self._operation('update_work_item', work_item_id):
            response = await self.client.put_async(path, data=payload)
        return self.converter.to_work_item(response.data)

    async def delete_work_item(self, work_item_id: str) -> None:
        self._ensure_initialized()
        _, path, _ = self._resource(work_item_id)
        with self._operation('delete_work_item', work_item_id):
            await self.client.delete_async(path)
        self.logger.info(f'Deleted {work_item_id}')

    async def link_work_items(
        self, source_id: str, target_id: str, link_type: LinkType
    ) -> None:
        """Link through the epic issues API or the issue links API."""
        self._ensure_initialized()
        source_kind, source_path, _ = self._resource(source_id)
        target_kind, _, target_key = self._resource(target_id)

        if link_type == LinkType.PARENT_CHILD:
            if source_kind != EPIC or target_kind != ISSUE:
                raise UnsupportedOperationError(
                    'link_work_items(parent-child other than epic to issue)', 'gitlab'
                )
            child = await self.get_work_item(target_id)
            global_id = child.provider_fields['global_id']
            with self._operation('link_work_items', source_id):
                await self.client.post_async(f'{source_path}/issues/{global_id}')
            return

        if link_type not in ISSUE_LINK_TYPES or source_kind != ISSUE or target_kind != ISSUE:
            raise UnsupportedOperationError(
                f'link_work_items({link_type.value} between {source_kind} and {target_kind})',
                'gitlab',
            )

        with self._operation('link_work_items', source_id):
            await self.client.post_async(
                f'{source_path}/links',
                data={
                    'target_project_id': target_key.scope,
                    'target_issue_iid': target_key.native_id,
                    'link_type': ISSUE_LINK_TYPES[link_type],
                },
            )

    async def unlink_work_items(self, source_id: str, target_id: str) -> None:
        self._ensure_initialized()
        source_kind, source_path, _ = self._resource(source_id)
        target_kind, _, target_key = self._resource(target_id)

        if target_kind != ISSUE:
            raise UnsupportedOperationError(
                f'unlink_work_items({source_kind} from {target_kind})', 'gitlab'
            )

        if source_kind == EPIC:
            listing, id_field = f'{source_path}/issues', 'epic_issue_id'
            removal = f'{source_path}/issues'
        else:
            listing, id_field = f'{source_path}/links', 'issue_link_id'
            removal = f'{source_path}/links'

        with self._operation('unlink_work_items', source_id):
            response = await self.client.get_async(listing)
            for link in response.data or []:
                if str(link.get('iid')) == target_key.native_id:
                    await self.client.delete_async(f'{removal}/{link[id_field]}')
                    return

        self.logger.debug(f'No link from {source_id} to {target_id}')

    async def search(self, query: str) -> List[WorkItem]:
        self._ensure_initialized()
        raw_items: List[Dict[str, Any]] = []

        if self.config.project:
            with self._operation('search', self.config.project):
                response = await self.client.get_async(
                    f'{self._project_path()}/search',
                    params={'scope': 'issues', 'search': query},
                )
            raw_items.extend(response.data or [])

        if self.config.group:
            with self._operation('search', self.config.group):
                response = await self.client.get_async(
                    f'{self._group_path()}/search',
                    params={'scope': 'epics', 'search': query},
                )
            raw_items.extend(response.data or [])

        return [self.converter.to_work_item(data) for data in raw_items]

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_epics=bool(self.config and self.config.group),
            supports_iterations=True,
            supports_milestones=True,
            supports_multiple_assignees=True,
            supports_confidential=True,
            supports_weight=True,
            supports_time_tracking=True,
            supports_custom_fields=False,
            max_assignees=100,
            hierarchy_levels=3,
            work_item_types=['issue', 'task', 'incident', 'test_case'],
        )
