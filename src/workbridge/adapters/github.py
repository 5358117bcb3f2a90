"""GitHub issues adapter."""

from typing import Any, Dict, List, Optional

from ..config.config import ProviderConfig
from ..exceptions import ConfigurationError, InvalidWorkItemIdError
from ..mapping.type_mapper import GITHUB_TYPE_LABELS, TypeMappingInput, map_type
from ..models.work_item import (
    CreateWorkItemData,
    LinkType,
    Milestone,
    Priority,
    Provider,
    ProviderCapabilities,
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
    sanitize_labels,
)

ARCHIVE_LABELS = ['deleted', 'archived']

LINK_PHRASES = {
    LinkType.PARENT_CHILD: 'Parent of',
    LinkType.BLOCKS: 'Blocks',
    LinkType.RELATED: 'Related to',
    LinkType.DUPLICATE: 'Duplicate of',
}


def resolve_repository(config: ProviderConfig) -> Optional[tuple]:
    """Return ``(owner, repo)`` from the configuration, if determinable."""
    if config.organization and config.project:
        return config.organization, config.project
    if config.project and config.project.count('/') == 1:
        owner, repo = config.project.split('/')
        if owner and repo:
            return owner, repo
    return None


class GitHubConverter(WorkItemConverter):
    """Converts between GitHub issue JSON and canonical work items."""

    def __init__(self, owner: str, repo: str):
        self.owner = owner
        self.repo = repo
        self.scope = f'{owner}/{repo}'

    def work_item_id(self, number: Any) -> str:
        return WorkItemKey(
            provider=Provider.GITHUB, scope=self.scope, native_id=str(number)
        ).to_string()

    @staticmethod
    def _user(data: Optional[Dict[str, Any]]) -> Optional[User]:
        if not data:
            return None
        return User(
            id=str(data.get('id', data['login'])),
            username=data['login'],
            display_name=data.get('name') or data['login'],
            email=data.get('email'),
            provider=Provider.GITHUB,
        )

    @staticmethod
    def _milestone(data: Optional[Dict[str, Any]]) -> Optional[Milestone]:
        if not data:
            return None
        return Milestone(
            id=str(data['number']),
            title=data.get('title', ''),
            description=data.get('description'),
            due_date=data.get('due_on'),
            state=(
                WorkItemState.CLOSED
                if data.get('state') == 'closed'
                else WorkItemState.OPEN
            ),
            provider=Provider.GITHUB,
        )

    def to_work_item(self, data: Dict[str, Any]) -> WorkItem:
        labels = [
            label['name'] if isinstance(label, dict) else str(label)
            for label in data.get('labels') or []
        ]
        description = data.get('body') or ''
        is_pull_request = 'pull_request' in data

        mapping = map_type(
            TypeMappingInput(
                source_provider=Provider.GITHUB,
                labels=labels,
                description=description,
                is_pull_request=is_pull_request,
            )
        )
        milestone = self._milestone(data.get('milestone'))

        return WorkItem(
            id=self.work_item_id(data['number']),
            provider=Provider.GITHUB,
            type=mapping.type,
            title=data.get('title') or '',
            description=description,
            state=(
                WorkItemState.CLOSED
                if data.get('state') == 'closed'
                else WorkItemState.OPEN
            ),
            author=self._user(data.get('user')),
            assignees=[self._user(a) for a in data.get('assignees') or []],
            labels=labels,
            milestone=milestone,
            priority=extract_priority(labels),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            closed_at=data.get('closed_at'),
            due_date=milestone.due_date if milestone else None,
            provider_fields={
                'number': data['number'],
                'node_id': data.get('node_id'),
                'html_url': data.get('html_url'),
                'locked': data.get('locked', False),
                'comments': data.get('comments', 0),
                'state_reason': data.get('state_reason'),
                'pull_request': is_pull_request,
            },
        )

    @staticmethod
    def _labels_for(
        labels: List[str], work_item_type: Optional[WorkItemType], priority: Optional[Priority]
    ) -> List[str]:
        result = [label for label in labels if not is_priority_label(label)]
        if work_item_type is not None:
            type_label = GITHUB_TYPE_LABELS[work_item_type]
            if type_label:
                result.append(type_label)
        if priority and priority != Priority.MEDIUM:
            result.append(f'priority: {priority.value}')
        elif not priority:
            result.extend(label for label in labels if is_priority_label(label))
        return sanitize_labels(result)

    def to_create_payload(self, data: CreateWorkItemData) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'title': data.title,
            'body': data.description,
            'labels': self._labels_for(data.labels, data.type, data.priority),
        }
        if data.assignees:
            payload['assignees'] = list(data.assignees)
        if data.milestone and data.milestone.isdigit():
            payload['milestone'] = int(data.milestone)
        return payload

    def to_update_payload(self, updates: UpdateWorkItemData) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if updates.title is not None:
            payload['title'] = updates.title
        if updates.description is not None:
            payload['body'] = updates.description
        if updates.state is not None:
            payload['state'] = updates.state.value
        if updates.assignees is not None:
            payload['assignees'] = list(updates.assignees)
        if updates.labels is not None:
            payload['labels'] = self._labels_for(updates.labels, None, updates.priority)
        if updates.milestone is not None and updates.milestone.isdigit():
            payload['milestone'] = int(updates.milestone)
        return payload


class GitHubAdapter(ProviderAdapter):
    """Adapter for GitHub repository issues.

    GitHub has no native epics or iterations, so types come from labels and
    the description checklist. Issues cannot be deleted; they are closed and
    labelled as archived instead.
    """

    provider = Provider.GITHUB

    def _validate_config(self, config: ProviderConfig) -> None:
        if resolve_repository(config) is None:
            raise ConfigurationError(
                'GitHub requires organization and project, or project as "owner/repo"'
            )

    def _create_converter(self, config: ProviderConfig) -> GitHubConverter:
        owner, repo = resolve_repository(config)
        return GitHubConverter(owner, repo)

    @property
    def _repo_path(self) -> str:
        return f'repos/{self.converter.owner}/{self.converter.repo}'

    def _issue_number(self, work_item_id: str) -> str:
        key = self._parse_id(work_item_id)
        if not key.native_id.isdigit():
            raise InvalidWorkItemIdError(work_item_id, 'issue number must be numeric')
        return key.native_id

    def _reference(self, work_item_id: str) -> str:
        key = self._parse_id(work_item_id)
        if key.scope == self.converter.scope:
            return f'#{key.native_id}'
        return f'{key.scope}#{key.native_id}'

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        self._ensure_initialized()
        number = self._issue_number(work_item_id)
        with self._operation('get_work_item', work_item_id):
            response = await self.client.get_async(f'{self._repo_path}/issues/{number}')
        return self.converter.to_work_item(response.data)

    async def list_work_items(
        self, filter: Optional[WorkItemFilter] = None
    ) -> List[WorkItem]:
        self._ensure_initialized()
        filter = filter or WorkItemFilter()

        params: Dict[str, Any] = {'state': filter.state or 'all'}
        if filter.assignee:
            params['assignee'] = filter.assignee
        if filter.labels:
            params['labels'] = ','.join(filter.labels)
        if filter.milestone:
            params['milestone'] = filter.milestone
        if filter.since:
            params['since'] = filter.since.isoformat()

        with self._operation('list_work_items', self.converter.scope):
            raw_items = await self.client.get_paginated_async(
                f'{self._repo_path}/issues', params=params
            )

        include_pulls = filter.type in (None, WorkItemType.FEATURE)
        items = []
        for data in raw_items:
            if 'pull_request' in data and not include_pulls:
                continue
            item = self.converter.to_work_item(data)
            if filter.type and item.type != filter.type:
                continue
            if filter.until and item.updated_at and item.updated_at > filter.until:
                continue
            items.append(item)

        self.logger.info(f'Listed {len(items)} work items from {self.converter.scope}')
        return items

    async def create_work_item(self, data: CreateWorkItemData) -> WorkItem:
        self._ensure_initialized()
        self._validate_create_data(data)
        payload = self.converter.to_create_payload(data)
        with self._operation('create_work_item', self.converter.scope):
            response = await self.client.post_async(
                f'{self._repo_path}/issues', data=payload
            )
        item = self.converter.to_work_item(response.data)
        self.logger.debug(f'Created {item.id}')
        return item

    async def update_work_item(
        self, work_item_id: str, updates: UpdateWorkItemData
    ) -> WorkItem:
        self._ensure_initialized()
        number = self._issue_number(work_item_id)
        payload = self.converter.to_update_payload(updates)
        with self._operation('update_work_item', work_item_id):
            response = await self.client.patch_async(
                f'{self._repo_path}/issues/{number}', data=payload
            )
        return self.converter.to_work_item(response.data)

    async def delete_work_item(self, work_item_id: str) -> None:
        """Close the issue and tag it as archived; GitHub cannot delete issues."""
        current = await self.get_work_item(work_item_id)
        labels = sanitize_labels(current.labels + ARCHIVE_LABELS)
        await self.update_work_item(
            work_item_id,
            UpdateWorkItemData(state=WorkItemState.CLOSED, labels=labels),
        )
        self.logger.info(f'Archived {work_item_id}')

    async def link_work_items(
        self, source_id: str, target_id: str, link_type: LinkType
    ) -> None:
        self._ensure_initialized()
        number = self._issue_number(source_id)
        body = f'{LINK_PHRASES[link_type]} {self._reference(target_id)}'
        with self._operation('link_work_items', source_id):
            await self.client.post_async(
                f'{self._repo_path}/issues/{number}/comments', data={'body': body}
            )

    async def unlink_work_items(self, source_id: str, target_id: str) -> None:
        self._ensure_initialized()
        number = self._issue_number(source_id)
        body = f'Unlinked from {self._reference(target_id)}'
        with self._operation('unlink_work_items', source_id):
            await self.client.post_async(
                f'{self._repo_path}/issues/{number}/comments', data={'body': body}
            )

    async def search(self, query: str) -> List[WorkItem]:
        self._ensure_initialized()
        params = {'q': f'repo:{self.converter.scope} {query}', 'per_page': 100}
        with self._operation('search', self.converter.scope):
            response = await self.client.get_async('search/issues', params=params)
        return [
            self.converter.to_work_item(data)
            for data in (response.data or {}).get('items', [])
        ]

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_epics=False,
            supports_iterations=False,
            supports_milestones=True,
            supports_multiple_assignees=True,
            supports_confidential=False,
            supports_weight=False,
            supports_time_tracking=False,
            supports_custom_fields=True,
            max_assignees=10,
            hierarchy_levels=2,
            work_item_types=['issue'],
        )
