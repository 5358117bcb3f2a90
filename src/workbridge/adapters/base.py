"""Provider adapter contract and shared adapter utilities."""

import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger

from ..api.client import ClientFactory, ProviderClient
from ..api.exceptions import ProviderAPIError
from ..config.config import ProviderConfig
from ..exceptions import (
    AdapterNotInitializedError,
    ConfigurationError,
    InvalidWorkItemIdError,
    UnsupportedOperationError,
    ValidationError,
    WorkBridgeError,
)
from ..models.migration import (
    LoadFailure,
    MigrationResult,
    WorkItemExport,
    WorkItemImport,
)
from ..models.work_item import (
    CreateWorkItemData,
    LinkType,
    Priority,
    Provider,
    ProviderCapabilities,
    UpdateWorkItemData,
    WorkItem,
    WorkItemFilter,
    WorkItemKey,
)

PRIORITY_PATTERN = re.compile(
    r'^(?:priority|prio)?\s*[:/\-]*\s*(critical|urgent|high|medium|low)$',
    re.IGNORECASE,
)
DATE_ONLY = re.compile(r'^\d{4}-\d{2}-\d{2}$')
PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


def extract_priority(labels: List[str]) -> Priority:
    """Infer priority from label text, defaulting to medium.

    Accepts ``critical``, ``priority: high``, ``priority::low`` and similar.
    When several labels match, the most severe wins.
    """
    found: List[Priority] = []
    for label in labels:
        match = PRIORITY_PATTERN.match(label.strip())
        if match:
            name = match.group(1).lower()
            found.append(Priority.CRITICAL if name == 'urgent' else Priority(name))
    if not found:
        return Priority.MEDIUM
    return min(found, key=lambda p: PRIORITY_RANK[p])


def is_priority_label(label: str) -> bool:
    return PRIORITY_PATTERN.match(label.strip()) is not None


def sanitize_labels(labels: List[str]) -> List[str]:
    """Strip whitespace, drop empties and duplicates, keep order."""
    cleaned: List[str] = []
    for label in labels:
        value = label.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def parse_date(value: Any) -> Any:
    """Turn date-only API strings into datetimes; other values pass through."""
    if value is None or value == '':
        return None
    if isinstance(value, str) and DATE_ONLY.match(value):
        return datetime.strptime(value, '%Y-%m-%d')
    return value


class WorkItemConverter(ABC):
    """Both directions of schema conversion for one platform."""

    @abstractmethod
    def to_work_item(self, data: Dict[str, Any]) -> WorkItem:
        """Convert a native API object to a canonical work item."""

    @abstractmethod
    def to_create_payload(self, data: CreateWorkItemData) -> Any:
        """Convert a creation payload to the platform's request body."""

    @abstractmethod
    def to_update_payload(self, updates: UpdateWorkItemData) -> Any:
        """Convert a partial update to the platform's request body."""


class ProviderAdapter(ABC):
    """Uniform access to one tracking platform.

    Subclasses set ``provider`` and implement the abstract operations.
    Operations a platform cannot perform raise UnsupportedOperationError.
    """

    provider: Provider

    def __init__(self):
        self.config: Optional[ProviderConfig] = None
        self.client: Optional[ProviderClient] = None
        self.converter: Optional[WorkItemConverter] = None
        self.logger = logger.bind(component=self.__class__.__name__)

    async def initialize(self, config: ProviderConfig) -> None:
        """Validate configuration, build the client and check credentials.

        Args:
            config: Platform connection configuration

        Raises:
            ConfigurationError: If the configuration is unusable for this platform
            ProviderAuthenticationError: If the credentials are rejected
        """
        if config.provider != self.provider:
            raise ConfigurationError(
                f'{self.__class__.__name__} cannot use a {config.provider.value} configuration'
            )
        self._validate_config(config)

        self.config = config
        self.client = ClientFactory.create_client(config)
        self.converter = self._create_converter(config)

        await self.validate_connection()
        self.logger.info(f'Connected to {config.display_name}')

    async def validate_connection(self) -> bool:
        """Check that the platform accepts the configured credentials."""
        self._ensure_initialized()
        endpoint, params = self.client.connection_check()
        with self._operation('validate_connection', self.config.display_name):
            response = await self.client.get_async(endpoint, params=params)
        return response.success

    @abstractmethod
    def _validate_config(self, config: ProviderConfig) -> None:
        """Raise ConfigurationError when required settings are missing."""

    @abstractmethod
    def _create_converter(self, config: ProviderConfig) -> WorkItemConverter:
        pass

    @abstractmethod
    async def get_work_item(self, work_item_id: str) -> WorkItem:
        pass

    @abstractmethod
    async def list_work_items(
        self, filter: Optional[WorkItemFilter] = None
    ) -> List[WorkItem]:
        pass

    @abstractmethod
    async def create_work_item(self, data: CreateWorkItemData) -> WorkItem:
        pass

    @abstractmethod
    async def update_work_item(
        self, work_item_id: str, updates: UpdateWorkItemData
    ) -> WorkItem:
        pass

    @abstractmethod
    async def delete_work_item(self, work_item_id: str) -> None:
        pass

    @abstractmethod
    async def search(self, query: str) -> List[WorkItem]:
        pass

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        pass

    async def execute_query(self, query: str) -> List[WorkItem]:
        """Run a platform query. Defaults to the platform's search."""
        return await self.search(query)

    async def link_work_items(
        self, source_id: str, target_id: str, link_type: LinkType
    ) -> None:
        """Create a relationship from ``source_id`` to ``target_id``."""
        raise UnsupportedOperationError('link_work_items', self.provider.value)

    async def unlink_work_items(self, source_id: str, target_id: str) -> None:
        """Remove a relationship from ``source_id`` to ``target_id``."""
        raise UnsupportedOperationError('unlink_work_items', self.provider.value)

    async def bulk_create(self, items: List[CreateWorkItemData]) -> List[WorkItem]:
        """Create items one after another. The first failure propagates."""
        created = []
        for data in items:
            created.append(await self.create_work_item(data))
        return created

    async def bulk_update(
        self, updates: List[Tuple[str, UpdateWorkItemData]]
    ) -> List[WorkItem]:
        """Apply updates one after another. The first failure propagates."""
        updated = []
        for work_item_id, data in updates:
            updated.append(await self.update_work_item(work_item_id, data))
        return updated

    async def export_work_items(self, ids: List[str]) -> List[WorkItemExport]:
        """Fetch each id and snapshot it with its relationships.

        Raises:
            WorkBridgeError: The first fetch failure, naming the id
        """
        exports = []
        for work_item_id in ids:
            item = await self.get_work_item(work_item_id)
            exports.append(
                WorkItemExport(item=item, relationships=item.relationships)
            )
        self.logger.debug(f'Exported {len(exports)} work items')
        return exports

    async def import_work_items(self, imports: List[WorkItemImport]) -> MigrationResult:
        """Create each import independently, keyed by correlation id."""
        result = MigrationResult(batches_attempted=1 if imports else 0)
        for item in imports:
            try:
                created = await self.create_work_item(item.to_create_data())
            except WorkBridgeError as e:
                self.logger.warning(f'Import of {item.correlation_id} failed: {e}')
                result.failed.append(
                    LoadFailure(id=item.correlation_id, title=item.title, reason=str(e))
                )
                continue
            result.successful += 1
            result.mapping[item.correlation_id] = created.id
        return result

    def _ensure_initialized(self) -> None:
        if self.client is None or self.config is None or self.converter is None:
            raise AdapterNotInitializedError(
                f'{self.__class__.__name__} used before initialize()'
            )

    @staticmethod
    def _validate_create_data(data: CreateWorkItemData) -> None:
        if not data.title or not data.title.strip():
            raise ValidationError('create_work_item: title must not be blank')

    def _parse_id(self, work_item_id: str) -> WorkItemKey:
        """Parse an id and check it belongs to this adapter's platform."""
        key = WorkItemKey.parse(work_item_id)
        if key.provider != self.provider:
            raise InvalidWorkItemIdError(
                work_item_id,
                f'belongs to {key.provider.value}, not {self.provider.value}',
            )
        return key

    @contextmanager
    def _operation(self, name: str, target: Optional[str] = None) -> Iterator[None]:
        """Attach the operation name and target to API errors raised inside."""
        try:
            yield
        except ProviderAPIError as e:
            e.with_context(name, target)
            self.logger.error(str(e))
            raise
