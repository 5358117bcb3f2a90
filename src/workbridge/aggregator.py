"""Concurrent read access across several adapters."""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from loguru import logger

from .adapters.base import ProviderAdapter
from .models.work_item import ProviderCapabilities, WorkItem, WorkItemFilter


class WorkItemAggregator:
    """Fan reads out to every adapter and merge the results.

    A failing adapter contributes nothing; its error is logged and the
    other adapters' results are still returned.
    """

    def __init__(self, adapters: List[ProviderAdapter]):
        self.adapters = adapters
        self.logger = logger.bind(component='WorkItemAggregator')

    async def _gather(
        self, operation: str, call: Callable[[ProviderAdapter], Awaitable[List[WorkItem]]]
    ) -> List[WorkItem]:
        results = await asyncio.gather(
            *(call(adapter) for adapter in self.adapters), return_exceptions=True
        )

        items: List[WorkItem] = []
        for adapter, result in zip(self.adapters, results):
            name = adapter.config.display_name if adapter.config else adapter.provider.value
            if isinstance(result, BaseException):
                self.logger.error(f'{operation} failed on {name}: {result}')
                continue
            items.extend(result)
        return items

    async def list_all(self, filter: Optional[WorkItemFilter] = None) -> List[WorkItem]:
        """List matching items from every adapter."""
        return await self._gather(
            'list_work_items', lambda adapter: adapter.list_work_items(filter)
        )

    async def search_all(self, query: str) -> List[WorkItem]:
        """Search every adapter for ``query``."""
        return await self._gather('search', lambda adapter: adapter.search(query))

    def get_capabilities(self) -> Dict[str, ProviderCapabilities]:
        """Capabilities keyed by each adapter's display name."""
        capabilities = {}
        for adapter in self.adapters:
            name = adapter.config.display_name if adapter.config else adapter.provider.value
            capabilities[name] = adapter.get_capabilities()
        return capabilities
