"""Platform adapters."""

from .azure import AzureAdapter
from .base import ProviderAdapter, WorkItemConverter
from .factory import AdapterFactory
from .github import GitHubAdapter
from .gitlab import GitLabAdapter

__all__ = [
    'AdapterFactory',
    'AzureAdapter',
    'GitHubAdapter',
    'GitLabAdapter',
    'ProviderAdapter',
    'WorkItemConverter',
]
