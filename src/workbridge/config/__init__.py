"""Configuration models and loaders."""

from .config import Config, LoggingConfig, MigrationConfig, ProviderConfig

__all__ = ['Config', 'LoggingConfig', 'MigrationConfig', 'ProviderConfig']
