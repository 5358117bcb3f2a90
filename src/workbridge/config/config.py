"""Configuration management for WorkBridge."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pathlib import Path
import os

from pydantic import BaseModel, Field, validator
import yaml
from dotenv import load_dotenv

from ..models.migration import LoadOptions, TransformOptions
from ..models.work_item import ProcessTemplate, Provider, WorkItemFilter


class ProviderConfig(BaseModel):
    """Connection settings for one tracking platform."""

    id: str = Field(default='default', description='Identifier of this connection')
    name: Optional[str] = Field(default=None, description='Display name')
    provider: Provider = Field(..., description='Platform kind')
    api_url: Optional[str] = Field(
        default=None, description='API base URL (platform default when omitted)'
    )
    token: str = Field(..., description='Personal access token')
    organization: Optional[str] = Field(
        default=None, description='GitHub owner or Azure DevOps organization'
    )
    project: Optional[str] = Field(
        default=None, description='Repository, project id/path or Azure project'
    )
    group: Optional[str] = Field(
        default=None, description='GitLab group id/path (needed for epics)'
    )
    process: ProcessTemplate = Field(
        default=ProcessTemplate.AGILE, description='Azure DevOps process template'
    )
    timeout: int = Field(default=30, description='Request timeout in seconds')

    @validator('api_url')
    def validate_url(cls, v):
        """Validate API URL format."""
        if v is None:
            return v
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v.rstrip('/')

    @validator('token')
    def validate_token(cls, v):
        """Validate a token was provided."""
        if not v or not v.strip():
            raise ValueError('Token must not be empty')
        return v

    @validator('timeout')
    def validate_timeout(cls, v):
        """Validate timeout is positive."""
        if v <= 0:
            raise ValueError('Timeout must be positive')
        return v

    @property
    def display_name(self) -> str:
        """Name used in logs and CLI output."""
        return self.name or f'{self.provider.value}:{self.id}'


class MigrationConfig(BaseModel):
    """Migration-specific configuration."""

    batch_size: int = Field(default=10, description='Items created per batch')
    batch_delay: float = Field(
        default=1.0, description='Seconds to pause between batches'
    )
    continue_on_error: bool = Field(
        default=True, description='Record per-item failures and keep going'
    )
    dry_run: bool = Field(default=False, description='Perform dry run without changes')
    skip_verification: bool = Field(
        default=False, description='Skip the verify phase'
    )
    strict_verification: bool = Field(
        default=False, description='Abort the run when verification itself fails'
    )
    filter: WorkItemFilter = Field(
        default_factory=WorkItemFilter, description='Which source items to migrate'
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

    def to_load_options(self) -> LoadOptions:
        """Build load-phase options from this configuration."""
        return LoadOptions(
            batch_size=self.batch_size,
            batch_delay=self.batch_delay,
            continue_on_error=self.continue_on_error,
            dry_run=self.dry_run,
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default='INFO', description='Log level')
    file: Optional[str] = Field(default=None, description='Log file path')
    format: Optional[str] = Field(
        default=None, description='Log format (loguru syntax)'
    )

    @validator('level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class Config(BaseModel):
    """Main configuration class for WorkBridge."""

    source: ProviderConfig = Field(..., description='Platform to read from')
    target: ProviderConfig = Field(..., description='Platform to migrate into')
    migration: MigrationConfig = Field(
        default_factory=MigrationConfig, description='Migration settings'
    )
    transform: TransformOptions = Field(
        default_factory=TransformOptions, description='Transform settings'
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description='Logging settings'
    )

    class Config:
        """Pydantic configuration."""

        extra = 'forbid'

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """Load configuration from YAML file."""
        config_file = Path(config_path)

        if not config_file.exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if not isinstance(config_data, dict):
            raise ValueError(f'Configuration file is not a mapping: {config_path}')

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from ``WORKBRIDGE_*`` environment variables."""
        load_dotenv()

        config_data = {
            'source': cls._provider_from_env('SOURCE'),
            'target': cls._provider_from_env('TARGET'),
            'migration': {
                'batch_size': int(os.getenv('WORKBRIDGE_BATCH_SIZE', 10)),
                'batch_delay': float(os.getenv('WORKBRIDGE_BATCH_DELAY', 1.0)),
                'continue_on_error': os.getenv(
                    'WORKBRIDGE_CONTINUE_ON_ERROR', 'true'
                ).lower()
                == 'true',
                'dry_run': os.getenv('WORKBRIDGE_DRY_RUN', 'false').lower() == 'true',
            },
            'transform': {
                'missing_fields': os.getenv('WORKBRIDGE_MISSING_FIELDS'),
                'preserve_ids': os.getenv('WORKBRIDGE_PRESERVE_IDS', 'false').lower()
                == 'true',
            },
            'logging': {
                'level': os.getenv('LOG_LEVEL', 'INFO'),
                'file': os.getenv('LOG_FILE'),
            },
        }

        config_data = cls._remove_none_values(config_data)

        return cls(**config_data)

    @staticmethod
    def _provider_from_env(role: str) -> Dict[str, Any]:
        prefix = f'WORKBRIDGE_{role}_'
        return {
            'id': role.lower(),
            'provider': os.getenv(prefix + 'PROVIDER'),
            'api_url': os.getenv(prefix + 'URL'),
            'token': os.getenv(prefix + 'TOKEN'),
            'organization': os.getenv(prefix + 'ORGANIZATION'),
            'project': os.getenv(prefix + 'PROJECT'),
            'group': os.getenv(prefix + 'GROUP'),
            'process': os.getenv(prefix + 'PROCESS'),
        }

    @staticmethod
    def _remove_none_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively remove None values from dictionary."""
        if isinstance(data, dict):
            return {
                k: Config._remove_none_values(v)
                for k, v in data.items()
                if v is not None
            }
        return data

    @staticmethod
    def _to_plain(data: Any) -> Any:
        """Convert enums and datetimes so PyYAML writes plain scalars."""
        if isinstance(data, dict):
            return {k: Config._to_plain(v) for k, v in data.items()}
        if isinstance(data, (list, tuple)):
            return [Config._to_plain(v) for v in data]
        if isinstance(data, Enum):
            return data.value
        if isinstance(data, datetime):
            return data.isoformat()
        return data

    def to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                self._to_plain(self.dict()),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )

    @staticmethod
    def create_template(output_path: str) -> None:
        """Create a configuration template file."""
        template_config = {
            'source': {
                'id': 'source',
                'provider': 'gitlab',
                'api_url': 'https://gitlab.example.com',
                'token': 'your-gitlab-personal-access-token',
                'project': 'my-group/my-project',
                'group': 'my-group',
                'timeout': 30,
            },
            'target': {
                'id': 'target',
                'provider': 'azure',
                'token': 'your-azure-devops-personal-access-token',
                'organization': 'my-organization',
                'project': 'My Project',
                'process': 'agile',
                'timeout': 30,
            },
            'migration': {
                'batch_size': 10,
                'batch_delay': 1.0,
                'continue_on_error': True,
                'dry_run': False,
                'skip_verification': False,
                'filter': {'state': 'open', 'labels': []},
            },
            'transform': {
                'preserve_ids': True,
                'missing_fields': 'metadata',
                'user_mapping': {'gitlab-user': 'azure-user@example.com'},
                'label_mapping': {},
                'custom_field_mapping': {},
            },
            'logging': {
                'level': 'INFO',
                'file': 'workbridge.log',
            },
        }

        config_file = Path(output_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(
                template_config, f, default_flow_style=False, indent=2, sort_keys=False
            )
