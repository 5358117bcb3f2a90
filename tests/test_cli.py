"""Tests for CLI interface."""

from datetime import datetime

import pytest
from unittest.mock import AsyncMock, Mock, patch
from click.testing import CliRunner
import tempfile
import os

from workbridge.api.exceptions import ProviderAuthenticationError
from workbridge.cli.main import cli, _load_config
from workbridge.config.config import Config
from workbridge.models.migration import (
    LoadFailure,
    MigrationReport,
    MigrationResult,
    TransformResult,
)
from workbridge.models.work_item import ProviderCapabilities, WorkItem


def _config():
    return Config(
        source={'provider': 'github', 'token': 'gh', 'project': 'octo/repo', 'name': 'GitHub'},
        target={
            'provider': 'azure',
            'token': 'pat',
            'organization': 'contoso',
            'project': 'Web',
            'name': 'Azure',
        },
    )


def _report(failed=None, dry_run=False):
    return MigrationReport(
        transform=TransformResult(warnings=['No mapping found for user: octocat ()']),
        migration=MigrationResult(
            successful=3,
            failed=failed or [],
            mapping={},
            batches_attempted=1,
        ),
        dry_run=dry_run,
        started_at=datetime(2024, 1, 1, 12, 0, 0),
        completed_at=datetime(2024, 1, 1, 12, 0, 5),
    )


def _capabilities(max_assignees):
    return ProviderCapabilities(
        supports_epics=False,
        supports_iterations=False,
        supports_milestones=True,
        supports_multiple_assignees=max_assignees > 1,
        supports_confidential=False,
        supports_weight=False,
        supports_time_tracking=False,
        supports_custom_fields=True,
        max_assignees=max_assignees,
        hierarchy_levels=2,
        work_item_types=['issue'],
    )


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_cli_help(self):
        """Test CLI help command."""
        result = self.runner.invoke(cli, ['--help'])

        assert result.exit_code == 0
        assert 'WorkBridge' in result.output
        for command in ('init', 'validate', 'migrate', 'capabilities', 'search'):
            assert command in result.output

    def test_cli_version(self):
        """Test CLI version command."""
        result = self.runner.invoke(cli, ['--version'])

        assert result.exit_code == 0
        assert '0.1.0' in result.output

    def test_init_command(self):
        """Test init command."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, 'test_config.yaml')

            result = self.runner.invoke(cli, ['init', '--output', config_path])

            assert result.exit_code == 0
            assert 'Configuration template created' in result.output
            assert os.path.exists(config_path)

            with open(config_path, 'r') as f:
                content = f.read()
                assert 'source:' in content
                assert 'target:' in content
                assert 'transform:' in content

    @patch('workbridge.cli.main._load_config')
    def test_migrate_command_success(self, mock_load_config):
        """Test successful migrate command."""
        mock_load_config.return_value = _config()
        mock_engine = Mock()
        mock_engine.migrate = AsyncMock(return_value=_report())

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['migrate'])

        assert result.exit_code == 0
        assert 'Migration Summary' in result.output
        assert 'Migration completed successfully' in result.output
        mock_engine.migrate.assert_awaited_once_with(dry_run=None, skip_verification=None)

    @patch('workbridge.cli.main._load_config')
    def test_migrate_command_dry_run(self, mock_load_config):
        """Test migrate command forwards dry run and skip verification."""
        mock_load_config.return_value = _config()
        mock_engine = Mock()
        mock_engine.migrate = AsyncMock(return_value=_report(dry_run=True))

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(
                cli, ['migrate', '--dry-run', '--skip-verification']
            )

        assert result.exit_code == 0
        assert 'dry-run mode' in result.output
        mock_engine.migrate.assert_awaited_once_with(dry_run=True, skip_verification=True)

    @patch('workbridge.cli.main._load_config')
    def test_migrate_command_with_failures(self, mock_load_config):
        """Test per-item failures produce a non-zero exit code."""
        mock_load_config.return_value = _config()
        failure = LoadFailure(id='c-1', title='Broken', reason='HTTP 400')
        mock_engine = Mock()
        mock_engine.migrate = AsyncMock(return_value=_report(failed=[failure]))

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['migrate'])

        assert result.exit_code == 1
        assert 'Broken: HTTP 400' in result.output

    @patch('workbridge.cli.main._load_config')
    def test_migrate_command_config_not_found(self, mock_load_config):
        """Test migrate command with missing configuration."""
        mock_load_config.side_effect = FileNotFoundError('No configuration found')

        result = self.runner.invoke(cli, ['migrate'])

        assert result.exit_code == 1
        assert 'Migration failed' in result.output

    @patch('workbridge.cli.main._load_config')
    def test_validate_command_success(self, mock_load_config):
        """Test successful validate command."""
        mock_load_config.return_value = _config()
        mock_engine = Mock()
        mock_engine.connect = AsyncMock(return_value=None)

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['validate'])

        assert result.exit_code == 0
        assert 'Configuration is valid' in result.output
        assert 'Connected to source GitHub' in result.output
        mock_engine.close.assert_called_once()

    @patch('workbridge.cli.main._load_config')
    def test_validate_command_failure(self, mock_load_config):
        """Test validate command failure on rejected credentials."""
        mock_load_config.return_value = _config()
        mock_engine = Mock()
        mock_engine.connect = AsyncMock(
            side_effect=ProviderAuthenticationError('Authentication failed')
        )

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['validate'])

        assert result.exit_code == 1
        assert 'Validation failed' in result.output
        mock_engine.close.assert_called_once()

    @patch('workbridge.cli.main._load_config')
    def test_capabilities_command(self, mock_load_config):
        """Test capabilities are tabulated per platform."""
        mock_load_config.return_value = _config()
        source = Mock()
        source.config.display_name = 'GitHub'
        source.get_capabilities.return_value = _capabilities(10)
        target = Mock()
        target.config.display_name = 'Azure'
        target.get_capabilities.return_value = _capabilities(1)

        mock_engine = Mock(source=source, target=target)
        mock_engine.connect = AsyncMock(return_value=None)

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['capabilities'])

        assert result.exit_code == 0
        assert 'max assignees' in result.output
        assert 'GitHub' in result.output
        assert 'Azure' in result.output

    @patch('workbridge.cli.main._load_config')
    def test_search_command(self, mock_load_config):
        """Test search shows results even when one platform fails."""
        mock_load_config.return_value = _config()
        item = WorkItem(
            id='github:octo/repo#12', provider='github', title='Login fails'
        )
        source = Mock()
        source.config.display_name = 'GitHub'
        source.search = AsyncMock(return_value=[item])
        target = Mock()
        target.config.display_name = 'Azure'
        target.search = AsyncMock(side_effect=RuntimeError('boom'))

        mock_engine = Mock(source=source, target=target)
        mock_engine.connect = AsyncMock(return_value=None)

        with patch('workbridge.cli.main.MigrationEngine', return_value=mock_engine):
            result = self.runner.invoke(cli, ['search', 'login'])

        assert result.exit_code == 0
        assert 'Login fails' in result.output
        source.search.assert_awaited_once_with('login')

    def test_verbose_flag(self):
        """Test verbose flag."""
        result = self.runner.invoke(cli, ['--verbose', '--help'])

        assert result.exit_code == 0

    @patch('workbridge.cli.main.console.print_exception')
    def test_error_handling_with_verbose(self, mock_print_exception):
        """Test error handling with verbose flag."""
        with patch(
            'workbridge.cli.main._load_config',
            side_effect=Exception('Test error'),
        ):
            result = self.runner.invoke(cli, ['--verbose', 'migrate'])

        assert result.exit_code == 1
        mock_print_exception.assert_called_once()


class TestConfigLoading:
    """Test configuration loading functions."""

    @patch('workbridge.config.config.Config.from_file')
    def test_load_config_with_file(self, mock_from_file):
        """Test loading config from specified file."""
        mock_config = Mock(spec=Config)
        mock_from_file.return_value = mock_config

        mock_ctx = Mock()
        mock_ctx.obj = {'config_path': '/path/to/config.yaml'}

        with patch('pathlib.Path.exists', return_value=True):
            config = _load_config(mock_ctx)

        assert config == mock_config
        mock_from_file.assert_called_once_with('/path/to/config.yaml')

    @patch('workbridge.config.config.Config.from_file')
    def test_load_config_default_locations(self, mock_from_file):
        """Test loading config from default locations."""
        mock_config = Mock(spec=Config)
        mock_from_file.return_value = mock_config

        mock_ctx = Mock()
        mock_ctx.obj = {}

        with patch(
            'pathlib.Path.exists',
            autospec=True,
            side_effect=lambda path: str(path) == 'config.yaml',
        ):
            config = _load_config(mock_ctx)

        assert config == mock_config
        mock_from_file.assert_called_once_with('config.yaml')

    @patch('workbridge.config.config.Config.from_env')
    def test_load_config_from_env(self, mock_from_env):
        """Test loading config from environment variables."""
        mock_config = Mock(spec=Config)
        mock_from_env.return_value = mock_config

        mock_ctx = Mock()
        mock_ctx.obj = {}

        with patch('pathlib.Path.exists', return_value=False):
            config = _load_config(mock_ctx)

        assert config == mock_config
        mock_from_env.assert_called_once()

    def test_load_config_not_found(self):
        """Test loading config when no config is found."""
        mock_ctx = Mock()
        mock_ctx.obj = {}

        with patch('pathlib.Path.exists', return_value=False):
            with patch(
                'workbridge.config.config.Config.from_env',
                side_effect=Exception(),
            ):
                with pytest.raises(FileNotFoundError):
                    _load_config(mock_ctx)
