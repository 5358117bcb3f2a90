"""Main CLI entry point for WorkBridge."""

import sys
import asyncio
from typing import List, Optional, Tuple
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .. import __version__
from ..aggregator import WorkItemAggregator
from ..config.config import Config
from ..migration.engine import MigrationEngine
from ..models.migration import MigrationReport
from ..models.work_item import WorkItem
from ..utils.logging import setup_logging

console = Console()

MAX_LISTED_MESSAGES = 5


@click.group()
@click.version_option(version=__version__, prog_name='workbridge')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """WorkBridge - Migrate and search work items across GitHub, GitLab and Azure DevOps."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    setup_logging('DEBUG' if verbose else 'INFO')


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]WorkBridge[/bold green]\nInitializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your source and target details[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate configuration and connectivity to both platforms."""
    console.print(
        Panel.fit(
            '[bold cyan]WorkBridge[/bold cyan]\nValidating configuration...',
            border_style='cyan',
        )
    )

    try:
        config, engine = _open_engine(ctx)
        console.print('[green]✓[/green] Configuration is valid')

        try:
            asyncio.run(engine.connect())
        finally:
            engine.close()

        console.print(f'[green]✓[/green] Connected to source {config.source.display_name}')
        console.print(f'[green]✓[/green] Connected to target {config.target.display_name}')

    except Exception as e:
        _fail(ctx, 'Validation failed', e)


@cli.command()
@click.option(
    '--dry-run',
    is_flag=True,
    help='Transform and plan the load without creating anything',
)
@click.option(
    '--skip-verification',
    is_flag=True,
    help='Do not compare migrated items against their source',
)
@click.pass_context
def migrate(ctx: click.Context, dry_run: bool, skip_verification: bool) -> None:
    """Migrate work items from the source to the target platform."""
    console.print(
        Panel.fit(
            '[bold blue]WorkBridge[/bold blue]\nStarting migration...',
            border_style='blue',
        )
    )

    if dry_run:
        console.print('[yellow]Running in dry-run mode - no changes will be made[/yellow]')

    try:
        config, engine = _open_engine(ctx)
        with Progress(
            SpinnerColumn(),
            TextColumn('[progress.description]{task.description}'),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(
                f'{config.source.display_name} -> {config.target.display_name}',
                total=None,
            )
            report = asyncio.run(
                engine.migrate(
                    dry_run=dry_run or None,
                    skip_verification=skip_verification or None,
                )
            )

        _display_migration_report(report)

        if report.migration.failed:
            sys.exit(1)

    except Exception as e:
        _fail(ctx, 'Migration failed', e)


@cli.command()
@click.pass_context
def capabilities(ctx: click.Context) -> None:
    """Show what the source and target platforms support."""
    console.print(
        Panel.fit(
            '[bold magenta]WorkBridge[/bold magenta]\nPlatform capabilities',
            border_style='magenta',
        )
    )

    try:
        _, engine = _open_engine(ctx)
        try:
            asyncio.run(engine.connect())
            aggregator = WorkItemAggregator([engine.source, engine.target])
            found = aggregator.get_capabilities()
        finally:
            engine.close()

        names = list(found)
        table = Table(title='Capabilities')
        table.add_column('Capability', style='cyan')
        for name in names:
            table.add_column(name, style='green')

        for field in next(iter(found.values())).dict():
            values = [getattr(found[name], field) for name in names]
            table.add_row(field.replace('_', ' '), *(_format_value(v) for v in values))

        console.print(table)

    except Exception as e:
        _fail(ctx, 'Failed to load capabilities', e)


@cli.command()
@click.argument('query')
@click.option(
    '--limit',
    '-n',
    default=20,
    show_default=True,
    help='Maximum number of results to show',
)
@click.pass_context
def search(ctx: click.Context, query: str, limit: int) -> None:
    """Search work items on the source and target platforms."""
    try:
        _, engine = _open_engine(ctx)
        try:
            items = asyncio.run(_search(engine, query))
        finally:
            engine.close()

        _display_work_items(items, query, limit)

    except Exception as e:
        _fail(ctx, 'Search failed', e)


async def _search(engine: MigrationEngine, query: str) -> List[WorkItem]:
    await engine.connect()
    aggregator = WorkItemAggregator([engine.source, engine.target])
    return await aggregator.search_all(query)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)

    default_paths = ['config.yaml', 'config.yml', '.workbridge.yaml']
    for path in default_paths:
        if Path(path).exists():
            return Config.from_file(path)

    try:
        return Config.from_env()
    except Exception:
        raise FileNotFoundError(
            'No configuration found. Use --config to specify a file or run "workbridge init" to create one.'
        )


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)
    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level,
        log_file=config.logging.file,
        log_format=config.logging.format,
        secrets=[config.source.token, config.target.token],
    )


def _open_engine(ctx: click.Context) -> Tuple[Config, MigrationEngine]:
    """Load configuration, apply its logging settings and build an engine."""
    config = _load_config(ctx)
    _setup_logging_with_config(ctx, config)
    return config, MigrationEngine(config)


def _fail(ctx: click.Context, what: str, error: Exception) -> None:
    console.print(f'[red]✗[/red] {what}: {error}')
    if ctx.obj.get('verbose'):
        console.print_exception()
    sys.exit(1)


def _format_value(value) -> str:
    if isinstance(value, bool):
        return '✓' if value else '✗'
    if isinstance(value, list):
        return ', '.join(value)
    return str(value)


def _print_messages(title: str, style: str, messages: List[str]) -> None:
    if not messages:
        return
    console.print(f'\n[{style}]{title} ({len(messages)}):[/{style}]')
    for message in messages[:MAX_LISTED_MESSAGES]:
        console.print(f'  • {message}')
    if len(messages) > MAX_LISTED_MESSAGES:
        console.print(f'  ... and {len(messages) - MAX_LISTED_MESSAGES} more')


def _display_migration_report(report: MigrationReport) -> None:
    """Display migration report results."""
    migration = report.migration

    table = Table(title='Migration Summary' + (' (dry run)' if report.dry_run else ''))
    table.add_column('Phase', style='cyan')
    table.add_column('Total', style='blue')
    table.add_column('Successful', style='green')
    table.add_column('Failed', style='red')

    table.add_row(
        'Transform',
        str(len(report.transform.items) + len(report.transform.errors)),
        str(len(report.transform.items)),
        str(len(report.transform.errors)),
    )
    table.add_row(
        'Load',
        str(migration.total),
        str(migration.successful),
        str(len(migration.failed)),
    )
    if report.verification:
        table.add_row(
            'Verify',
            str(report.verification.total_items),
            str(report.verification.successful),
            str(report.verification.failed),
        )
    console.print(table)

    if report.completed_at:
        duration = report.completed_at - report.started_at
        console.print(f'\n[blue]Migration Duration:[/blue] {duration}')
    console.print(f'[blue]Batches:[/blue] {migration.batches_attempted}')

    if report.transform.fields_lost:
        console.print(
            f'[yellow]Fields not carried over:[/yellow] '
            f'{", ".join(report.transform.fields_lost)}'
        )

    _print_messages(
        'Warnings', 'yellow', report.transform.warnings + migration.warnings
    )
    _print_messages(
        'Errors',
        'red',
        [f'{failure.title}: {failure.reason}' for failure in migration.failed],
    )
    if report.verification:
        _print_messages(
            'Integrity issues',
            'yellow',
            [
                f'{issue.original_id} -> {issue.new_id}: {issue.issue}'
                for issue in report.verification.data_integrity_issues
            ],
        )
    if report.verification_error:
        console.print(f'\n[yellow]Verification failed:[/yellow] {report.verification_error}')

    if migration.failed:
        console.print('[red]✗[/red] Migration completed with failures')
    else:
        console.print('[green]✓[/green] Migration completed successfully')


def _display_work_items(items: List[WorkItem], query: str, limit: int) -> None:
    if not items:
        console.print(f'[yellow]No work items match "{query}"[/yellow]')
        return

    table = Table(title=f'Results for "{query}"')
    table.add_column('ID', style='cyan')
    table.add_column('Type', style='magenta')
    table.add_column('State', style='green')
    table.add_column('Title')

    for item in items[:limit]:
        table.add_row(item.id, item.type.value, item.state.value, item.title)

    console.print(table)
    if len(items) > limit:
        console.print(f'... and {len(items) - limit} more')


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
