"""
Configuration Commands for the Inscribe CLI
"""

import sys
from typing import Optional

import click

from cli.config import CONFIG_SEARCH_PATHS, ENV_PREFIX
from cli.main import CLIContext, handle_cli_error, pass_context


@click.group()
def config():
    """
    Configuration inspection commands.
    """


@config.command('show')
@click.option('--key', help='Specific configuration key to show (dot notation)')
@click.option('--sources', is_flag=True, help='Show configuration sources')
@pass_context
@handle_cli_error
def show_config(ctx: CLIContext, key: Optional[str], sources: bool):
    """
    Display the merged configuration.

    Examples:
        inscribe config show
        inscribe config show --key inscribe.postage
        inscribe config show --sources
    """
    manager = ctx.config

    if sources:
        ctx.output({'sources': manager.get_sources()})
        return

    if key:
        value = manager.get(key)
        if value is None:
            click.echo(f"Configuration key not found or unset: {key}", err=True)
            sys.exit(1)
        ctx.output({key: value})
        return

    ctx.output(manager.load())


@config.command('search-paths')
@pass_context
@handle_cli_error
def search_paths(ctx: CLIContext):
    """
    Show configuration file search paths, in order of precedence.
    """
    ctx.output({
        'search_paths': [
            f"{path} ({'found' if path.exists() else 'missing'})" for path in CONFIG_SEARCH_PATHS
        ],
        'environment_prefix': ENV_PREFIX,
    })
