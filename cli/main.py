#!/usr/bin/env python3
"""
Inscribe - Command Line Interface

Batch inscriptions through a commit/reveal transaction pair, funded and
signed by a Bitcoin Core wallet.
"""

import functools
import json
import logging
import sys
import traceback
from typing import Any, Optional

import click
import yaml

from inscribe.address import Chain

from .config import ConfigurationManager, OUTPUT_FORMATS


__version__ = "0.1.0"


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.output_format: Optional[str] = None
        self.verbose: int = 0
        self.chain: Optional[str] = None
        self.config: Optional[ConfigurationManager] = None
        self.logger: logging.Logger = logging.getLogger('inscribe-cli')

    def setup_logging(self):
        """Configure logging based on verbosity level."""
        log_levels = {
            0: logging.WARNING,
            1: logging.INFO,
            2: logging.DEBUG
        }

        level = log_levels.get(min(self.verbose, 2), logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers = [handler]

        # Suppress verbose third-party logs unless in debug mode
        if self.verbose < 2:
            logging.getLogger('requests').setLevel(logging.WARNING)
            logging.getLogger('urllib3').setLevel(logging.WARNING)

    def load_config(self):
        """Load configuration and apply command line overrides."""
        self.config = ConfigurationManager(self.config_file)

        try:
            errors = self.config.validate()
        except ValueError as e:
            raise click.UsageError(str(e))
        if errors:
            raise click.UsageError("Invalid configuration: " + "; ".join(errors))

        self.output_format = self.output_format or self.config.get('output.format', 'json')
        self.chain = self.chain or self.config.get('network.chain', 'regtest')
        self.logger.debug(f"Configuration sources: {', '.join(self.config.get_sources())}")

    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value with fallback to default."""
        return self.config.get(key, default)

    @property
    def chain_type(self) -> Chain:
        return Chain(self.chain)

    def output(self, data: Any, format_override: Optional[str] = None):
        """Output data in specified format."""
        format_type = format_override or self.output_format

        if format_type == "json":
            click.echo(json.dumps(data, indent=2, default=str))
        elif format_type == "yaml":
            click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))
        else:
            self._output_table(data)

    def _output_table(self, data: Any):
        """Output data in table format."""
        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, list):
                    click.echo(f"{key}:")
                    for item in value:
                        if isinstance(item, dict):
                            click.echo("  " + "  ".join(f"{k}={v}" for k, v in item.items()))
                        else:
                            click.echo(f"  {item}")
                else:
                    click.echo(f"{key:20} {value}")
        elif isinstance(data, list):
            for item in data:
                click.echo(item)
        else:
            click.echo(str(data))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator to handle CLI errors gracefully."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.exceptions.ClickException:
            raise
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            cli_ctx = ctx.find_object(CLIContext) if ctx else None

            click.echo(f"Error: {e}", err=True)
            if cli_ctx and cli_ctx.verbose >= 2:
                click.echo(traceback.format_exc(), err=True)
            else:
                click.echo("Use -vv for detailed error information.", err=True)

            sys.exit(1)

    return wrapper


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c',
              help='Path to configuration file')
@click.option('--output-format', '-o',
              type=click.Choice(OUTPUT_FORMATS),
              help='Output format')
@click.option('--verbose', '-v',
              count=True,
              help='Increase verbosity (-v for INFO, -vv for DEBUG)')
@click.option('--chain',
              type=click.Choice([chain.value for chain in Chain]),
              help='Chain to operate on')
@click.version_option(__version__, prog_name='inscribe')
@pass_context
def cli(ctx: CLIContext, config_file: Optional[str], output_format: Optional[str],
        verbose: int, chain: Optional[str]):
    """
    Batch inscription command line interface.

    Examples:
        inscribe file --fee-rate 5 --destination bc1p... hello.txt
        inscribe batch --fee-rate 5 batch.yaml
        inscribe request request.json
    """
    ctx.config_file = config_file
    ctx.output_format = output_format
    ctx.verbose = verbose
    ctx.chain = chain

    ctx.setup_logging()
    ctx.load_config()

    ctx.logger.debug("CLI initialized with context")


def register_commands():
    """Register all command modules with the main CLI."""
    from cli.commands.config import config
    from cli.commands.inscribe import batch, file, request

    cli.add_command(batch)
    cli.add_command(file)
    cli.add_command(request)
    cli.add_command(config)


def main():
    register_commands()
    cli()


if __name__ == '__main__':
    main()
