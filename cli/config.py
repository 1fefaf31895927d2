"""
Configuration Management for the Inscribe CLI

Hierarchical configuration: built-in defaults, then the first configuration
file found (or the one given with --config-file), then INSCRIBE_* environment
variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from inscribe.address import Chain


# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / 'inscribe.yml',
    Path.cwd() / '.inscribe.yml',
    Path.home() / '.inscribe' / 'config.yml',
    Path.home() / '.config' / 'inscribe' / 'config.yml',
    Path('/etc/inscribe/config.yml'),
]

ENV_PREFIX = 'INSCRIBE_'

OUTPUT_FORMATS = ['table', 'json', 'yaml']

DEFAULT_CONFIG = {
    'network': {
        'chain': 'regtest',
        'rpc_host': 'localhost',
        'rpc_port': None,
        'rpc_user': None,
        'rpc_password': None,
        'rpc_cookie_file': None,
        'rpc_wallet': None,
        'rpc_timeout': 30,
    },
    'inscribe': {
        'postage': 10000,
        'fee_rate': 1.0,
        'commit_fee_rate': None,
        'data_dir': '~/.inscribe',
        'state_file': None,
    },
    'output': {
        'format': 'json',
    },
}


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
        """
        self.logger = logging.getLogger('inscribe-cli.config')
        self.config_file = config_file
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [DEFAULT_CONFIG]
        self._config_sources = ["defaults"]

        if self.config_file:
            configs.append(self._load_config_file(Path(self.config_file)))
            self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self._config_sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)

        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ValueError(f"Failed to load config from {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        INSCRIBE_INSCRIBE_FEE_RATE=2.5 sets inscribe.fee_rate; the section is the
        first word after the prefix and the rest names the key.
        """
        env_config = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            section, _, option = key[len(ENV_PREFIX):].lower().partition('_')
            if section not in DEFAULT_CONFIG or option not in DEFAULT_CONFIG[section]:
                self.logger.debug(f"Ignoring unknown configuration variable {key}")
                continue

            env_config.setdefault(section, {})[option] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ['true', 'yes']:
            return True
        if value.lower() in ['false', 'no']:
            return False

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                elif isinstance(value, dict):
                    result[key] = self._deep_merge(value)
                else:
                    result[key] = value

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str) and ('~' in value or '$' in value):
                config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'network.rpc_host')
            default: Default value if key not found or unset

        Returns:
            Configuration value or default
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return default if current is None else current

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        chain = config['network'].get('chain')
        if chain not in [c.value for c in Chain]:
            errors.append(f"Invalid chain: {chain}")

        port = config['network'].get('rpc_port')
        if port is not None and (not isinstance(port, int) or port <= 0):
            errors.append("RPC port must be a positive integer")

        postage = config['inscribe'].get('postage')
        if not isinstance(postage, int) or postage <= 0:
            errors.append("Postage must be a positive integer")

        for key in ['fee_rate', 'commit_fee_rate']:
            rate = config['inscribe'].get(key)
            if rate is not None and (not isinstance(rate, (int, float)) or rate < 0):
                errors.append(f"{key} must be a non-negative number")

        output_format = config['output'].get('format')
        if output_format not in OUTPUT_FORMATS:
            errors.append(f"Invalid output format: {output_format}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []
