"""
Database configuration settings.

This module defines the littleorm configuration defaults, loads overrides from
YAML files and the environment, and validates the merged result.
"""

import os
from copy import deepcopy
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import ConfigurationError

LITTLEORM_CONFIG = {
    'connection': {
        'db_type': 'sqlite',               # sqlite, duckdb, mysql, postgresql
        'url': None,                       # Full SQLAlchemy URL, wins over the fields below
        'database': ':memory:',            # Database name or file path
        'host': 'localhost',
        'port': None,
        'user': None,
        'password': None,
        'engine_args': {},                 # Passed to sqlalchemy.create_engine
    },
    'query': {
        'timeout': 10.0,                   # Per-statement timeout in seconds
        'param_marker': None,              # None = derive from the driver paramstyle
        'max_workers': 8,                  # Threads running statements under the timeout
        'slow_query_threshold': 1.0,       # Log statements slower than this (seconds)
    },
    'pool': {
        'max_idle': 64,                    # Idle builder contexts kept for reuse
    },
    'logging': {
        'level': 'INFO',
        'file': None,                      # Optional log file path
        'console': False,                  # Attach a stderr handler
    },
}

# Environment variables that override configuration values
ENV_MAPPINGS = {
    'connection.url': 'LITTLEORM_DB_URL',
    'connection.password': 'LITTLEORM_DB_PASSWORD',
    'query.timeout': 'LITTLEORM_QUERY_TIMEOUT',
}

CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["connection", "query", "pool"],
    "properties": {
        "connection": {
            "type": "object",
            "properties": {
                "db_type": {"type": "string", "enum": ["sqlite", "duckdb", "mysql", "postgresql"]},
                "url": {"type": ["string", "null"]},
                "database": {"type": ["string", "null"]},
                "host": {"type": ["string", "null"]},
                "port": {"type": ["integer", "null"], "minimum": 1},
                "user": {"type": ["string", "null"]},
                "password": {"type": ["string", "null"]},
                "engine_args": {"type": "object"}
            }
        },
        "query": {
            "type": "object",
            "required": ["timeout"],
            "properties": {
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "param_marker": {"type": ["string", "null"], "minLength": 1},
                "max_workers": {"type": "integer", "minimum": 1},
                "slow_query_threshold": {"type": "number", "minimum": 0}
            }
        },
        "pool": {
            "type": "object",
            "properties": {
                "max_idle": {"type": "integer", "minimum": 0}
            }
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
                "file": {"type": ["string", "null"]},
                "console": {"type": "boolean"}
            }
        }
    }
}


def get_littleorm_config() -> Dict[str, Any]:
    """Get a copy of the default configuration dictionary."""
    return deepcopy(LITTLEORM_CONFIG)


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a configuration dictionary against the schema.

    Args:
        config: Merged configuration

    Returns:
        The same configuration when valid

    Raises:
        ConfigurationError: On the first schema violation
    """
    validator = Draft7Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(config), key=lambda e: list(e.path))
    if errors:
        error = errors[0]
        path = '.'.join(str(p) for p in error.path) or '<root>'
        raise ConfigurationError(f"Invalid configuration at '{path}': {error.message}")
    return config


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    result = deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)
    return result


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """Safely load a YAML mapping."""
    with open(path, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file must contain a mapping, got {type(config).__name__}")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    for dotted, env_var in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is None:
            continue

        section, key = dotted.split('.')
        if dotted == 'query.timeout':
            try:
                value = float(value)
            except ValueError:
                raise ConfigurationError(f"{env_var} must be a number, got {value!r}") from None
        config.setdefault(section, {})[key] = value


def load_config(path: Optional[Union[str, Path]] = None,
                overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Defaults are merged with the YAML file (if given), then with `overrides`,
    then with environment variables, and the result is validated.

    Args:
        path: Optional YAML configuration file
        overrides: Optional dictionary merged last before the environment

    Returns:
        Validated configuration dictionary
    """
    config = get_littleorm_config()

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            config = _deep_merge(config, _load_yaml_file(path))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {path}: {e}") from e

    if overrides:
        config = _deep_merge(config, overrides)

    _apply_env_overrides(config)
    return validate_config(config)
