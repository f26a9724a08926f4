"""
Configuration management.

This module handles littleorm configuration:
- Connection, query, pool and logging defaults
- YAML and environment overrides with schema validation
- Logging setup
"""

from .db_config import get_littleorm_config, validate_config, load_config, LITTLEORM_CONFIG
from .logging_config import setup_orm_logging, OrmLoggerAdapter

__all__ = [
    'get_littleorm_config',
    'validate_config',
    'load_config',
    'LITTLEORM_CONFIG',
    'setup_orm_logging',
    'OrmLoggerAdapter',
]
