"""
Database engine configuration and creation
"""

from typing import Dict, Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.pool import StaticPool
import logging

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DRIVERS = {
    'sqlite': 'sqlite+pysqlite',
    'duckdb': 'duckdb',
    'mysql': 'mysql+pymysql',
    'postgresql': 'postgresql+psycopg2',
}

DEFAULT_PORTS = {
    'mysql': 3306,
    'postgresql': 5432,
}


def build_url(connection_params: Dict[str, Any]):
    """
    Build a SQLAlchemy URL from connection parameters

    Args:
        connection_params: The `connection` section of the configuration

    Returns:
        URL string or sqlalchemy URL object
    """
    if connection_params.get('url'):
        return connection_params['url']

    db_type = connection_params.get('db_type', 'sqlite')
    if db_type not in DRIVERS:
        raise ConfigurationError(f"Unsupported database type: {db_type}")

    if db_type in ('sqlite', 'duckdb'):
        database = connection_params.get('database') or ':memory:'
        return f"{DRIVERS[db_type]}:///{database}"

    return URL.create(
        DRIVERS[db_type],
        username=connection_params.get('user'),
        password=connection_params.get('password'),
        host=connection_params.get('host') or 'localhost',
        port=connection_params.get('port') or DEFAULT_PORTS[db_type],
        database=connection_params.get('database'),
    )


def get_engine(connection_params: Dict[str, Any]) -> Engine:
    """
    Create SQLAlchemy engine from connection parameters

    Statements run on worker threads, so SQLite connections are opened with
    `check_same_thread=False`; in-memory SQLite shares one connection.

    Args:
        connection_params: The `connection` section of the configuration

    Returns:
        SQLAlchemy Engine instance
    """
    url = make_url(build_url(connection_params))
    engine_args = dict(connection_params.get('engine_args') or {})

    if url.get_backend_name() == 'sqlite':
        connect_args = dict(engine_args.get('connect_args') or {})
        connect_args.setdefault('check_same_thread', False)
        engine_args['connect_args'] = connect_args
        if url.database in (None, '', ':memory:'):
            engine_args.setdefault('poolclass', StaticPool)
    else:
        engine_args.setdefault('pool_pre_ping', True)

    engine_args.setdefault('echo', False)

    engine = create_engine(url, **engine_args)
    logger.info(f"Created {engine.dialect.name} engine: {engine.url.render_as_string(hide_password=True)}")
    return engine
