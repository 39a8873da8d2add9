import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import wraps
from typing import Any

import pandas as pd
import pyarrow as pa

from libb import ConfigOptions

__all__ = [
    'ConnectionOptions',
    'parse_dsn',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
    'use_iterdict_data_loader',
]

# connection string key -> option field
DSN_KEYS = {
    'AWS_REGION': 'region',
    'AWS_ACCESS_KEY_ID': 'aws_access_key_id',
    'AWS_SECRET_ACCESS_KEY': 'aws_secret_access_key',
    'ENDPOINT': 'endpoint',
}

# option field -> environment fallbacks, first non-empty wins
ENV_FALLBACKS = {
    'region': ('AWS_REGION', 'AWS_DEFAULT_REGION'),
    'aws_access_key_id': ('AWS_ACCESS_KEY_ID', 'AWS_ACCESS_KEY'),
    'aws_secret_access_key': ('AWS_SECRET_KEY', 'AWS_SECRET_ACCESS_KEY'),
}


def use_iterdict_data_loader(func):
    """Temporarily use default dict loader over user-specified loader"""

    @wraps(func)
    def inner(*args, **kwargs):
        cn = args[0]

        original_data_loader = cn.options.data_loader
        cn.options.data_loader = iterdict_data_loader

        try:
            return func(*args, **kwargs)
        finally:
            cn.options.data_loader = original_data_loader

    return inner


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.
    """
    if not data:
        return []
    return list(data)


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, with columns preserved for empty results.
    """
    if not data:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(list(data), columns=list(columns) or None)


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, with columns preserved for empty results.
    """
    if not data:
        return pd.DataFrame(columns=list(columns))

    column_names = list(columns) or sorted({k for row in data for k in row})
    columns_data = [[row.get(col) for row in data] for col in column_names]
    return pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)


def parse_dsn(dsn: str) -> dict[str, str]:
    """Parse a `KEY=value;KEY=value` connection string into option fields.

    Keys are case-insensitive. Pairs without `=`, with a blank key or with
    a blank value are skipped, as are unknown keys.

    >>> parse_dsn('aws_region=us-east-1; ENDPOINT=http://localhost:8000;;')
    {'region': 'us-east-1', 'endpoint': 'http://localhost:8000'}
    """
    params = {}
    for pair in dsn.split(';'):
        key, sep, value = pair.strip().partition('=')
        key, value = key.strip().upper(), value.strip()
        if not sep or not key or not value:
            continue
        if key in DSN_KEYS:
            params[DSN_KEYS[key]] = value
    return params


def _from_env(names: Sequence[str]) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


@dataclass
class ConnectionOptions(ConfigOptions):
    """Options

    Unset credentials and region fall back to the environment.

    - endpoint: custom endpoint URL; `http://` endpoints disable TLS
    - client: pre-built low-level client, used instead of building one
    - commit_timeout: seconds `commit()` waits for the transaction worker,
      None waits indefinitely
    """
    region: str = None
    aws_access_key_id: str = None
    aws_secret_access_key: str = None
    endpoint: str = None
    client: Any = None
    data_loader: Callable[..., Any] | None = None
    commit_timeout: float | None = None

    def __post_init__(self):
        for name, env_names in ENV_FALLBACKS.items():
            if not getattr(self, name):
                setattr(self, name, _from_env(env_names))
        if self.commit_timeout is not None and self.commit_timeout < 0:
            raise ValueError('commit_timeout must be non-negative')
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    @classmethod
    def from_dsn(cls, dsn: str, **kw: Any) -> 'ConnectionOptions':
        """Build options from a connection string, `kw` overriding it."""
        return cls(**(parse_dsn(dsn) | kw))
