import psycopg
from contextlib import contextmanager

from config import get_settings


@contextmanager
def get_conn(dsn=None):
    """
    simple context manager to get a Postgres connection.
    autocommit is disabled so we can manage transactions explicitly.
    dsn defaults to IB_DATABASE_DSN.
    """
    with psycopg.connect(dsn or get_settings().DATABASE_DSN) as conn:
        conn.autocommit = False
        yield conn
