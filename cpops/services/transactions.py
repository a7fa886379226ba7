# cpops/services/transactions.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Connection


@contextmanager
def atomic(conn: Connection) -> Iterator[Connection]:
    """
    Join the caller's transaction when one is active (the caller commits or
    rolls back), otherwise open a root tx that commits on success.
    """
    if conn.in_transaction():
        yield conn
        return
    with conn.begin():
        yield conn


def for_update(conn: Connection) -> str:
    """Row-lock suffix for SELECTs; SQLite serialises writers on its own."""
    return "" if conn.dialect.name == "sqlite" else " FOR UPDATE"
