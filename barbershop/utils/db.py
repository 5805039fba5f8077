"""
Dialect-aware write helpers.

Race-sensitive writes are expressed as single SQL statements so concurrent
requests serialize in the database, not in Python.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterable

from sqlalchemy.dialects import mysql, postgresql, sqlite

from ..extensions import db


@contextmanager
def unit_of_work():
    """Commit on success, roll back and re-raise on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _dialect_name() -> str:
    return db.session.get_bind().dialect.name


def insert_or_update(model, values: Dict[str, Any], conflict_cols: Iterable[str], set_: Dict[str, Any]):
    """INSERT ... ON CONFLICT/DUPLICATE KEY UPDATE. ``set_`` may hold SQL expressions."""
    name = _dialect_name()
    if name == "mysql":
        stmt = mysql.insert(model).values(**values).on_duplicate_key_update(**set_)
    elif name == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_update(
            index_elements=list(conflict_cols), set_=set_
        )
    else:
        stmt = sqlite.insert(model).values(**values).on_conflict_do_update(
            index_elements=list(conflict_cols), set_=set_
        )
    return db.session.execute(stmt)


def insert_ignore(model, values: Dict[str, Any], conflict_cols: Iterable[str]):
    """Insert unless a row with the same unique key already exists."""
    name = _dialect_name()
    if name == "mysql":
        stmt = mysql.insert(model).values(**values).prefix_with("IGNORE")
    elif name == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_cols)
        )
    else:
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(conflict_cols)
        )
    return db.session.execute(stmt)
