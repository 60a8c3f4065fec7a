"""Dialect-aware INSERT ... ON CONFLICT helpers.

SQLite and PostgreSQL both support ON CONFLICT, but SQLAlchemy exposes it
through dialect-specific ``insert`` constructs. These helpers pick the right
one from the session's bind.
"""

from typing import Any

from sqlalchemy import ColumnElement
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session


def _dialect_insert(session: Session, model: type) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"ON CONFLICT upserts are not supported on {dialect}")


def insert_or_ignore(
    session: Session,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
    conflict_where: ColumnElement[bool] | None = None,
) -> str | None:
    """
    Insert a row unless it collides with a unique index.

    Args:
        session: Active session
        model: ORM model class with a string ``id`` primary key
        values: Column values for the new row (must include ``id``)
        conflict_columns: Columns of the unique index to test against
        conflict_where: WHERE clause of a partial unique index, if any

    Returns:
        The new row's id, or None if an existing row won the conflict
    """
    stmt = (
        _dialect_insert(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns, index_where=conflict_where)
        .returning(model.id)
    )
    return session.execute(stmt).scalar_one_or_none()


def upsert(
    session: Session,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: list[str],
) -> None:
    """Insert a row, or overwrite ``update_columns`` on the existing one."""
    stmt = _dialect_insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    session.execute(stmt)
