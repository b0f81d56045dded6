from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from prdbuilder.errors import PersistenceError
from prdbuilder.extensions import db

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert(
    model,
    values: Dict[str, Any],
    *,
    conflict_on: Iterable[str],
    update: Optional[Callable[[Any], Dict[str, Any]]] = None,
) -> None:
    """
    INSERT ... ON CONFLICT (conflict_on) DO UPDATE SET ...

    `update` receives the EXCLUDED row and returns column -> expression; by
    default every non-key column in `values` is overwritten from EXCLUDED.
    Concurrent writers converge on the unique key (last writer wins) without
    any in-process locking. Does not commit.
    """
    dialect = db.session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise PersistenceError(f"Upsert is not supported on {dialect!r}")

    keys = tuple(conflict_on)
    stmt = insert(model.__table__).values(**values)
    if update is None:
        set_ = {col: stmt.excluded[col] for col in values if col not in keys}
    else:
        set_ = update(stmt.excluded)
    stmt = stmt.on_conflict_do_update(index_elements=list(keys), set_=set_)
    try:
        db.session.execute(stmt)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(
            f"Database error while writing {model.__tablename__}.",
            original_error=exc,
        ) from exc


def execute(stmt, action: str):
    try:
        return db.session.execute(stmt)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(f"Database error while trying to {action}.", original_error=exc) from exc


def commit(action: str) -> None:
    """Commit the session; datastore failures roll back and surface as PersistenceError."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(
            f"Database error while trying to {action}. Please try again or contact support.",
            original_error=exc,
        ) from exc
