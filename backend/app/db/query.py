"""Small query helpers shared by the store services.

- dialect_insert: an INSERT construct that supports ``on_conflict_do_update``
  for the dialect the session is bound to
- apply_pagination: adds OFFSET/LIMIT
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel.ext.asyncio.session import AsyncSession

MAX_PAGE_SIZE = 100

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def dialect_insert(session: AsyncSession, model: Any):
    """Return a dialect specific ``insert(model)`` with upsert support.

    Raises :class:`ValueError` for dialects without ``ON CONFLICT``.
    """
    dialect_name = session.get_bind().dialect.name
    factory = _UPSERT_INSERTS.get(dialect_name)
    if factory is None:
        raise ValueError(f"Upserts are not supported for dialect {dialect_name!r}")
    return factory(model)


def apply_pagination(stmt: Select, *, limit: int, offset: int = 0) -> Select:
    """Clamp ``limit`` to ``MAX_PAGE_SIZE`` and ``offset`` to zero or more."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    return stmt.offset(offset).limit(limit)
