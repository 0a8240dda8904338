"""
Conflict-aware inserts shared by the repositories.

Uniqueness constraints are the only concurrency control in the core, so every
"create if absent" goes through ``INSERT ... ON CONFLICT`` instead of a
read-then-write.
"""

from typing import Any, Dict, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from jornada.core.exceptions import ConfigurationError


def dialect_insert(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise ConfigurationError(
        f"Unsupported database dialect: {dialect}", {"dialect": dialect}, code="unsupported_dialect"
    )


async def insert_ignore(session: AsyncSession, model, values: Dict[str, Any]) -> bool:
    """Insert a row unless a unique constraint already holds it.

    Returns:
        True when a new row was written, False when the conflict was swallowed.
    """
    stmt = dialect_insert(session, model).values(**values).on_conflict_do_nothing()
    res = await session.execute(stmt)
    return bool(res.rowcount)


async def upsert(
    session: AsyncSession,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
    update_fields: Iterable[str],
) -> None:
    """Insert or overwrite `update_fields` on conflict (last write wins)."""
    stmt = dialect_insert(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={name: stmt.excluded[name] for name in update_fields},
    )
    await session.execute(stmt)
