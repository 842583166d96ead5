"""Persistence of the collections purged by the cascade executor.

``CollectionStore`` exposes the two row operations a deletion plan needs.
Table and column names come from deletion plans, never from callers, and
are validated as plain identifiers before use.
"""

import asyncio
import re
from collections import defaultdict
from typing import Any, Protocol

from sqlalchemy import column, delete, table, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid collection or column name: {name!r}")
    return name


class CollectionStore(Protocol):
    """Protocol for purge-target storage."""

    async def delete_rows(self, collection: str, subject_column: str, subject_id: str) -> int:
        """Delete rows whose ``subject_column`` equals ``subject_id``.

        Returns:
            Number of rows deleted
        """
        ...

    async def anonymize_rows(
        self,
        collection: str,
        subject_column: str,
        subject_id: str,
        replacements: dict[str, Any],
    ) -> int:
        """Overwrite columns of rows whose ``subject_column`` equals ``subject_id``.

        Returns:
            Number of rows updated
        """
        ...


class InMemoryCollectionStore:
    """In-memory collections of row dicts.

    Used by tests and the in-memory backend. ``fail_on`` makes operations
    on the named collections raise, for exercising partial failure.
    """

    def __init__(self, rows: dict[str, list[dict[str, Any]]] | None = None):
        self.rows: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for name, items in (rows or {}).items():
            self.rows[name] = [dict(item) for item in items]
        self.fail_on: dict[str, Exception] = {}
        self._lock = asyncio.Lock()

    def insert(self, collection: str, *items: dict[str, Any]) -> None:
        self.rows[_check_identifier(collection)].extend(dict(item) for item in items)

    def count(self, collection: str, subject_column: str | None = None, value: Any = None) -> int:
        items = self.rows.get(collection, [])
        if subject_column is None:
            return len(items)
        return sum(1 for item in items if item.get(subject_column) == value)

    async def delete_rows(self, collection: str, subject_column: str, subject_id: str) -> int:
        self._raise_if_failing(collection)
        async with self._lock:
            items = self.rows.get(collection, [])
            kept = [item for item in items if item.get(subject_column) != subject_id]
            self.rows[collection] = kept
            return len(items) - len(kept)

    async def anonymize_rows(
        self,
        collection: str,
        subject_column: str,
        subject_id: str,
        replacements: dict[str, Any],
    ) -> int:
        self._raise_if_failing(collection)
        async with self._lock:
            affected = 0
            for item in self.rows.get(collection, []):
                if item.get(subject_column) == subject_id:
                    item.update(replacements)
                    affected += 1
            return affected

    def _raise_if_failing(self, collection: str) -> None:
        error = self.fail_on.get(collection)
        if error is not None:
            raise error


class SqlCollectionStore:
    """SQLAlchemy Core implementation of CollectionStore.

    Each operation runs in its own transaction so a failure in one
    collection never rolls back another.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def delete_rows(self, collection: str, subject_column: str, subject_id: str) -> int:
        target = table(_check_identifier(collection), column(_check_identifier(subject_column)))
        stmt = delete(target).where(target.c[subject_column] == subject_id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def anonymize_rows(
        self,
        collection: str,
        subject_column: str,
        subject_id: str,
        replacements: dict[str, Any],
    ) -> int:
        if not replacements:
            return 0

        columns = {_check_identifier(subject_column), *map(_check_identifier, replacements)}
        target = table(_check_identifier(collection), *(column(name) for name in columns))
        stmt = (
            update(target)
            .where(target.c[subject_column] == subject_id)
            .values({target.c[name]: value for name, value in replacements.items()})
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount
