"""Subject profile lookups used before a deletion request is accepted."""

import asyncio
from typing import Protocol

from sqlalchemy import column, select, table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from letright.core.exceptions import StoreUnavailableError
from letright.erasure.plan import PROFILE_COLLECTIONS
from letright.erasure.types import SubjectType


class SubjectDirectory(Protocol):
    """Answers whether a subject has a profile of the given type."""

    async def subject_exists(self, subject_id: str, subject_type: SubjectType) -> bool: ...


class InMemorySubjectDirectory:
    """Subject directory backed by a set of known ``(subject_type, subject_id)`` pairs."""

    def __init__(self, subjects: dict[SubjectType, set[str]] | None = None):
        self._subjects: dict[SubjectType, set[str]] = {
            subject_type: set(ids) for subject_type, ids in (subjects or {}).items()
        }

    def add(self, subject_id: str, subject_type: SubjectType) -> None:
        self._subjects.setdefault(subject_type, set()).add(subject_id)

    def remove(self, subject_id: str, subject_type: SubjectType) -> None:
        self._subjects.get(subject_type, set()).discard(subject_id)

    async def subject_exists(self, subject_id: str, subject_type: SubjectType) -> bool:
        return subject_id in self._subjects.get(subject_type, set())


class SqlSubjectDirectory:
    """Subject directory reading the profile table of each subject type.

    Lookups are bounded by ``timeout_seconds``. Timeouts and driver errors
    surface as :class:`StoreUnavailableError`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        profile_collections: dict[SubjectType, str] | None = None,
        timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._profiles = profile_collections or PROFILE_COLLECTIONS
        self._timeout = timeout_seconds

    async def subject_exists(self, subject_id: str, subject_type: SubjectType) -> bool:
        profiles = table(self._profiles[subject_type], column("id"))
        stmt = select(profiles.c.id).where(profiles.c.id == subject_id).limit(1)

        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    result = await session.execute(stmt)
                    return result.first() is not None
        except TimeoutError as exc:
            raise StoreUnavailableError(
                "subject_exists", f"timed out after {self._timeout}s"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("subject_exists", str(exc)) from exc
