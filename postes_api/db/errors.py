"""
Persistence error wrapper.

Raw driver / SQLAlchemy errors are turned into a :class:`PersistenceError`
carrying a :class:`PersistenceErrorKind`, so the HTTP layer never inspects
provider-specific error codes.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation (PostgreSQL / asyncpg)
_UNIQUE_VIOLATION = "23505"


class PersistenceErrorKind(str, enum.Enum):
    DUPLICATE_KEY = "duplicate_key"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class PersistenceError(Exception):
    def __init__(
        self,
        kind: PersistenceErrorKind,
        entity: str | None = None,
        original: Exception | None = None,
    ) -> None:
        self.kind = kind
        self.entity = entity
        self.original = original
        super().__init__(f"{kind.value}: {original}" if original else kind.value)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == _UNIQUE_VIOLATION:
        return True
    text = str(orig).lower()
    return "unique" in text or "duplicate" in text


def classify(exc: SQLAlchemyError) -> PersistenceErrorKind:
    """Map a SQLAlchemy exception onto a :class:`PersistenceErrorKind`."""
    if isinstance(exc, IntegrityError) and _is_unique_violation(exc):
        return PersistenceErrorKind.DUPLICATE_KEY
    if isinstance(exc, NoResultFound):
        return PersistenceErrorKind.NOT_FOUND
    return PersistenceErrorKind.UNKNOWN


@asynccontextmanager
async def persistence_guard(
    session: AsyncSession, entity: str | None = None
) -> AsyncIterator[AsyncSession]:
    """Run a unit of work; on database failure roll back and raise ``PersistenceError``."""
    try:
        yield session
    except SQLAlchemyError as exc:
        await session.rollback()
        kind = classify(exc)
        logger.warning("Persistence failure (%s) on %s: %s", kind.value, entity or "record", exc)
        raise PersistenceError(kind, entity, exc) from exc
