"""
Async SQLAlchemy engine & session factory.

The engine is owned by a :class:`Database` instance built at application
startup and disposed on shutdown; request handlers receive sessions through
the ``get_db`` dependency.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession,
                                    async_sessionmaker, create_async_engine)

from postes_api.db.base import Base


def _engine_args(url: str) -> dict[str, Any]:
    engine_args: dict[str, Any] = {
        "echo": False,
        "pool_pre_ping": True,
    }
    if "postgresql" in url:
        engine_args.update(
            {
                "pool_size": 20,
                "max_overflow": 10,
                "pool_recycle": 300,
            }
        )
    return engine_args


class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **{**_engine_args(url), **engine_kwargs})
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
