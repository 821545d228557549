"""
services/kv_store.py
────────────────────────────────────────────────────────────────────────
* On-device key-value store the cache and the completion ledger live in
* Async SQLAlchemy v2 implementation (sqlite+aiosqlite by default)
* In-memory implementation for tests and throw-away sessions

Reads and writes are whole-value: callers serialize a complete JSON
document per key; partial updates happen in memory before re-writing.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import DateTime, String, Text, delete, func
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from config import settings

# ───────── storage keys ──────────────────────────────────────────────
MEAL_PLAN_KEY = "mealPlan"
MEAL_PLAN_TIMESTAMP_KEY = "mealPlanTimestamp"
CHECKED_MEALS_KEY = "checkedMeals"


class KeyValueStore(ABC):
    @abstractmethod
    async def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def remove_item(self, key: str) -> None: ...

    async def multi_remove(self, *keys: str) -> None:
        for key in keys:
            await self.remove_item(key)


# ───────── in-memory ─────────────────────────────────────────────────
class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


# ───────── declarative base ──────────────────────────────────────────
Base = declarative_base(cls=AsyncAttrs)


class KeyValueItem(Base):
    __tablename__ = "kv_items"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# ───────── SQL-backed ────────────────────────────────────────────────
class SqlKeyValueStore(KeyValueStore):
    def __init__(self, url: str | None = None, engine: AsyncEngine | None = None) -> None:
        self._url = url or settings.store_url
        self._engine = engine
        self._sessions: async_sessionmaker[AsyncSession] | None = None
        self._init_lock: asyncio.Lock | None = None

    async def _session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is not None:
            return self._sessions
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._sessions is None:
                if self._engine is None:
                    self._engine = create_async_engine(self._url, pool_pre_ping=True)
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
                self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        return self._sessions

    async def get_item(self, key: str) -> str | None:
        sessions = await self._session_factory()
        async with sessions() as db:
            row = await db.get(KeyValueItem, key)
            return row.value if row else None

    async def set_item(self, key: str, value: str) -> None:
        sessions = await self._session_factory()
        async with sessions() as db:
            await db.merge(KeyValueItem(key=key, value=value))
            await db.commit()

    async def remove_item(self, key: str) -> None:
        await self.multi_remove(key)

    async def multi_remove(self, *keys: str) -> None:
        sessions = await self._session_factory()
        async with sessions() as db:
            await db.execute(delete(KeyValueItem).where(KeyValueItem.key.in_(keys)))
            await db.commit()

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None
