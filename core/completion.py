"""
core/completion.py
────────────────────────────────────────────────────────────────────────
Completion ledger: which plan slots the client has ticked off / logged.

Stored under its own key next to the cached plan, so ticking a meal
never rewrites the plan.  `CacheStore.put` clears it (new plan, fresh
ledger); `CacheStore.patch_recipe` does not (a swap keeps the tick).
"""
from __future__ import annotations

import json
import logging

from core.models.plan import Meal
from services.cache_store import CacheStore
from services.kv_store import CHECKED_MEALS_KEY

_LOG = logging.getLogger(__name__)


def completion_key(meal: Meal) -> str:
    return f"{meal.meal_type.value}:{meal.day_number}:{meal.instance_id}"


class CompletionTracker:
    def __init__(self, cache: CacheStore) -> None:
        self._kv = cache.kv

    async def ledger(self) -> dict[str, bool]:
        raw = await self._kv.get_item(CHECKED_MEALS_KEY)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            _LOG.warning("completion ledger unreadable; starting empty")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    async def is_complete(self, key: str) -> bool:
        return (await self.ledger()).get(key, False)

    async def mark_complete(self, key: str) -> None:
        ledger = await self.ledger()
        if ledger.get(key):
            return
        ledger[key] = True
        await self._write(ledger)

    async def unmark(self, key: str) -> None:
        ledger = await self.ledger()
        if ledger.pop(key, None) is not None:
            await self._write(ledger)

    async def reset(self) -> None:
        await self._write({})

    async def _write(self, ledger: dict[str, bool]) -> None:
        await self._kv.set_item(CHECKED_MEALS_KEY, json.dumps(ledger))
