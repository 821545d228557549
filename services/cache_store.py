"""
services/cache_store.py
────────────────────────────────────────────────────────────────────────
TTL-bound cache of the current normalized plan.

Layout in the key-value store (all values JSON):

    mealPlan            {"schemaVersion": <int>, "plan": <MealPlan>}
    mealPlanTimestamp   <epoch ms of the last put>
    checkedMeals        completion ledger, cleared by every put

An entry is valid iff `now - written < ttl` and its schema version is
the running normalizer's.  Missing, expired, mismatched and corrupt
entries all read back as None: the remedy is the same (refetch).
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

from pydantic import ValidationError

from config import settings
from core.errors import CacheCorrupt
from core.models.plan import CacheEntry, MealPlan
from core.models.recipe import Recipe
from core.normalizer import SCHEMA_VERSION
from services.kv_store import (
    CHECKED_MEALS_KEY,
    MEAL_PLAN_KEY,
    MEAL_PLAN_TIMESTAMP_KEY,
    KeyValueStore,
)

_LOG = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class CacheStore:
    def __init__(
        self,
        kv: KeyValueStore,
        ttl_ms: int | None = None,
        schema_version: int = SCHEMA_VERSION,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.kv = kv
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.cache_ttl_ms
        self.schema_version = schema_version
        self._clock = clock

    # ─────────────────────────────── reads ────────────────────────── #
    async def get(self) -> CacheEntry | None:
        entry = await self.peek()
        if entry is None:
            return None
        age = self._clock() - entry.written_at_epoch_ms
        if age >= self.ttl_ms:
            _LOG.debug("cached plan %s expired (age=%dms)", entry.meal_plan.plan_id, age)
            return None
        return entry

    async def peek(self) -> CacheEntry | None:
        """Stored entry regardless of age; None if missing, corrupt or mismatched."""
        raw_plan = await self.kv.get_item(MEAL_PLAN_KEY)
        raw_ts = await self.kv.get_item(MEAL_PLAN_TIMESTAMP_KEY)
        if raw_plan is None or raw_ts is None:
            return None
        try:
            return self._decode(raw_plan, raw_ts)
        except CacheCorrupt as exc:
            _LOG.warning("ignoring unreadable cache entry: %s", exc)
            return None

    def _decode(self, raw_plan: str, raw_ts: str) -> CacheEntry | None:
        try:
            envelope: Any = json.loads(raw_plan)
            written = json.loads(raw_ts)
        except json.JSONDecodeError as exc:
            raise CacheCorrupt(f"invalid JSON: {exc}") from exc

        if not isinstance(envelope, dict) or isinstance(written, bool) or not isinstance(written, (int, float)):
            raise CacheCorrupt("unexpected cache layout")

        version = envelope.get("schemaVersion")
        if version != self.schema_version:
            _LOG.info("cached plan has schema v%s, expected v%d; ignoring", version, self.schema_version)
            return None

        try:
            plan = MealPlan.model_validate(envelope.get("plan"))
        except ValidationError as exc:
            raise CacheCorrupt(f"stored plan does not match the model ({exc.error_count()} errors)") from exc
        return CacheEntry(meal_plan=plan, written_at_epoch_ms=int(written), schema_version=version)

    # ─────────────────────────────── writes ───────────────────────── #
    async def put(self, plan: MealPlan) -> CacheEntry:
        """Store a new plan, stamp it now and start an empty completion ledger."""
        written = self._clock()
        await self._write_plan(plan)
        await self.kv.set_item(MEAL_PLAN_TIMESTAMP_KEY, json.dumps(written))
        await self.kv.set_item(CHECKED_MEALS_KEY, json.dumps({}))
        _LOG.info("cached plan %s (%d meals)", plan.plan_id, len(plan.meals))
        return CacheEntry(meal_plan=plan, written_at_epoch_ms=written, schema_version=self.schema_version)

    async def invalidate(self) -> None:
        await self.kv.multi_remove(MEAL_PLAN_KEY, MEAL_PLAN_TIMESTAMP_KEY)
        _LOG.info("cache invalidated")

    async def patch_recipe(self, instance_id: str, recipe: Recipe, plan_id: str | None = None) -> bool:
        """
        Swap one slot's recipe in place.

        The timestamp and the completion ledger are left alone, so a swap
        neither extends the TTL nor un-checks the day's meals.  With
        `plan_id`, nothing is written unless the stored plan is that plan.
        """
        entry = await self.peek()
        if entry is None:
            return False
        if plan_id is not None and entry.meal_plan.plan_id != plan_id:
            _LOG.warning("cached plan is %s, not %s; slot %s left alone", entry.meal_plan.plan_id, plan_id, instance_id)
            return False
        patched = entry.meal_plan.with_recipe(instance_id, recipe)
        if patched is None:
            return False
        await self._write_plan(patched)
        _LOG.info("patched slot %s → recipe %s", instance_id, recipe.id)
        return True

    async def _write_plan(self, plan: MealPlan) -> None:
        envelope = {"schemaVersion": self.schema_version, "plan": plan.model_dump(mode="json")}
        await self.kv.set_item(MEAL_PLAN_KEY, json.dumps(envelope))
