# tests/test_completion.py
from __future__ import annotations

import asyncio

from core.completion import CompletionTracker, completion_key
from services.cache_store import CacheStore
from services.kv_store import CHECKED_MEALS_KEY, MemoryKeyValueStore


def _tracker(initial=None) -> CompletionTracker:
    return CompletionTracker(CacheStore(MemoryKeyValueStore(initial), ttl_ms=1_000))


def test_completion_key_shape(plan):
    assert completion_key(plan.meals[1]) == "Lunch:1:d1-lunch-1"


def test_mark_is_idempotent_and_unmark_clears():
    tracker = _tracker()

    async def scenario():
        await tracker.mark_complete("Lunch:1:d1-lunch-1")
        await tracker.mark_complete("Lunch:1:d1-lunch-1")
        before = await tracker.ledger()
        await tracker.unmark("Lunch:1:d1-lunch-1")
        return before, await tracker.is_complete("Lunch:1:d1-lunch-1")

    before, after = asyncio.run(scenario())
    assert before == {"Lunch:1:d1-lunch-1": True}
    assert after is False


def test_unreadable_ledger_starts_empty():
    tracker = _tracker({CHECKED_MEALS_KEY: "[oops"})
    assert asyncio.run(tracker.ledger()) == {}
    asyncio.run(tracker.mark_complete("k"))
    assert asyncio.run(tracker.ledger()) == {"k": True}


def test_reset():
    tracker = _tracker({CHECKED_MEALS_KEY: '{"k": true}'})
    asyncio.run(tracker.reset())
    assert asyncio.run(tracker.is_complete("k")) is False
