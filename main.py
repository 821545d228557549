"""
Composition root: wires settings, the on-device store, the HTTP client and
one `ReconciliationController` per plan context.
"""
from __future__ import annotations

import logging

from config import settings
from core.completion import CompletionTracker
from core.reconciliation import DirtySignal, PlanContext, ReconciliationController
from services.cache_store import CacheStore
from services.kv_store import KeyValueStore, SqlKeyValueStore
from services.mealplan_api import MealPlanApi


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)-7s %(name)s │ %(message)s",
    )


def build_controller(
    client_id: str | None = None,
    *,
    kv: KeyValueStore | None = None,
    api: MealPlanApi | None = None,
    dirty: DirtySignal | None = None,
    dietary_preferences: tuple[str, ...] = (),
    health_labels: tuple[str, ...] = (),
) -> ReconciliationController:
    client = client_id or settings.client_id
    if not client:
        raise ValueError("no client id given and MEALPLAN_CLIENT_ID is not set")

    cache = CacheStore(kv or SqlKeyValueStore(settings.store_url))
    context = PlanContext(
        client_id=client,
        user_id=settings.user_id,
        nutritionist_id=settings.nutritionist_id,
        dietary_preferences=dietary_preferences,
        health_labels=health_labels,
    )
    return ReconciliationController(
        context,
        api or MealPlanApi(),
        cache,
        tracker=CompletionTracker(cache),
        dirty=dirty or DirtySignal(),
    )
