"""
core/reconciliation.py
────────────────────────────────────────────────────────────────────────
One controller per plan context (client), shared by every screen that
shows that client's plan.

State machine

    IDLE ──fetch──▶ FETCHING ──▶ READY(plan)
                        │
                        └──────▶ ERROR(reason)      only when nothing is cached

    READY ──swap──▶ FETCHING ──▶ READY(patched | unchanged)

* fetch-or-use-cache: a valid cache entry skips the network entirely.
* concurrent fetch triggers share one in-flight task; a screen that goes
  away mid-fetch detaches, the task still finishes and writes the cache.
* load failures fall back to the stored plan (even if expired) and only
  surface ERROR when there is none.  Nothing is retried automatically.
* swaps and loads run one at a time, never interleaved.
* a confirmed swap patches the cache in place and raises the shared
  `DirtySignal`; the next screen to gain focus consumes it and re-runs
  fetch-or-use-cache.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from core.aggregator import (
    DailyNutrition,
    DailyProgress,
    MacroPercentages,
    compute_daily_nutrition,
    compute_daily_progress,
    compute_macro_percentages,
    group_by_day,
    group_by_type,
)
from core.completion import CompletionTracker, completion_key
from core.errors import (
    MealPlanError,
    NetworkError,
    NormalizationError,
    PermissionDenied,
    PlanValidationError,
    SwapRejected,
)
from core.models.plan import Meal, MealPlan, MealType, validate_meal_plan
from core.models.recipe import Recipe
from core.normalizer import NormalizeContext, normalize, normalize_recipe
from services.cache_store import CacheStore
from services.mealplan_api import MealPlanApi, build_food_log_entry

_LOG = logging.getLogger(__name__)

LOAD_FAILED = "could not load/generate a plan"
SWAP_FAILED = "could not swap this meal"
LOG_FAILED = "could not log this meal"


class ControllerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    ERROR = "error"


class DirtySignal:
    """'Something changed since you last rendered', read-then-clear."""

    def __init__(self) -> None:
        self._dirty = False

    def set(self) -> None:
        self._dirty = True

    def is_set(self) -> bool:
        return self._dirty

    def consume(self) -> bool:
        was_dirty, self._dirty = self._dirty, False
        return was_dirty


@dataclass(frozen=True)
class ClientPermissions:
    """What the nutritionist lets this client do from the plan screens."""

    regenerate_meals: bool = True      # swap to alternates
    allow_food_logging: bool = True


@dataclass(frozen=True)
class PlanContext:
    client_id: str
    user_id: str | None = None            # defaults to client_id
    nutritionist_id: str | None = None
    dietary_preferences: tuple[str, ...] = ()
    health_labels: tuple[str, ...] = ()
    permissions: ClientPermissions = field(default_factory=ClientPermissions)

    @property
    def owner_id(self) -> str:
        return self.user_id or self.client_id


@dataclass(frozen=True)
class PlanSnapshot:
    state: ControllerState
    plan: MealPlan | None = None
    grouped_by_day: dict[int, dict[MealType, list[Meal]]] = field(default_factory=dict)
    grouped_by_type: dict[MealType, list[Meal]] = field(default_factory=dict)
    macro_percentages: MacroPercentages | None = None
    daily_progress: DailyProgress | None = None
    daily_nutrition: DailyNutrition | None = None
    selected_day: int | None = None
    stale: bool = False
    error: str | None = None


Listener = Callable[[PlanSnapshot], None]


class ReconciliationController:
    def __init__(
        self,
        context: PlanContext,
        api: MealPlanApi,
        cache: CacheStore,
        tracker: CompletionTracker | None = None,
        dirty: DirtySignal | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._ctx = context
        self._api = api
        self._cache = cache
        self._tracker = tracker or CompletionTracker(cache)
        self.dirty = dirty or DirtySignal()
        self._today = today

        self._state = ControllerState.IDLE
        self._plan: MealPlan | None = None
        self._ledger: dict[str, bool] = {}
        self._selected_day: int | None = None
        self._stale = False
        self._error: str | None = None
        self.last_error: MealPlanError | None = None

        self._inflight: asyncio.Task[PlanSnapshot] | None = None
        self._inflight_regenerates = False
        self._swap_task: asyncio.Task[bool] | None = None
        self._listeners: list[Listener] = []

    # ─────────────────────────────── screens ──────────────────────── #
    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def plan(self) -> MealPlan | None:
        return self._plan

    def attach(self, listener: Listener) -> Callable[[], None]:
        """Register a screen; returns the teardown callable."""
        self._listeners.append(listener)
        listener(self.snapshot())

        def detach() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return detach

    def snapshot(self) -> PlanSnapshot:
        plan = self._plan
        if plan is None:
            return PlanSnapshot(state=self._state, error=self._error)
        day = self._selected_day
        day_meals = plan.meals_for_day(day) if day else []
        return PlanSnapshot(
            state=self._state,
            plan=plan,
            grouped_by_day=group_by_day(plan),
            grouped_by_type=group_by_type(plan),
            macro_percentages=compute_macro_percentages(plan.macro_targets),
            daily_progress=compute_daily_progress(self._ledger, day_meals),
            daily_nutrition=compute_daily_nutrition(day_meals, plan.macro_targets.goal_calories),
            selected_day=day,
            stale=self._stale,
            error=self._error,
        )

    def _publish(self) -> PlanSnapshot:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:  # noqa: BLE001
                _LOG.exception("screen listener failed")
        return snap

    def _enter(self, state: ControllerState) -> PlanSnapshot:
        self._state = state
        return self._publish()

    # ─────────────────────────────── loading ──────────────────────── #
    async def trigger_fetch(self) -> PlanSnapshot:
        return await self._single_flight(regenerate=False)

    async def trigger_regenerate(self) -> PlanSnapshot:
        """Ask the backend for a brand-new plan; the old one stays until it lands."""
        return await self._single_flight(regenerate=True)

    async def on_focus(self) -> PlanSnapshot:
        if self.consume_dirty_signal() or self._state is ControllerState.IDLE:
            return await self.trigger_fetch()
        return self.snapshot()

    def consume_dirty_signal(self) -> bool:
        return self.dirty.consume()

    async def _single_flight(self, regenerate: bool) -> PlanSnapshot:
        while True:
            load, swap = self._inflight, self._swap_task
            if load is not None and not load.done():
                if self._inflight_regenerates or not regenerate:
                    _LOG.debug("joining in-flight plan load for %s", self._ctx.client_id)
                    return await asyncio.shield(load)
                # a plain fetch is running: let it land, then regenerate
                await asyncio.wait([load])
            elif swap is not None and not swap.done():
                _LOG.debug("plan load for %s waits for a pending swap", self._ctx.client_id)
                await asyncio.wait([swap])
            else:
                break

        self._inflight_regenerates = regenerate
        self._inflight = asyncio.create_task(self._load(regenerate))
        return await asyncio.shield(self._inflight)

    async def _load(self, regenerate: bool) -> PlanSnapshot:
        self._enter(ControllerState.FETCHING)

        if not regenerate:
            entry = await self._cache.get()
            if entry is not None:
                _LOG.info("using cached plan %s", entry.meal_plan.plan_id)
                return await self._ready(entry.meal_plan)

        try:
            if regenerate:
                raw = await self._api.generate_plan(
                    self._ctx.owner_id,
                    self._ctx.dietary_preferences,
                    self._ctx.health_labels,
                    nutritionist_id=self._ctx.nutritionist_id,
                )
            else:
                raw = await self._api.fetch_plan(self._ctx.client_id)
            context = NormalizeContext(start_date=self._today(), schema_version=self._cache.schema_version)
            plan = validate_meal_plan(normalize(raw, context))
        except (NetworkError, NormalizationError, PlanValidationError) as exc:
            return await self._load_failed(exc)

        await self._cache.put(plan)
        _LOG.info("loaded plan %s from the backend (%d meals)", plan.plan_id, len(plan.meals))
        return await self._ready(plan)

    async def _load_failed(self, exc: MealPlanError) -> PlanSnapshot:
        self.last_error = exc
        stored = await self._cache.peek()
        fallback = stored.meal_plan if stored is not None else self._plan
        if fallback is not None:
            _LOG.warning("plan load failed (%s); serving stale plan %s", exc, fallback.plan_id)
            return await self._ready(fallback, stale=True)

        _LOG.error("plan load failed and nothing is cached: %s", exc)
        self._plan = None
        self._error = LOAD_FAILED
        return self._enter(ControllerState.ERROR)

    async def _ready(self, plan: MealPlan, stale: bool = False) -> PlanSnapshot:
        self._plan = plan
        self._stale = stale
        self._error = None
        self._ledger = await self._tracker.ledger()
        self._selected_day = self._clamp_day(self._selected_day or self._today_in_plan(plan), plan)
        return self._enter(ControllerState.READY)

    # ─────────────────────────────── days ─────────────────────────── #
    def select_day(self, day_number: int) -> PlanSnapshot:
        if self._plan is not None:
            self._selected_day = self._clamp_day(day_number, self._plan)
        return self._publish()

    def _today_in_plan(self, plan: MealPlan) -> int:
        return (self._today() - plan.start_date).days + 1

    @staticmethod
    def _clamp_day(day_number: int, plan: MealPlan) -> int:
        return min(max(day_number, 1), max(plan.total_days, 1))

    # ─────────────────────────────── swap ─────────────────────────── #
    async def trigger_swap(self, instance_id: str, new_recipe: Recipe | Mapping[str, Any]) -> bool:
        """Replace one slot's recipe; True only once the backend confirmed it.

        Swaps and plan loads never overlap: a swap waits for the load in
        flight, and a load started meanwhile waits for the swap.
        """
        while True:
            pending = [t for t in (self._inflight, self._swap_task) if t is not None and not t.done()]
            if not pending:
                break
            await asyncio.wait(pending)

        self._swap_task = asyncio.create_task(self._swap(instance_id, new_recipe))
        return await asyncio.shield(self._swap_task)

    async def _swap(self, instance_id: str, new_recipe: Recipe | Mapping[str, Any]) -> bool:
        prior = self._plan
        if self._state is not ControllerState.READY or prior is None:
            _LOG.warning("swap of %s requested while %s; ignored", instance_id, self._state.value)
            self.last_error = SwapRejected("no plan is loaded")
            return False

        if not self._ctx.permissions.regenerate_meals:
            _LOG.warning("client %s may not swap meals; %s left alone", self._ctx.client_id, instance_id)
            return self._refuse(PermissionDenied("swapping meals is turned off for this client"), SWAP_FAILED)

        meal = prior.find_meal(instance_id)
        recipe = new_recipe if isinstance(new_recipe, Recipe) else normalize_recipe(new_recipe)
        if meal is None or recipe is None:
            return self._refuse(SwapRejected(f"cannot swap slot {instance_id}"), SWAP_FAILED)

        self._enter(ControllerState.FETCHING)
        try:
            await self._api.swap_meal(
                self._ctx.owner_id,
                meal.recipe.id,
                recipe,
                meal.meal_type,
                nutritionist_id=self._ctx.nutritionist_id,
            )
        except (SwapRejected, NetworkError) as exc:
            _LOG.warning("swap of %s failed: %s", instance_id, exc)
            self.last_error = exc
            self._plan = prior
            self._error = SWAP_FAILED
            self._enter(ControllerState.READY)
            return False

        if self._plan is None or self._plan.plan_id != prior.plan_id:
            _LOG.warning("plan changed while swapping %s; confirmed swap not applied", instance_id)
            self.last_error = SwapRejected("plan changed while swapping")
            self._error = SWAP_FAILED
            self._enter(ControllerState.READY)
            return False

        if not await self._cache.patch_recipe(instance_id, recipe, plan_id=prior.plan_id):
            _LOG.warning("slot %s not patched in the cache; only the in-memory plan changed", instance_id)
        self._plan = prior.with_recipe(instance_id, recipe)
        self._error = None
        self.dirty.set()
        _LOG.info("swapped %s: %s → %s", instance_id, meal.recipe.id, recipe.id)
        self._enter(ControllerState.READY)
        return True

    def _refuse(self, exc: MealPlanError, reason: str) -> bool:
        self.last_error = exc
        self._error = reason
        self._publish()
        return False

    # ─────────────────────────────── completion ───────────────────── #
    async def mark_complete(self, key: str) -> PlanSnapshot:
        await self._tracker.mark_complete(key)
        self._ledger = await self._tracker.ledger()
        return self._publish()

    async def unmark_complete(self, key: str) -> PlanSnapshot:
        await self._tracker.unmark(key)
        self._ledger = await self._tracker.ledger()
        return self._publish()

    async def log_meal(self, instance_id: str) -> bool:
        """Post one serving to the food log, then tick the slot off."""
        meal = self._plan.find_meal(instance_id) if self._plan else None
        if meal is None:
            return False
        if not self._ctx.permissions.allow_food_logging:
            _LOG.warning("client %s may not log food; %s not posted", self._ctx.client_id, instance_id)
            return self._refuse(PermissionDenied("food logging is turned off for this client"), LOG_FAILED)
        try:
            await self._api.log_food(build_food_log_entry(meal, self._ctx.client_id))
        except (NetworkError, NormalizationError) as exc:
            _LOG.warning("food log for %s failed: %s", instance_id, exc)
            return self._refuse(exc, LOG_FAILED)
        await self.mark_complete(completion_key(meal))
        return True
