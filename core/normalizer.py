"""
core/normalizer.py
────────────────────────────────────────────────────────────────────────
Turns whatever the meal-plan endpoints return into the canonical
`core.models.plan.MealPlan`.

The single-day planner, the multi-day planner and the client screen all
receive slightly different payloads:

  • bare plan          {"meals": [...], "startDate": ...}
  • server envelope    {"success": true, "mealPlan": {...}, "userProfile": {...}}
  • day-grouped plan   {"mealPlan": [{"day": 1, "date": ..., "meals": [...]}]}

and recipes inside them disagree on field names and value types.  Every
field has an explicit default policy; a malformed sub-field never drops
its meal.  Only entries with neither a recipe id nor a label are dropped
(and counted in `NormalizationStats`).

Bump `SCHEMA_VERSION` whenever the canonical model changes shape: cached
entries written by another version are then ignored.
"""
from __future__ import annotations

import datetime as dt
import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from pydantic import ValidationError

from core.errors import NormalizationError
from core.models.plan import MacroTargets, Meal, MealPlan, MealType
from core.models.recipe import NUTRIENT_LABELS, Nutrient, Recipe

_LOG = logging.getLogger(__name__)

SCHEMA_VERSION = 1

ENERGY_CODE = "ENERC_KCAL"

_LABEL_TO_CODE: dict[str, str] = {label.lower(): code for code, label in NUTRIENT_LABELS.items()}
_LABEL_TO_CODE.update({
    "calories": ENERGY_CODE,
    "carbohydrate": "CHOCDF",
    "carbohydrates": "CHOCDF",
    "carbs (net)": "CHOCDF.net",
    "fats": "FAT",
    "total fat": "FAT",
    "fibre": "FIBTG",
    "sugar": "SUGAR",
})

_NUMBER = re.compile(r"[-+]?\d*\.?\d+")
_LEADING_INT = re.compile(r"^\s*[-+]?\d+")
_NOT_NUMERIC = re.compile(r"[^0-9.]")


@dataclass(frozen=True)
class NormalizeContext:
    start_date: dt.date
    schema_version: int = SCHEMA_VERSION


@dataclass
class NormalizationStats:
    dropped_meals: int = 0
    dropped_alternates: int = 0


# ──────────────────────────────────────────────────────────────────────
#  Public entrypoints
# ──────────────────────────────────────────────────────────────────────
def normalize(
    raw: Any,
    context: NormalizeContext,
    stats: NormalizationStats | None = None,
) -> MealPlan:
    """Build a canonical plan from a raw payload or raise `NormalizationError`."""
    stats = stats if stats is not None else NormalizationStats()
    body, profile = _unwrap(raw)
    start = _parse_moment(body.get("startDate") or body.get("start_date"))
    start_date = start.date() if start else context.start_date

    meals: list[Meal] = []
    used_ids: set[str] = set()
    slot_counts: dict[tuple[int, MealType], int] = {}
    try:
        for raw_meal, day_hint in _iter_raw_meals(body):
            meal = _normalize_meal(raw_meal, day_hint, start_date, used_ids, slot_counts, stats)
            if meal is None:
                stats.dropped_meals += 1
                continue
            meals.append(meal)

        plan_id = _first_str(body, "planId", "_id", "id") or _derive_plan_id(start_date, meals)
        plan = MealPlan(
            plan_id=plan_id,
            start_date=start_date,
            meals=meals,
            macro_targets=_resolve_targets(profile),
        )
    except (OverflowError, ValidationError) as exc:
        raise NormalizationError(f"payload cannot form a plan: {exc}") from exc

    if stats.dropped_meals:
        _LOG.warning("dropped %d unidentifiable meal(s) while normalizing", stats.dropped_meals)
    _LOG.debug(
        "normalized plan %s: %d meals over %d day(s), schema v%d",
        plan.plan_id, len(plan.meals), plan.total_days, context.schema_version,
    )
    return plan


def normalize_recipe(raw: Any) -> Recipe | None:
    """Canonical recipe, or None when the entry has neither id nor label."""
    if not isinstance(raw, Mapping):
        return None
    # search hits arrive as {"recipe": {...}}
    if isinstance(raw.get("recipe"), Mapping) and not _has_identity(raw):
        raw = raw["recipe"]

    label = _first_str(raw, "label", "name", "title")
    recipe_id = _first_str(raw, "id", "_id", "recipeId") or _id_from_uri(raw.get("uri"))
    if not recipe_id and not label:
        return None

    nutrients = _resolve_nutrients(raw)
    try:
        return Recipe(
            id=recipe_id or f"label:{label.lower()}",
            label=label or recipe_id,
            image_url=_resolve_image(raw),
            calories_per_recipe=_resolve_calories(raw, nutrients),
            serving_count=_resolve_servings(raw),
            ingredient_lines=_resolve_ingredient_lines(raw),
            nutrients=nutrients,
            source_url=_first_str(raw, "url", "sourceUrl", "source_url"),
            cautions=_resolve_cautions(raw.get("cautions")),
        )
    except ValidationError as exc:  # pragma: no cover - every field is pre-sanitised
        _LOG.warning("recipe %r rejected by the model: %s", recipe_id or label, exc)
        return None


# ──────────────────────────────────────────────────────────────────────
#  Payload shape
# ──────────────────────────────────────────────────────────────────────
def _unwrap(raw: Any) -> tuple[Mapping[str, Any], Mapping[str, Any]]:
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"expected a plan object, got {type(raw).__name__}")
    if raw.get("success") is False:
        raise NormalizationError(str(raw.get("message") or "server reported failure"))

    body: Mapping[str, Any] = raw
    inner = raw.get("mealPlan")
    if isinstance(inner, Mapping):
        body = inner
    elif isinstance(inner, list):
        body = {"days": inner, "startDate": raw.get("startDate")}

    if not isinstance(body.get("meals"), list) and not isinstance(body.get("days"), list):
        raise NormalizationError("payload has no meals list")

    profile: Mapping[str, Any] = {}
    for source in (raw.get("userProfile"), body.get("userProfile"), body.get("macroTargets")):
        if isinstance(source, Mapping):
            profile = source
            break
    return body, profile


def _iter_raw_meals(body: Mapping[str, Any]) -> Iterator[tuple[Any, int | None]]:
    if isinstance(body.get("meals"), list):
        for raw_meal in body["meals"]:
            yield raw_meal, None
        return

    for index, day in enumerate(body["days"], start=1):
        if not isinstance(day, Mapping) or not isinstance(day.get("meals"), list):
            continue
        hint = _to_int(day.get("day")) or index
        for raw_meal in day["meals"]:
            yield raw_meal, hint


# ──────────────────────────────────────────────────────────────────────
#  Meals
# ──────────────────────────────────────────────────────────────────────
def _normalize_meal(
    raw_meal: Any,
    day_hint: int | None,
    start_date: dt.date,
    used_ids: set[str],
    slot_counts: dict[tuple[int, MealType], int],
    stats: NormalizationStats,
) -> Meal | None:
    if not isinstance(raw_meal, Mapping):
        return None
    source = raw_meal["recipe"] if isinstance(raw_meal.get("recipe"), Mapping) else raw_meal
    recipe = normalize_recipe(source)
    if recipe is None:
        return None

    meal_type = MealType.parse(
        raw_meal.get("mealType") or raw_meal.get("meal_type") or raw_meal.get("type")
    ) or MealType.OTHER
    day_number = _resolve_day_number(raw_meal, day_hint, start_date)

    ordinal = slot_counts.get((day_number, meal_type), 0) + 1
    slot_counts[(day_number, meal_type)] = ordinal
    # a bare `_id` names the slot only when it is not also the recipe id
    slot_id = _first_str(raw_meal, "_id")
    if slot_id == recipe.id:
        slot_id = None
    instance_id = (
        _first_str(raw_meal, "instanceId", "instance_id")
        or slot_id
        or f"d{day_number}-{meal_type.value.lower()}-{ordinal}"
    )
    base, n = instance_id, 1
    while instance_id in used_ids:
        n += 1
        instance_id = f"{base}-{n}"
    used_ids.add(instance_id)

    return Meal(
        instance_id=instance_id,
        meal_type=meal_type,
        day_number=day_number,
        date=start_date + dt.timedelta(days=day_number - 1),
        recipe=recipe,
        alternates=_resolve_alternates(raw_meal, stats),
    )


def _resolve_day_number(raw_meal: Mapping[str, Any], day_hint: int | None, start_date: dt.date) -> int:
    """Explicit day, else offset of an absolute date, else the group hint, else 1."""
    last_day = (dt.date.max - start_date).days + 1
    for key in ("dayNumber", "day_number", "day"):
        day = _to_int(raw_meal.get(key))
        if day is not None and 1 <= day <= last_day:
            return day

    moment = _parse_moment(raw_meal.get("date"))
    if moment is not None:
        start = dt.datetime.combine(start_date, dt.time())
        offset = math.floor((moment - start).total_seconds() / 86400)
        return max(1, offset + 1)

    return day_hint if day_hint and 1 <= day_hint <= last_day else 1


def _resolve_alternates(raw_meal: Mapping[str, Any], stats: NormalizationStats) -> list[Recipe]:
    raw = raw_meal.get("alternateRecipes", raw_meal.get("alternates"))
    if isinstance(raw, Mapping):
        raw = raw.get("recipes")
    if not isinstance(raw, list):
        return []
    out: list[Recipe] = []
    for entry in raw:
        recipe = normalize_recipe(entry)
        if recipe is None:
            stats.dropped_alternates += 1
            continue
        out.append(recipe)
    return out


def _derive_plan_id(start_date: dt.date, meals: list[Meal]) -> str:
    digest = hashlib.sha1(start_date.isoformat().encode())
    for meal in meals:
        digest.update(f"|{meal.instance_id}:{meal.recipe.id}".encode())
    return f"plan-{digest.hexdigest()[:16]}"


def _resolve_targets(profile: Mapping[str, Any]) -> MacroTargets:
    macros = profile.get("macros") if isinstance(profile.get("macros"), Mapping) else profile
    goal = _to_int(profile.get("goalCalories", profile.get("goal_calories")))
    fiber = _to_int(macros.get("fiber"))
    plan_type = profile.get("type") or profile.get("plan_type")
    return MacroTargets(
        goal_calories=goal if goal and goal > 0 else 2000,
        protein=max(_to_int(macros.get("protein")) or 0, 0),
        carbs=max(_to_int(macros.get("carbs")) or 0, 0),
        fats=max(_to_int(macros.get("fats", macros.get("fat"))) or 0, 0),
        fiber=fiber if fiber is not None and fiber >= 0 else None,
        plan_type=plan_type if isinstance(plan_type, str) and plan_type.strip() else "Custom",
    )


# ──────────────────────────────────────────────────────────────────────
#  Recipe fields
# ──────────────────────────────────────────────────────────────────────
def _resolve_calories(raw: Mapping[str, Any], nutrients: dict[str, Nutrient]) -> float:
    calories = _to_float(raw.get("calories"))
    if calories is None and ENERGY_CODE in nutrients:
        calories = nutrients[ENERGY_CODE].quantity
    return max(calories or 0.0, 0.0)


def _resolve_servings(raw: Mapping[str, Any]) -> float:
    for key in ("serving", "servings", "yield", "servingCount"):
        value = raw.get(key)
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (int, float)):
            count = float(value)
        elif isinstance(value, str):
            try:
                count = float(_NOT_NUMERIC.sub("", value))
            except ValueError:
                continue
        else:
            continue
        if math.isfinite(count) and count >= 1:
            return count
    return 1.0


def _resolve_nutrients(raw: Mapping[str, Any]) -> dict[str, Nutrient]:
    out: dict[str, Nutrient] = {}
    for source in (raw.get("nutrients"), raw.get("totalNutrients")):
        if isinstance(source, list):
            entries = [(None, e) for e in source]
        elif isinstance(source, Mapping):
            entries = list(source.items())
        else:
            continue
        for key, entry in entries:
            if not isinstance(entry, Mapping):
                continue
            label = entry.get("label") if isinstance(entry.get("label"), str) else ""
            code = (
                _first_str(entry, "code", "tag")
                or (key if isinstance(key, str) and key else None)
                or _LABEL_TO_CODE.get(label.strip().lower())
                or label.strip()
            )
            if not code or code in out:
                continue
            quantity = _to_float(entry.get("quantity", entry.get("value")))
            out[code] = Nutrient(
                quantity=max(quantity or 0.0, 0.0),
                unit=str(entry.get("unit") or ""),
            )
    return out


def _resolve_image(raw: Mapping[str, Any]) -> str | None:
    image = _first_str(raw, "image", "imageUrl", "image_url")
    if image:
        return image
    images = raw.get("images")
    if isinstance(images, Mapping):
        for size in ("REGULAR", "LARGE", "SMALL", "THUMBNAIL"):
            entry = images.get(size)
            if isinstance(entry, Mapping) and isinstance(entry.get("url"), str):
                return entry["url"]
    return None


def _resolve_ingredient_lines(raw: Mapping[str, Any]) -> list[str]:
    for key in ("ingredientLines", "ingredientsLines", "ingredients"):
        value = raw.get(key)
        if not isinstance(value, list):
            continue
        lines = []
        for item in value:
            if isinstance(item, str):
                lines.append(item)
            elif isinstance(item, Mapping) and isinstance(item.get("text"), str):
                lines.append(item["text"])
        return lines
    return []


def _resolve_cautions(value: Any) -> set[str]:
    if isinstance(value, str):
        return {value} if value.strip() else set()
    if isinstance(value, (list, tuple, set, frozenset)):
        return {v for v in value if isinstance(v, str) and v.strip()}
    return set()


# ──────────────────────────────────────────────────────────────────────
#  Scalars
# ──────────────────────────────────────────────────────────────────────
def _to_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER.search(value.replace(",", ""))
        if not match:
            return None
        number = float(match.group())
    else:
        return None
    return number if math.isfinite(number) else None


def _to_int(value: Any) -> int | None:
    """`parseInt`-like: truncates numbers, reads the leading digits of strings."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group()) if match else None
    return None


def _parse_moment(value: Any) -> dt.datetime | None:
    """ISO date/datetime string, date object, or epoch milliseconds."""
    if isinstance(value, dt.datetime):
        moment = value
    elif isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            moment = dt.datetime.fromtimestamp(value / 1000, tz=dt.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = dt.datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return moment


def _first_str(raw: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _has_identity(raw: Mapping[str, Any]) -> bool:
    return bool(_first_str(raw, "label", "name", "title", "id", "_id", "recipeId"))


def _id_from_uri(uri: Any) -> str | None:
    if isinstance(uri, str) and "#recipe_" in uri:
        return uri.split("#recipe_", 1)[1] or None
    return None
