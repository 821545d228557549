"""
core/aggregator.py
────────────────────────────────────────────────────────────────────────
View-ready summaries computed from a normalized plan.

Responsibilities
----------------
1.   `group_by_day()` / `group_by_type()` – agenda structures for the
     day-strip and the meal-type sections.
2.   `compute_macro_percentages()` – protein / carbs / fats split of the
     macro targets (pie chart).
3.   `compute_daily_progress()` – how many of a day's meals are done.
4.   `compute_daily_nutrition()` / `daily_totals_frame()` – per-serving
     calorie and macro totals per day.

Everything here is pure: no I/O, no logging, no mutation of the plan.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping

import pandas as pd

from core.completion import completion_key
from core.models.plan import MacroTargets, Meal, MealPlan, MealType

# fixed section order; anything else follows in first-seen order
CANONICAL_TYPE_ORDER: tuple[MealType, ...] = (
    MealType.BREAKFAST,
    MealType.LUNCH,
    MealType.DINNER,
    MealType.SNACK,
)


@dataclass(frozen=True)
class MacroPercentages:
    protein: int
    carbs: int
    fats: int


@dataclass(frozen=True)
class DailyProgress:
    completed: int
    total: int
    percent: int


@dataclass(frozen=True)
class DailyNutrition:
    calories: float
    protein: float
    carbs: float
    fat: float
    calorie_percent: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ──────────────────────────────────────────────────────────────────────
#  Grouping
# ──────────────────────────────────────────────────────────────────────
def group_by_day(plan: MealPlan) -> dict[int, dict[MealType, list[Meal]]]:
    days: dict[int, dict[MealType, list[Meal]]] = {}
    for meal in plan.meals:
        days.setdefault(meal.day_number, {}).setdefault(meal.meal_type, []).append(meal)
    return days


def group_by_type(plan: MealPlan) -> dict[MealType, list[Meal]]:
    buckets: dict[MealType, list[Meal]] = {}
    for meal in plan.meals:
        buckets.setdefault(meal.meal_type, []).append(meal)

    ordered = {t: buckets[t] for t in CANONICAL_TYPE_ORDER if t in buckets}
    for meal_type, meals in buckets.items():   # dicts keep first-seen order
        ordered.setdefault(meal_type, meals)
    return ordered


# ──────────────────────────────────────────────────────────────────────
#  Percentages / progress
# ──────────────────────────────────────────────────────────────────────
def compute_macro_percentages(targets: MacroTargets) -> MacroPercentages:
    total = targets.protein + targets.carbs + targets.fats
    if total <= 0:
        return MacroPercentages(protein=0, carbs=0, fats=0)
    return MacroPercentages(
        protein=round_half_up(100 * targets.protein / total),
        carbs=round_half_up(100 * targets.carbs / total),
        fats=round_half_up(100 * targets.fats / total),
    )


def compute_daily_progress(ledger: Mapping[str, bool], meals: Iterable[Meal]) -> DailyProgress:
    keys = [completion_key(m) for m in meals]
    completed = sum(1 for k in keys if ledger.get(k))
    total = len(keys)
    percent = round_half_up(100 * completed / total) if total else 0
    return DailyProgress(completed=completed, total=total, percent=percent)


# ──────────────────────────────────────────────────────────────────────
#  Nutrition totals
# ──────────────────────────────────────────────────────────────────────
def compute_daily_nutrition(meals: Iterable[Meal], goal_calories: float) -> DailyNutrition:
    """Per-serving totals of one day's meals; calorie percent capped at 100."""
    calories = protein = carbs = fat = 0.0
    for meal in meals:
        recipe = meal.recipe
        calories += recipe.calories_per_serving
        protein += recipe.nutrient_per_serving("PROCNT")
        carbs += recipe.nutrient_per_serving("CHOCDF")
        fat += recipe.nutrient_per_serving("FAT")
    percent = min(100, round_half_up(100 * calories / goal_calories)) if goal_calories > 0 else 0
    return DailyNutrition(
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
        calorie_percent=percent,
    )


def daily_totals_frame(plan: MealPlan) -> pd.DataFrame:
    """One row per plan day with per-serving calorie and macro sums."""
    rows = []
    for meal in plan.meals:
        recipe = meal.recipe
        rows.append({
            "day": meal.day_number,
            "date": meal.date,
            "calories": recipe.calories_per_serving,
            "protein": recipe.nutrient_per_serving("PROCNT"),
            "carbs": recipe.nutrient_per_serving("CHOCDF"),
            "fat": recipe.nutrient_per_serving("FAT"),
            "fiber": recipe.nutrient_per_serving("FIBTG"),
        })
    columns = ["day", "date", "meals", "calories", "protein", "carbs", "fat", "fiber"]
    if not rows:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(rows)
    totals = (
        df.groupby(["day", "date"], sort=True)
        .agg(
            meals=("calories", "size"),
            calories=("calories", "sum"),
            protein=("protein", "sum"),
            carbs=("carbs", "sum"),
            fat=("fat", "sum"),
            fiber=("fiber", "sum"),
        )
        .reset_index()
    )
    return totals[columns]
