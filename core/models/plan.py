"""
core/models/plan.py
────────────────────────────────────────────────────────────────────────
Canonical meal-plan model shared by every screen.

A `MealPlan` is a flat, ordered list of `Meal` slots.  Slots sharing a
`day_number` form that day's agenda; order inside a day is the order the
server sent, never re-sorted.  `instance_id` identifies the slot, not the
recipe, so it survives swaps and keys the completion ledger.
"""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from core.errors import PlanValidationError
from core.models.recipe import Recipe


class MealType(str, Enum):
    BREAKFAST = "Breakfast"
    LUNCH = "Lunch"
    DINNER = "Dinner"
    SNACK = "Snack"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "MealType | None":
        """Case-insensitive lookup; None when blank, OTHER when unknown."""
        if isinstance(value, MealType):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        key = value.strip().lower()
        for member in cls:
            if key in (member.value.lower(), member.value.lower() + "s"):
                return member
        return cls.OTHER


class Meal(BaseModel):
    instance_id: str = Field(min_length=1)
    meal_type: MealType
    day_number: int = Field(ge=1)
    date: dt.date | None = None      # filled from the plan start date
    recipe: Recipe
    alternates: list[Recipe] = []

    @field_validator("meal_type", mode="before")
    @classmethod
    def _resolve_meal_type(cls, value: Any) -> MealType:
        parsed = MealType.parse(value)
        if parsed is None:
            raise ValueError("meal type is missing")
        return parsed


class MacroTargets(BaseModel):
    goal_calories: float = Field(2000.0, ge=0)
    protein: float = Field(0.0, ge=0)
    carbs: float = Field(0.0, ge=0)
    fats: float = Field(0.0, ge=0)
    fiber: float | None = Field(None, ge=0)
    plan_type: str = "Custom"

    @property
    def plan_title(self) -> str:
        label = self.plan_type.strip() or "Custom"
        return f"{label[0].upper()}{label[1:]} Meal Plan"


class MealPlan(BaseModel):
    plan_id: str = Field(min_length=1)
    start_date: dt.date
    meals: list[Meal] = []
    macro_targets: MacroTargets = Field(default_factory=MacroTargets)

    @model_validator(mode="after")
    def _derive_dates(self) -> "MealPlan":
        for meal in self.meals:
            if meal.date is None:
                meal.date = self.date_for_day(meal.day_number)
        return self

    # -------------------------------- helpers -----------------------
    @property
    def total_days(self) -> int:
        return max((m.day_number for m in self.meals), default=0)

    def date_for_day(self, day_number: int) -> dt.date:
        return self.start_date + dt.timedelta(days=day_number - 1)

    def meals_for_day(self, day_number: int) -> list[Meal]:
        return [m for m in self.meals if m.day_number == day_number]

    def find_meal(self, instance_id: str) -> Meal | None:
        for meal in self.meals:
            if meal.instance_id == instance_id:
                return meal
        return None

    def with_recipe(self, instance_id: str, recipe: Recipe) -> "MealPlan | None":
        """Copy of the plan with one slot's recipe replaced, or None if unknown."""
        if self.find_meal(instance_id) is None:
            return None
        meals = [
            m.model_copy(update={"recipe": recipe}) if m.instance_id == instance_id else m
            for m in self.meals
        ]
        return self.model_copy(update={"meals": meals})


class CacheEntry(BaseModel):
    meal_plan: MealPlan
    written_at_epoch_ms: int
    schema_version: int


# ──────────────────────────────────────────────────────────────────────
#  Structural validation
# ──────────────────────────────────────────────────────────────────────
def validate_meal_plan(candidate: MealPlan | Mapping[str, Any]) -> MealPlan:
    """
    Return `candidate` as a `MealPlan` or raise `PlanValidationError`.

    Rejects plans without meals, meals whose day or type cannot be
    resolved, dates that disagree with the day offset and duplicated
    instance ids.  Pure; never mutates the input.
    """
    if isinstance(candidate, MealPlan):
        plan = candidate
    elif isinstance(candidate, Mapping):
        try:
            plan = MealPlan.model_validate(dict(candidate))
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first["loc"])
            raise PlanValidationError(f"invalid plan at {where}: {first['msg']}") from exc
    else:
        raise PlanValidationError(f"expected a plan mapping, got {type(candidate).__name__}")

    if not plan.meals:
        raise PlanValidationError("plan has no meals")

    total = plan.total_days
    seen: set[str] = set()
    for meal in plan.meals:
        if not 1 <= meal.day_number <= total:
            raise PlanValidationError(f"meal {meal.instance_id} has day {meal.day_number} outside 1..{total}")
        if meal.date is not None and meal.date != plan.date_for_day(meal.day_number):
            raise PlanValidationError(f"meal {meal.instance_id} date does not match day {meal.day_number}")
        if meal.instance_id in seen:
            raise PlanValidationError(f"duplicate meal instance id {meal.instance_id}")
        seen.add(meal.instance_id)
    return plan
