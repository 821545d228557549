# tests/test_normalizer.py
from __future__ import annotations

import datetime as dt

import pytest

from core.errors import NormalizationError
from core.models.plan import MealType, validate_meal_plan
from core.normalizer import NormalizationStats, NormalizeContext, normalize, normalize_recipe
from tests.payloads import START, raw_plan, raw_recipe

CTX = NormalizeContext(start_date=START)


def _single(meal: dict, start: str | None = START.isoformat()) -> dict:
    body: dict = {"meals": [meal]}
    if start:
        body["startDate"] = start
    return body


# ── payload shapes ───────────────────────────────────────────────────
def test_envelope_payload(plan):
    assert plan.start_date == START
    assert len(plan.meals) == 5
    assert plan.total_days == 2
    assert [m.instance_id for m in plan.meals_for_day(1)] == [
        "d1-breakfast-1",
        "d1-lunch-1",
        "d1-dinner-1",
    ]
    assert plan.meals[3].date == START + dt.timedelta(days=1)


def test_bare_payload_uses_context_start_when_missing():
    plan = normalize(_single({"mealType": "Lunch", "recipe": raw_recipe("r1", "Soup")}, start=None), CTX)
    assert plan.start_date == START
    assert plan.meals[0].day_number == 1


def test_day_grouped_payload():
    raw = {
        "startDate": "2026-10-19",
        "mealPlan": [
            {"day": 1, "meals": [{"mealType": "dinner", "recipe": raw_recipe("a", "A")}]},
            {"day": 2, "meals": [{"mealType": "dinner", "recipe": raw_recipe("b", "B")}]},
        ],
    }
    plan = normalize(raw, CTX)
    assert [(m.day_number, m.recipe.id) for m in plan.meals] == [(1, "a"), (2, "b")]
    assert plan.meals[1].date == dt.date(2026, 10, 20)


@pytest.mark.parametrize(
    "raw",
    [
        [],
        "nope",
        {"success": False, "message": "no plan"},
        {"mealPlan": {"startDate": "2026-10-19"}},
    ],
)
def test_unusable_payloads_raise(raw):
    with pytest.raises(NormalizationError):
        normalize(raw, CTX)


@pytest.mark.parametrize(
    "raw",
    [
        _single({"mealType": "Lunch", "dayNumber": "99999999999", "recipe": raw_recipe("r1", "Soup")}),
        _single({"mealType": "Lunch", "dayNumber": 10**12, "recipe": raw_recipe("r1", "Soup")}),
        {"startDate": "2026-10-19", "mealPlan": [{"day": 99999999999, "meals": [{"mealType": "Lunch", "recipe": raw_recipe("r1", "Soup")}]}]},
    ],
)
def test_day_numbers_past_the_calendar_fall_back_to_day_one(raw):
    plan = normalize(raw, CTX)
    assert plan.meals[0].day_number == 1
    assert plan.meals[0].date == START


# ── recipe fields ────────────────────────────────────────────────────
def test_string_calories_are_parsed():
    recipe = normalize_recipe({"id": "r1", "label": "Soup", "calories": "450"})
    assert recipe.calories_per_recipe == 450


def test_calories_fall_back_to_energy_nutrient():
    recipe = normalize_recipe({
        "id": "r1",
        "label": "Soup",
        "totalNutrients": {"ENERC_KCAL": {"label": "Energy", "quantity": 520.4, "unit": "kcal"}},
    })
    assert recipe.calories_per_recipe == pytest.approx(520.4)


def test_unparseable_calories_default_to_zero():
    recipe = normalize_recipe({"id": "r1", "label": "Soup", "calories": "lots"})
    assert recipe.calories_per_recipe == 0


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"yield": 4}, 4),
        ({"servings": "3 people"}, 3),
        ({"serving": "0"}, 1),
        ({"serving": -2}, 1),
        ({}, 1),
    ],
)
def test_serving_count_is_at_least_one(fields, expected):
    recipe = normalize_recipe({"id": "r1", "label": "Soup", **fields})
    assert recipe.serving_count == expected


def test_nutrient_labels_map_to_codes():
    recipe = normalize_recipe(raw_recipe("r1", "Soup", protein=30, carbs=12, fat=9))
    assert recipe.nutrient_quantity("PROCNT") == 30
    assert recipe.nutrient_quantity("CHOCDF") == 12
    assert recipe.nutrient_quantity("FAT") == 9
    assert recipe.nutrient_per_serving("PROCNT") == 15


def test_field_aliases():
    recipe = normalize_recipe({
        "recipe": {
            "uri": "http://www.edamam.com/ontologies/edamam.owl#recipe_abc123",
            "label": "Shakshuka",
            "ingredientsLines": ["2 eggs", "1 tomato"],
            "images": {"REGULAR": {"url": "https://img.example/regular.jpg"}},
            "cautions": ["Sulfites", ""],
        }
    })
    assert recipe.id == "abc123"
    assert recipe.ingredient_lines == ["2 eggs", "1 tomato"]
    assert recipe.image_url == "https://img.example/regular.jpg"
    assert recipe.cautions == {"Sulfites"}


def test_recipe_without_identity_is_none():
    assert normalize_recipe({"calories": 100}) is None
    assert normalize_recipe("r1") is None


# ── alternates ───────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "alternates",
    [
        {"recipes": [raw_recipe("r1", "One"), raw_recipe("r2", "Two")]},
        [raw_recipe("r1", "One"), raw_recipe("r2", "Two")],
    ],
)
def test_alternates_in_both_shapes(alternates):
    meal = {"mealType": "Lunch", "recipe": raw_recipe("main", "Main"), "alternateRecipes": alternates}
    plan = normalize(_single(meal), CTX)
    assert [r.id for r in plan.meals[0].alternates] == ["r1", "r2"]


def test_bad_alternates_are_dropped_and_counted():
    stats = NormalizationStats()
    meal = {"mealType": "Lunch", "recipe": raw_recipe("main", "Main"), "alternateRecipes": [{}, raw_recipe("r1", "One")]}
    plan = normalize(_single(meal), CTX, stats)
    assert [r.id for r in plan.meals[0].alternates] == ["r1"]
    assert stats.dropped_alternates == 1


# ── meal slots ───────────────────────────────────────────────────────
def test_day_number_from_absolute_date():
    meals = [
        {"mealType": "Dinner", "date": "2026-10-21T19:30:00Z", "recipe": raw_recipe("a", "A")},
        {"mealType": "Dinner", "date": "2026-10-10", "recipe": raw_recipe("b", "B")},
    ]
    plan = normalize({"startDate": "2026-10-19", "meals": meals}, CTX)
    assert [m.day_number for m in plan.meals] == [3, 1]


def test_meal_type_defaults_to_other():
    plan = normalize(_single({"recipe": raw_recipe("a", "A")}), CTX)
    assert plan.meals[0].meal_type is MealType.OTHER
    assert plan.meals[0].instance_id == "d1-other-1"


def test_repeated_slots_get_distinct_instance_ids():
    meals = [
        {"mealType": "snacks", "recipe": raw_recipe("a", "A")},
        {"mealType": "Snack", "recipe": raw_recipe("a", "A")},
    ]
    plan = normalize({"meals": meals}, CTX)
    assert [m.instance_id for m in plan.meals] == ["d1-snack-1", "d1-snack-2"]


def test_flat_meal_id_is_the_recipe_not_the_slot():
    plan = normalize(_single({"_id": "abc", "label": "Soup", "mealType": "Lunch"}), CTX)
    meal = plan.meals[0]
    assert meal.recipe.id == "abc"
    assert meal.instance_id == "d1-lunch-1"


def test_meal_id_names_the_slot_when_recipe_has_its_own():
    plan = normalize(_single({"_id": "slot-9", "id": "r1", "label": "Soup", "mealType": "Lunch"}), CTX)
    assert plan.meals[0].recipe.id == "r1"
    assert plan.meals[0].instance_id == "slot-9"


def test_unidentifiable_meals_are_dropped(caplog):
    stats = NormalizationStats()
    meals = [{"mealType": "Lunch", "recipe": {"calories": 300}}, "junk", {"mealType": "Lunch", "recipe": raw_recipe("a", "A")}]
    plan = normalize({"meals": meals}, CTX, stats)
    assert len(plan.meals) == 1
    assert stats.dropped_meals == 2
    assert "dropped 2" in caplog.text


# ── plan-level fields ────────────────────────────────────────────────
def test_macro_targets_from_user_profile(plan):
    targets = plan.macro_targets
    assert targets.goal_calories == 1800
    assert (targets.protein, targets.carbs, targets.fats) == (120, 200, 60)
    assert targets.plan_title == "Keto Meal Plan"


def test_macro_targets_defaults():
    plan = normalize(_single({"mealType": "Lunch", "recipe": raw_recipe("a", "A")}), CTX)
    assert plan.macro_targets.goal_calories == 2000
    assert plan.macro_targets.protein == 0
    assert plan.macro_targets.plan_title == "Custom Meal Plan"


def test_plan_id_is_stable_when_derived():
    first = normalize(raw_plan(), CTX)
    second = normalize(raw_plan(), CTX)
    assert first.plan_id == second.plan_id
    assert first.plan_id.startswith("plan-")


def test_explicit_plan_id_wins():
    raw = raw_plan()
    raw["mealPlan"]["_id"] = "665f0c"
    assert normalize(raw, CTX).plan_id == "665f0c"


@pytest.mark.parametrize(
    "raw",
    [
        raw_plan(),
        {"meals": [{"recipe": {"label": "Only a label", "serving": "zero"}}]},
        {"mealPlan": [{"meals": [{"mealType": 7, "recipe": {"id": 42, "calories": None}}]}]},
    ],
)
def test_normalized_plans_pass_validation(raw):
    plan = validate_meal_plan(normalize(raw, CTX))
    assert all(m.recipe.serving_count >= 1 for m in plan.meals)
