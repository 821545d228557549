# services/mealplan_api.py
"""
Thin async client for the meal-plan backend.

    GET  /mealplan/{clientId}   → raw plan payload
    POST /generate/meals        → raw plan payload
    POST /swap-meal             → {"success": bool}
    POST /client/send-plan      → {"success": bool}
    POST /foodlog/add           → 2xx on success

Transport failures and non-2xx answers raise `NetworkError`; a 2xx body
that is not JSON raises `NormalizationError`.  No retries here: the
caller decides when to try again.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable
from urllib.parse import quote

import httpx

from config import settings
from core.aggregator import round_half_up
from core.errors import NetworkError, NormalizationError, SwapRejected
from core.models.plan import Meal, MealPlan, MealType
from core.models.recipe import NUTRIENT_LABELS, Recipe

_LOG = logging.getLogger(__name__)

SEND_WINDOW_DAYS = 7


def recipe_payload(recipe: Recipe) -> dict[str, Any]:
    """Recipe in the backend's field naming."""
    return {
        "id": recipe.id,
        "label": recipe.label,
        "image": recipe.image_url,
        "calories": recipe.calories_per_recipe,
        "serving": recipe.serving_count,
        "ingredientsLines": list(recipe.ingredient_lines),
        "nutrients": [
            {"code": code, "label": NUTRIENT_LABELS.get(code, code), "value": n.quantity, "unit": n.unit}
            for code, n in recipe.nutrients.items()
        ],
        "url": recipe.source_url,
        "cautions": sorted(recipe.cautions),
    }


def build_food_log_entry(meal: Meal, client_id: str) -> dict[str, Any]:
    """One serving of a planned meal as a food-log row."""
    recipe = meal.recipe

    def amount(code: str, unit: str) -> str:
        return f"{round_half_up(recipe.nutrient_per_serving(code))}{unit}"

    return {
        "clientUserId": client_id,
        "foodId": recipe.id,
        "foodName": recipe.label or "Meal from plan",
        "image": recipe.image_url or "",
        "measure": "serving",
        "quantity": 1,
        "mealType": meal.meal_type.value,
        "calories": f"{round_half_up(recipe.calories_per_serving)}Kcal",
        "protein": amount("PROCNT", "g"),
        "fats": amount("FAT", "g"),
        "fiber": amount("FIBTG", "g"),
        "carbs": amount("CHOCDF", "g"),
        "sugar": amount("SUGAR", "g"),
        "cholesterol": amount("CHOLE", "mg"),
        "sodium": amount("NA", "mg"),
        "potassium": amount("K", "mg"),
        "magnesium": amount("MG", "mg"),
        "iron": amount("FE", "mg"),
        "zinc": amount("ZN", "mg"),
    }


class MealPlanApi:
    def __init__(
        self,
        base_url: str | None = None,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = (base_url or settings.api_base_url).rstrip("/")
        self._timeout = httpx.Timeout(timeout_s or settings.http_timeout_s, connect=10.0)
        self._client = client

    # ─────────────────────────────── plans ────────────────────────── #
    async def fetch_plan(self, client_id: str) -> Any:
        return await self._request("GET", f"/mealplan/{quote(str(client_id), safe='')}")

    async def generate_plan(
        self,
        user_id: str,
        dietary_preferences: Iterable[str] = (),
        health_labels: Iterable[str] = (),
        nutritionist_id: str | None = None,
    ) -> Any:
        body: dict[str, Any] = {
            "userId": user_id,
            "dietaryPreferences": list(dietary_preferences),
            "healthLabels": list(health_labels),
        }
        if nutritionist_id:
            body["nutritionistId"] = nutritionist_id
        return await self._request("POST", "/generate/meals", json=body)

    async def swap_meal(
        self,
        user_id: str,
        old_recipe_id: str,
        new_recipe: Recipe,
        meal_type: MealType,
        nutritionist_id: str | None = None,
    ) -> None:
        """Return only when the backend confirms; otherwise raise."""
        body = {
            "userId": user_id,
            "oldRecipeId": old_recipe_id,
            "newRecipeId": new_recipe.id,
            "mealType": meal_type.value,
            "newRecipe": recipe_payload(new_recipe),
            "nutritionistId": nutritionist_id,
        }
        try:
            data = await self._request("POST", "/swap-meal", json=body)
        except NormalizationError as exc:
            raise SwapRejected("swap answer was not JSON") from exc
        if not isinstance(data, dict) or data.get("success") is not True:
            message = data.get("message") if isinstance(data, dict) else None
            raise SwapRejected(message or "backend declined the swap")

    # ─────────────────────────────── extras ───────────────────────── #
    async def send_plan(self, nutritionist_id: str, client_id: str, plan: MealPlan) -> bool:
        end = plan.start_date + dt.timedelta(days=max(SEND_WINDOW_DAYS, plan.total_days))
        targets = plan.macro_targets
        compact = {
            "meals": [
                {"mealType": m.meal_type.value, "dayNumber": m.day_number, "recipe": recipe_payload(m.recipe)}
                for m in plan.meals
            ],
            "userProfile": {
                "macros": {"protein": targets.protein, "carbs": targets.carbs, "fats": targets.fats},
                "goalCalories": targets.goal_calories,
            },
            "startDate": plan.start_date.isoformat(),
            "endDate": end.isoformat(),
        }
        data = await self._request(
            "POST",
            "/client/send-plan",
            json={"NutritionistId": nutritionist_id, "ClientId": client_id, "plan": compact},
        )
        return isinstance(data, dict) and data.get("success") is True

    async def log_food(self, entry: dict[str, Any]) -> None:
        await self._request("POST", "/foodlog/add", json=entry)

    # ─────────────────────────────── transport ────────────────────── #
    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as http:
                    resp = await http.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            _LOG.error("%s %s → HTTP %d", method, path, status)
            raise NetworkError(f"{method} {path} returned HTTP {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            _LOG.error("%s %s failed: %s", method, path, exc)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise NormalizationError(f"{method} {path} returned a non-JSON body") from exc
