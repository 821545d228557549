from __future__ import annotations

from pydantic import BaseModel, Field, field_serializer

# Edamam nutrient codes the planner screens read, with their display labels.
NUTRIENT_LABELS: dict[str, str] = {
    "ENERC_KCAL": "Energy",
    "FAT": "Fat",
    "FASAT": "Saturated",
    "FATRN": "Trans",
    "CHOCDF": "Carbs",
    "CHOCDF.net": "Carbohydrates (net)",
    "FIBTG": "Fiber",
    "SUGAR": "Sugars",
    "PROCNT": "Protein",
    "CHOLE": "Cholesterol",
    "NA": "Sodium",
    "CA": "Calcium",
    "MG": "Magnesium",
    "K": "Potassium",
    "FE": "Iron",
    "ZN": "Zinc",
    "VITC": "Vitamin C",
    "THIA": "Thiamin (B1)",
    "VITB6A": "Vitamin B6",
    "VITB12": "Vitamin B12",
    "VITD": "Vitamin D",
}


class Nutrient(BaseModel):
    quantity: float = Field(0.0, ge=0)
    unit: str = ""


class Recipe(BaseModel):
    id: str = Field(min_length=1)
    label: str
    image_url: str | None = None
    calories_per_recipe: float = Field(0.0, ge=0)
    serving_count: float = Field(1.0, ge=1)
    ingredient_lines: list[str] = []
    nutrients: dict[str, Nutrient] = {}
    source_url: str | None = None
    cautions: set[str] = set()

    @field_serializer("cautions")
    def _sorted_cautions(self, value: set[str]) -> list[str]:
        # stable order keeps two dumps of the same recipe byte-identical
        return sorted(value)

    @property
    def calories_per_serving(self) -> float:
        return self.calories_per_recipe / self.serving_count

    def nutrient_quantity(self, code: str) -> float:
        nutrient = self.nutrients.get(code)
        return nutrient.quantity if nutrient else 0.0

    def nutrient_per_serving(self, code: str) -> float:
        return self.nutrient_quantity(code) / self.serving_count
