"""
Load (or regenerate) a client's meal plan and print a per-day summary.

Usage
-----

    # fetch-or-use-cache for the client in MEALPLAN_CLIENT_ID
    python -m scripts.show_plan

    # explicit client, force a brand-new plan, focus on day 3
    python -m scripts.show_plan --client 42 --regenerate --day 3
"""
from __future__ import annotations

import argparse
import asyncio
import sys

import pandas as pd
from dotenv import load_dotenv

load_dotenv()

from core.aggregator import daily_totals_frame  # noqa: E402
from core.reconciliation import ControllerState, PlanSnapshot  # noqa: E402
from main import build_controller, configure_logging  # noqa: E402
from services.kv_store import SqlKeyValueStore  # noqa: E402


def _print_snapshot(snap: PlanSnapshot) -> None:
    plan = snap.plan
    if plan is None:
        print(f"✗ {snap.error or 'no plan available'}")
        return

    stale = "  (stale copy, backend unreachable)" if snap.stale else ""
    print(f"✓ {plan.macro_targets.plan_title} · {plan.plan_id}{stale}")
    print(f"  starts {plan.start_date.isoformat()} · {plan.total_days} day(s) · {len(plan.meals)} meals")

    split = snap.macro_percentages
    if split is not None:
        print(f"  macro split  protein {split.protein}% · carbs {split.carbs}% · fats {split.fats}%")

    with pd.option_context("display.width", 120, "display.precision", 1):
        print()
        print(daily_totals_frame(plan).to_string(index=False))
        print()

    day = snap.selected_day
    if day is None:
        return
    for meal_type, meals in snap.grouped_by_day.get(day, {}).items():
        for meal in meals:
            print(f"  day {day} · {meal_type.value:<9} {meal.recipe.label}  [{meal.instance_id}]")
    if snap.daily_nutrition is not None:
        n = snap.daily_nutrition
        print(
            f"  day {day} totals: {n.calories:.0f} kcal ({n.calorie_percent}% of goal) · "
            f"P {n.protein:.0f}g · C {n.carbs:.0f}g · F {n.fat:.0f}g"
        )
    if snap.daily_progress is not None:
        p = snap.daily_progress
        print(f"  completed {p.completed}/{p.total} ({p.percent}%)")


async def _run(client_id: str | None, regenerate: bool, day: int | None) -> int:
    kv = SqlKeyValueStore()
    controller = build_controller(client_id, kv=kv)
    try:
        snap = await (controller.trigger_regenerate() if regenerate else controller.trigger_fetch())
    finally:
        await kv.dispose()
    if day is not None and snap.plan is not None:
        snap = controller.select_day(day)
    _print_snapshot(snap)
    return 1 if snap.state is ControllerState.ERROR else 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--client", help="client id (defaults to MEALPLAN_CLIENT_ID)")
    parser.add_argument("--regenerate", action="store_true", help="ask the backend for a new plan")
    parser.add_argument("--day", type=int, help="plan day to detail (defaults to today)")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(_run(args.client, args.regenerate, args.day)))


if __name__ == "__main__":
    main()
