"""CLI helper for previewing a race build (or re-checking a stored one) without saving it."""

from __future__ import annotations

import sys
from typing import List

from bmx_core import ConfigurationError, NotFoundError, RacePlan, RoundBuilder
from bmx_core.loader import DataStore


def _format_plan(plan: RacePlan) -> str:
    lines: List[str] = [f"Seed {plan.seed}: {plan.rider_count} riders, {plan.heat_count} heats"]
    for round_plan in plan.rounds:
        for heat in round_plan.heats:
            lines.append(f"{round_plan.label} heat {heat.heat_no}")
            for entry in sorted(heat.entries, key=lambda item: item.lane):
                lines.append(f"  gate {entry.lane}: #{entry.competitor.plate} {entry.competitor.display_name}")
    return "\n".join(lines)


def main(argv: List[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("usage: preview_plan.py RACE_ID [SEED]", file=sys.stderr)
        return 2

    store = DataStore()
    try:
        race = store.get_race(args[0])
        riders = store.fetch_roster(race)
        plan = RoundBuilder(args[1] if len(args) > 1 else race.seed_value).build(riders, race.round_count)
    except (NotFoundError, ConfigurationError, RuntimeError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if race.has_rounds:
        print("Race has already been built; showing the plan its seed reproduces.")
    print(_format_plan(plan))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
