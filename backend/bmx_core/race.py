from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

from .entry import Competitor
from .errors import BuildConflictError, ConfigurationError, DataIntegrityError
from .gates import MAX_GATES, MAX_HEAT_SIZE, HeatPlan, partition_heats
from .rng import SeededRandom

logger = logging.getLogger(__name__)

MIN_ROUNDS = 3
MAX_ROUNDS = 6
DEFAULT_ROUNDS = 4


class RoundKind(str, Enum):
    QUALIFYING = "Qualifying"
    FINAL = "Final"


class RaceStatus(str, Enum):
    # COMPLETED once every final entry has a result.
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


def check_round_count(round_count: int) -> None:
    if not isinstance(round_count, int) or not MIN_ROUNDS <= round_count <= MAX_ROUNDS:
        raise ConfigurationError(f"Round count must be between {MIN_ROUNDS} and {MAX_ROUNDS}, got {round_count!r}")


@dataclass
class RaceConfiguration:
    """One event/category race: how many rounds it runs and the seed fixing its draws."""

    id: str
    event_id: str
    category_id: str
    round_count: int = DEFAULT_ROUNDS
    seed_value: str = ""
    status: RaceStatus = RaceStatus.PLANNED
    has_rounds: bool = False

    @classmethod
    def create(
        cls,
        race_id: str,
        event_id: str,
        category_id: str,
        round_count: int = DEFAULT_ROUNDS,
        seed_value: str | None = None,
    ) -> "RaceConfiguration":
        check_round_count(round_count)
        if not seed_value:
            millis = int(dt.datetime.now(dt.timezone.utc).timestamp() * 1000)
            seed_value = f"{event_id}-{category_id}-{millis}"
        return cls(
            id=race_id,
            event_id=event_id,
            category_id=category_id,
            round_count=round_count,
            seed_value=seed_value,
        )


@dataclass
class RoundPlan:
    ordinal: int
    kind: RoundKind
    heats: List[HeatPlan] = field(default_factory=list)

    @property
    def label(self) -> str:
        if self.kind is RoundKind.FINAL:
            return "Final"
        return f"M{self.ordinal}"

    @property
    def is_final(self) -> bool:
        return self.kind is RoundKind.FINAL


@dataclass
class RacePlan:
    seed: str
    rounds: List[RoundPlan] = field(default_factory=list)
    rider_count: int = 0

    @property
    def heat_count(self) -> int:
        return sum(len(round_plan.heats) for round_plan in self.rounds)

    def stats(self) -> Dict[str, Any]:
        return {
            "ridersCount": self.rider_count,
            "motosCount": len(self.rounds),
            "heatsCount": self.heat_count,
            "seed": self.seed,
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "rounds": [
                {
                    "orderNo": round_plan.ordinal,
                    "type": round_plan.label,
                    "kind": round_plan.kind.value,
                    "heats": [
                        {
                            "heatNo": heat.heat_no,
                            "entries": [
                                {"riderId": entry.competitor.id, "gateNo": entry.lane}
                                for entry in heat.entries
                            ],
                        }
                        for heat in round_plan.heats
                    ],
                }
                for round_plan in self.rounds
            ],
        }


class RoundBuilder:
    """Builds every round of one race from a single seed.

    A builder holds nothing but its seed; each round draws from its own
    stream, so a plan depends only on (seed, roster, round count).
    """

    def __init__(self, seed: str) -> None:
        if not seed:
            raise ConfigurationError("A seed value is required to build a race")
        self.seed = seed

    def round_stream(self, ordinal: int) -> SeededRandom:
        return SeededRandom(f"{self.seed}:round-{ordinal}")

    def build(self, riders: Sequence[Competitor], round_count: int) -> RacePlan:
        check_round_count(round_count)
        if not riders:
            raise ConfigurationError("No registered riders found for this race")

        plan = RacePlan(seed=self.seed, rider_count=len(riders))
        for ordinal in range(1, round_count + 1):
            kind = RoundKind.FINAL if ordinal == round_count else RoundKind.QUALIFYING
            shuffled = self.round_stream(ordinal).shuffle(riders)
            plan.rounds.append(
                RoundPlan(ordinal=ordinal, kind=kind, heats=partition_heats(shuffled, ordinal, self.seed))
            )
        return plan


def build_race(
    race: RaceConfiguration,
    riders: Sequence[Competitor],
    custom_seed: str | None = None,
) -> RacePlan:
    """Validate ``race`` and produce its full plan.

    Nothing is emitted unless every check passes; the caller persists the
    plan and moves the race to ACTIVE.
    """

    if race.has_rounds:
        raise BuildConflictError("Race has already been built")

    seed = custom_seed or race.seed_value
    plan = RoundBuilder(seed).build(riders, race.round_count)
    validate_plan(plan)

    logger.info(
        "Built race %s: %s riders, %s rounds, %s heats",
        race.id,
        plan.rider_count,
        len(plan.rounds),
        plan.heat_count,
    )
    return plan


def validate_plan(plan: RacePlan) -> None:
    for round_plan in plan.rounds:
        for heat in round_plan.heats:
            where = f"{round_plan.label} heat {heat.heat_no}"
            if len(heat) > MAX_HEAT_SIZE:
                raise DataIntegrityError(f"{where} holds {len(heat)} riders (max {MAX_HEAT_SIZE})")
            lanes = heat.lanes
            if len(set(lanes)) != len(lanes):
                raise DataIntegrityError(f"Duplicate gate in {where}: {sorted(lanes)}")
            if any(lane < 1 or lane > MAX_GATES for lane in lanes):
                raise DataIntegrityError(f"Gate out of range in {where}: {sorted(lanes)}")
