"""Gate assignment for the final: random draw or gate choice by ranking."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from .entry import Competitor
from .errors import ConfigurationError
from .gates import MAX_GATES, partition_heats
from .rng import SeededRandom
from .standings import DEFAULT_FINAL_SLOTS, Standing

logger = logging.getLogger(__name__)

FINAL_DRAW_KEY = "final"

# Rank -> gates in order of preference. Unlisted ranks take gates in ascending order.
GATE_PREFERENCES: Dict[int, Tuple[int, ...]] = {
    1: (4, 5, 3, 6, 2, 7, 1, 8),
    2: (3, 4, 5, 2, 6, 1, 7, 8),
    3: (5, 4, 6, 3, 7, 2, 8, 1),
    4: (6, 5, 4, 7, 3, 8, 2, 1),
}
DEFAULT_PREFERENCE: Tuple[int, ...] = tuple(range(1, MAX_GATES + 1))


class FinalMode(str, Enum):
    RANDOM = "random"
    GATE_CHOICE = "gate_choice"


@dataclass
class FinalAssignment:
    competitor: Competitor
    lane: int
    choice_order: int


def preferred_gates(rank: int) -> Tuple[int, ...]:
    return GATE_PREFERENCES.get(rank, DEFAULT_PREFERENCE)


class FinalAssignmentStrategist:
    def __init__(self, seed: str, final_slot_count: int = DEFAULT_FINAL_SLOTS) -> None:
        if not 1 <= final_slot_count <= MAX_GATES:
            raise ConfigurationError(f"Final slot count must be between 1 and {MAX_GATES}")
        self.seed = seed
        self.final_slot_count = final_slot_count

    def assign(self, qualifiers: Sequence[Standing], mode: FinalMode = FinalMode.RANDOM) -> List[FinalAssignment]:
        if len(qualifiers) > self.final_slot_count:
            raise ConfigurationError(
                f"{len(qualifiers)} qualifiers exceed the {self.final_slot_count} final gates"
            )
        if not qualifiers:
            return []

        if FinalMode(mode) is FinalMode.GATE_CHOICE:
            assignments = self._gate_choice(qualifiers)
        else:
            assignments = self._random_draw(qualifiers)

        logger.info("Final gates assigned by %s for %s riders", FinalMode(mode).value, len(assignments))
        return assignments

    def _random_draw(self, qualifiers: Sequence[Standing]) -> List[FinalAssignment]:
        riders = [standing.competitor for standing in qualifiers]
        shuffled = SeededRandom(f"{self.seed}:{FINAL_DRAW_KEY}").shuffle(riders)
        (heat,) = partition_heats(shuffled, FINAL_DRAW_KEY, self.seed)
        return [
            FinalAssignment(competitor=entry.competitor, lane=entry.lane, choice_order=order)
            for order, entry in enumerate(heat.entries, start=1)
        ]

    @staticmethod
    def _gate_choice(qualifiers: Sequence[Standing]) -> List[FinalAssignment]:
        """Best ranked rider picks first; each takes the first free gate in their preference list."""

        ordered = sorted(qualifiers, key=lambda standing: (standing.total_points, standing.rank))
        available = list(DEFAULT_PREFERENCE)
        assignments: List[FinalAssignment] = []

        for choice_order, standing in enumerate(ordered, start=1):
            gate = next(gate for gate in preferred_gates(choice_order) if gate in available)
            available.remove(gate)
            assignments.append(
                FinalAssignment(competitor=standing.competitor, lane=gate, choice_order=choice_order)
            )
        return assignments
