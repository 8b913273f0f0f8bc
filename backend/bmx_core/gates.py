"""Gate (lane) draws and the split of a round's riders into heats."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from .entry import Competitor
from .rng import SeededRandom

logger = logging.getLogger(__name__)

MAX_HEAT_SIZE = 8
MAX_GATES = 8


@dataclass
class LaneEntry:
    """A competitor placed on a gate within a planned heat."""

    competitor: Competitor
    lane: int


@dataclass
class HeatPlan:
    heat_no: int
    entries: List[LaneEntry] = field(default_factory=list)

    @property
    def lanes(self) -> List[int]:
        return [entry.lane for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


def gate_sequence(length: int, sub_seed: str) -> List[int]:
    """Return a permutation of gates ``1..min(8, length)`` for ``sub_seed``.

    The shuffle walks from the last index down to index 1 inclusive and never
    visits index 0 on its own; golden plans depend on that boundary.
    """

    max_gates = min(MAX_GATES, length)
    gates = list(range(1, max_gates + 1))
    if max_gates <= 1:
        return gates

    rng = SeededRandom(f"{sub_seed}-gates")
    for i in range(len(gates) - 1, 0, -1):
        j = rng.index(i + 1)
        gates[i], gates[j] = gates[j], gates[i]
    return gates


def heat_sub_seed(seed: str, round_key: int | str, heat_no: int) -> str:
    return f"{seed}:round-{round_key}:heat-{heat_no}"


def partition_heats(riders: Sequence[Competitor], round_ordinal: int | str, seed: str) -> List[HeatPlan]:
    """Split an already ordered list of riders into heats of at most eight.

    Riders keep their order: heat 1 takes the first eight, heat 2 the next
    eight and so on. Each heat draws its gates independently from a sub-seed
    built from the race seed, the round ordinal and the heat number.
    """

    heats: List[HeatPlan] = []
    for start in range(0, len(riders), MAX_HEAT_SIZE):
        chunk = riders[start : start + MAX_HEAT_SIZE]
        heat_no = len(heats) + 1
        gates = gate_sequence(len(chunk), heat_sub_seed(seed, round_ordinal, heat_no))
        heats.append(
            HeatPlan(
                heat_no=heat_no,
                entries=[LaneEntry(competitor=rider, lane=gate) for rider, gate in zip(chunk, gates)],
            )
        )

    logger.debug("Round %s partitioned into %s heat(s) for %s rider(s)", round_ordinal, len(heats), len(riders))
    return heats
