"""Scoring of qualifying rounds and the ranked standings table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .entry import Competitor
from .errors import ConfigurationError, DataIntegrityError
from .gates import MAX_GATES
from .race import RoundKind

logger = logging.getLogger(__name__)

PENALTY_POINTS = 9
PENALTY_PLACE = 9
DEFAULT_FINAL_SLOTS = 8


class ResultStatus(str, Enum):
    OK = "OK"
    DQ = "DQ"
    DNS = "DNS"
    DNF = "DNF"


@dataclass
class Result:
    """Outcome of one heat entry. Only OK results carry a position and a time."""

    status: ResultStatus = ResultStatus.OK
    finish_position: Optional[int] = None
    time_ms: Optional[int] = None

    def __post_init__(self) -> None:
        self.status = ResultStatus(self.status)
        if self.status is not ResultStatus.OK:
            self.finish_position = None
            self.time_ms = None
            return
        if self.finish_position is not None and not 1 <= self.finish_position <= MAX_GATES:
            raise ConfigurationError(f"Finish position must be between 1 and {MAX_GATES}")
        if self.time_ms is not None and self.time_ms < 0:
            raise ConfigurationError("Time must be a non-negative number of milliseconds")

    @property
    def finished(self) -> bool:
        return self.status is ResultStatus.OK


class PointsTable:
    """Place to points mapping for places 1-8. Lower totals rank higher.

    Anything that is not an OK finish on a listed place scores
    ``PENALTY_POINTS``; that value is fixed and cannot be overridden.
    """

    def __init__(self, points: Mapping[int, int]) -> None:
        table: Dict[int, int] = {}
        for place, value in points.items():
            place = int(place)
            if not 1 <= place <= MAX_GATES:
                raise ConfigurationError(f"Points table place {place} is outside 1-{MAX_GATES}")
            if int(value) <= 0:
                raise ConfigurationError(f"Points for place {place} must be positive")
            table[place] = int(value)
        if len(set(table.values())) != len(table):
            raise ConfigurationError("Points table must award different points to every place")
        self._points = table

    @classmethod
    def default(cls) -> "PointsTable":
        return cls({place: place for place in range(1, MAX_GATES + 1)})

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "PointsTable":
        """Build a table from stored ``{"place", "points"}`` rows; place 9 rows are ignored."""
        points: Dict[int, int] = {}
        for row in rows:
            try:
                place = int(row["place"])
                value = int(row["points"])
            except (KeyError, TypeError, ValueError):
                continue
            if place == PENALTY_PLACE:
                continue
            points[place] = value
        if not points:
            return cls.default()
        return cls(points)

    def points_for(self, result: Result) -> int:
        if result.finished and result.finish_position is not None:
            return self._points.get(result.finish_position, PENALTY_POINTS)
        return PENALTY_POINTS

    def as_dict(self) -> Dict[int, int]:
        return dict(self._points)


@dataclass
class HeatResultEntry:
    competitor: Competitor
    lane: int
    result: Optional[Result] = None


@dataclass
class HeatResults:
    heat_no: int
    entries: List[HeatResultEntry] = field(default_factory=list)


@dataclass
class RoundResults:
    ordinal: int
    kind: RoundKind
    heats: List[HeatResults] = field(default_factory=list)

    @property
    def label(self) -> str:
        return "Final" if self.kind is RoundKind.FINAL else f"M{self.ordinal}"


@dataclass
class RoundOutcome:
    round_label: str
    status: ResultStatus
    points: int
    position: Optional[int] = None
    time_ms: Optional[int] = None


@dataclass
class Standing:
    competitor: Competitor
    outcomes: List[RoundOutcome] = field(default_factory=list)
    total_points: int = 0
    best_position: int = PENALTY_PLACE
    best_time: Optional[int] = None
    completed_rounds: int = 0
    rank: int = 0
    qualifies_for_final: bool = False

    def record(self, round_label: str, result: Result, points: int) -> None:
        self.outcomes.append(
            RoundOutcome(
                round_label=round_label,
                status=result.status,
                points=points,
                position=result.finish_position,
                time_ms=result.time_ms,
            )
        )
        self.total_points += points
        self.completed_rounds += 1
        if not result.finished:
            return
        if result.finish_position is not None and result.finish_position < self.best_position:
            self.best_position = result.finish_position
        if result.time_ms is not None and (self.best_time is None or result.time_ms < self.best_time):
            self.best_time = result.time_ms


@dataclass
class Standings:
    rows: List[Standing] = field(default_factory=list)
    completed_rounds: int = 0

    @property
    def qualified(self) -> List[Standing]:
        return [row for row in self.rows if row.qualifies_for_final]

    def stats(self) -> Dict[str, int]:
        return {
            "totalRiders": len(self.rows),
            "completedMotos": self.completed_rounds,
            "qualifiedForFinal": len(self.qualified),
        }


def compare_standings(a: Standing, b: Standing) -> int:
    """Order by total points, best position, best time (only when both have one), plate."""

    if a.total_points != b.total_points:
        return a.total_points - b.total_points
    if a.best_position != b.best_position:
        return a.best_position - b.best_position
    if a.best_time is not None and b.best_time is not None and a.best_time != b.best_time:
        return a.best_time - b.best_time
    return a.competitor.plate - b.competitor.plate


class StandingsCalculator:
    def __init__(self, points_table: PointsTable, final_slot_count: int = DEFAULT_FINAL_SLOTS) -> None:
        if final_slot_count < 1 or final_slot_count > MAX_GATES:
            raise ConfigurationError(f"Final slot count must be between 1 and {MAX_GATES}")
        self.points_table = points_table
        self.final_slot_count = final_slot_count

    def qualifies(self, rank: int) -> bool:
        return rank <= self.final_slot_count

    def calculate(self, rounds: Iterable[RoundResults]) -> Standings:
        """Rank every rider holding at least one result in a qualifying round.

        Final rounds are ignored. Riders with no recorded result are left out,
        while riders whose results are all DNS/DNF/DQ are ranked on penalties.
        """

        by_rider: Dict[str, Standing] = {}
        completed_rounds = 0

        for round_results in rounds:
            if round_results.kind is RoundKind.FINAL:
                continue
            if any(entry.result for heat in round_results.heats for entry in heat.entries):
                completed_rounds += 1
            for heat in round_results.heats:
                self._check_heat(round_results.label, heat)
                for entry in heat.entries:
                    if entry.result is None:
                        continue
                    standing = by_rider.get(entry.competitor.id)
                    if standing is None:
                        standing = by_rider[entry.competitor.id] = Standing(competitor=entry.competitor)
                    standing.record(round_results.label, entry.result, self.points_table.points_for(entry.result))

        rows = sorted(by_rider.values(), key=cmp_to_key(compare_standings))
        for rank, standing in enumerate(rows, start=1):
            standing.rank = rank
            standing.qualifies_for_final = self.qualifies(rank)

        logger.debug("Standings computed for %s riders over %s qualifying rounds", len(rows), completed_rounds)
        return Standings(rows=rows, completed_rounds=completed_rounds)

    @staticmethod
    def _check_heat(round_label: str, heat: HeatResults) -> None:
        lanes = [entry.lane for entry in heat.entries]
        if len(set(lanes)) != len(lanes):
            raise DataIntegrityError(f"Duplicate gate in {round_label} heat {heat.heat_no}")

        seen: Dict[int, str] = {}
        for entry in heat.entries:
            result = entry.result
            if result is None or not result.finished or result.finish_position is None:
                continue
            other = seen.get(result.finish_position)
            if other is not None:
                raise DataIntegrityError(
                    f"Position {result.finish_position} is recorded twice in {round_label} heat "
                    f"{heat.heat_no} (riders {other} and {entry.competitor.id})"
                )
            seen[result.finish_position] = entry.competitor.id


def order_heat_entries(entries: Iterable[HeatResultEntry]) -> List[HeatResultEntry]:
    """Sort a heat for display: finishers by position, then non-finishers, then unrecorded, each by gate."""

    items = list(entries)
    if not any(entry.result for entry in items):
        return sorted(items, key=lambda entry: entry.lane)

    def sort_key(entry: HeatResultEntry):
        result = entry.result
        if result is None:
            return (2, entry.lane)
        if not result.finished:
            return (1, entry.lane)
        return (0, result.finish_position or PENALTY_PLACE, entry.lane)

    return sorted(items, key=sort_key)
