from __future__ import annotations

from functools import cmp_to_key

import pytest

from bmx_core import (
    ConfigurationError,
    DataIntegrityError,
    PointsTable,
    Result,
    ResultStatus,
    RoundKind,
    StandingsCalculator,
)
from bmx_core.entry import Competitor
from bmx_core.standings import (
    HeatResultEntry,
    HeatResults,
    RoundResults,
    Standing,
    compare_standings,
    order_heat_entries,
)

A = Competitor(id="a", first_name="Ava", last_name="Archer", plate=11)
B = Competitor(id="b", first_name="Ben", last_name="Brook", plate=22)
C = Competitor(id="c", first_name="Cal", last_name="Carter", plate=33)
D = Competitor(id="d", first_name="Dee", last_name="Dunn", plate=44)
E = Competitor(id="e", first_name="Eli", last_name="Evans", plate=55)


def _ok(position: int, time_ms: int | None = None) -> Result:
    return Result(status=ResultStatus.OK, finish_position=position, time_ms=time_ms)


def _heat(*entries: tuple) -> HeatResults:
    return HeatResults(
        heat_no=1,
        entries=[HeatResultEntry(competitor=rider, lane=lane, result=result) for rider, lane, result in entries],
    )


def _qualifying_rounds() -> list[RoundResults]:
    dnf = Result(status=ResultStatus.DNF)
    return [
        RoundResults(1, RoundKind.QUALIFYING, [_heat((A, 1, _ok(1, 30000)), (B, 2, _ok(2, 31000)), (C, 3, _ok(3)), (D, 4, dnf), (E, 5, None))]),
        RoundResults(2, RoundKind.QUALIFYING, [_heat((A, 2, Result(status="DNF")), (B, 3, _ok(1, 30500)), (C, 4, _ok(2)), (D, 1, _ok(3)), (E, 6, None))]),
        RoundResults(3, RoundKind.QUALIFYING, [_heat((A, 3, _ok(3, 29000)), (B, 4, _ok(4)), (C, 1, _ok(1)), (D, 2, _ok(2)), (E, 7, None))]),
    ]


def test_totals_ranking_and_exclusion_of_unrecorded_riders() -> None:
    standings = StandingsCalculator(PointsTable.default()).calculate(_qualifying_rounds())

    assert [row.competitor.id for row in standings.rows] == ["c", "b", "a", "d"]
    assert [row.total_points for row in standings.rows] == [6, 7, 13, 14]
    assert [row.rank for row in standings.rows] == [1, 2, 3, 4]
    assert all(row.qualifies_for_final for row in standings.rows)

    ava = standings.rows[2]
    assert ava.best_position == 1
    assert ava.best_time == 29000
    assert ava.completed_rounds == 3
    assert [outcome.round_label for outcome in ava.outcomes] == ["M1", "M2", "M3"]
    assert ava.outcomes[1].status is ResultStatus.DNF
    assert ava.outcomes[1].points == 9

    assert standings.stats() == {"totalRiders": 4, "completedMotos": 3, "qualifiedForFinal": 4}


def test_final_round_results_do_not_count() -> None:
    rounds = _qualifying_rounds()
    rounds.append(RoundResults(4, RoundKind.FINAL, [_heat((D, 1, _ok(1)), (A, 2, _ok(2)))]))

    standings = StandingsCalculator(PointsTable.default()).calculate(rounds)

    assert {row.competitor.id: row.total_points for row in standings.rows}["d"] == 14
    assert standings.completed_rounds == 3


def test_rider_with_only_non_ok_results_is_ranked_on_penalties() -> None:
    rounds = [RoundResults(1, RoundKind.QUALIFYING, [_heat((A, 1, _ok(1)), (B, 2, Result(status="DNS")))])]
    standings = StandingsCalculator(PointsTable.default()).calculate(rounds)

    ben = standings.rows[1]
    assert ben.competitor.id == "b"
    assert ben.total_points == 9
    assert ben.best_position == 9
    assert ben.best_time is None


def test_custom_points_table_applies_and_unlisted_places_score_nine() -> None:
    table = PointsTable({1: 1, 2: 3, 3: 5})
    rounds = [RoundResults(1, RoundKind.QUALIFYING, [_heat((A, 1, _ok(1)), (B, 2, _ok(2)), (C, 3, _ok(4)))])]

    standings = StandingsCalculator(table).calculate(rounds)

    assert [(row.competitor.id, row.total_points) for row in standings.rows] == [("a", 1), ("b", 3), ("c", 9)]


def test_qualification_cut_uses_final_slot_count() -> None:
    standings = StandingsCalculator(PointsTable.default(), final_slot_count=2).calculate(_qualifying_rounds())
    assert [row.competitor.id for row in standings.qualified] == ["c", "b"]
    assert standings.rows[2].qualifies_for_final is False


def test_duplicate_finish_position_in_heat_is_a_data_error() -> None:
    rounds = [RoundResults(1, RoundKind.QUALIFYING, [_heat((A, 1, _ok(2)), (B, 2, _ok(2)))])]
    with pytest.raises(DataIntegrityError, match="Position 2 is recorded twice"):
        StandingsCalculator(PointsTable.default()).calculate(rounds)


def _standing(rider: Competitor, total: int, best_position: int, best_time: int | None) -> Standing:
    return Standing(competitor=rider, total_points=total, best_position=best_position, best_time=best_time)


def test_tie_breaks() -> None:
    ordered = sorted(
        [
            _standing(D, 10, 2, 31000),
            _standing(C, 10, 2, None),
            _standing(B, 10, 2, 30000),
            _standing(A, 10, 1, 35000),
            _standing(E, 9, 4, None),
        ],
        key=cmp_to_key(compare_standings),
    )
    # C has no time, so plate decides C against B and D.
    assert [row.competitor.id for row in ordered][:2] == ["e", "a"]
    assert compare_standings(_standing(B, 10, 2, 30000), _standing(D, 10, 2, 31000)) < 0
    assert compare_standings(_standing(C, 10, 2, None), _standing(B, 10, 2, 30000)) > 0
    assert compare_standings(_standing(B, 10, 2, 30000), _standing(A, 10, 2, 30000)) > 0


def test_result_clears_position_and_time_unless_ok() -> None:
    result = Result(status="DQ", finish_position=1, time_ms=30000)
    assert result.finish_position is None
    assert result.time_ms is None
    with pytest.raises(ConfigurationError):
        Result(status="OK", finish_position=9)
    with pytest.raises(ConfigurationError):
        Result(status="OK", finish_position=1, time_ms=-5)


def test_points_table_validation_and_rows() -> None:
    with pytest.raises(ConfigurationError):
        PointsTable({1: 1, 2: 1})
    with pytest.raises(ConfigurationError):
        PointsTable({9: 20})
    with pytest.raises(ConfigurationError):
        PointsTable({1: 0})

    table = PointsTable.from_rows([{"place": 1, "points": 2}, {"place": 9, "points": 9}, {"place": 2, "points": 4}])
    assert table.as_dict() == {1: 2, 2: 4}
    assert PointsTable.from_rows([]).as_dict() == {place: place for place in range(1, 9)}


def test_order_heat_entries_for_display() -> None:
    entries = [
        HeatResultEntry(A, 1, None),
        HeatResultEntry(B, 2, Result(status="DNF")),
        HeatResultEntry(C, 3, _ok(2)),
        HeatResultEntry(D, 4, _ok(1)),
        HeatResultEntry(E, 5, Result(status="DNS")),
    ]
    assert [entry.competitor.id for entry in order_heat_entries(entries)] == ["d", "c", "b", "e", "a"]

    unrecorded = [HeatResultEntry(A, 3), HeatResultEntry(B, 1), HeatResultEntry(C, 2)]
    assert [entry.lane for entry in order_heat_entries(unrecorded)] == [1, 2, 3]


def test_duplicate_gate_in_heat_is_a_data_error() -> None:
    rounds = [RoundResults(1, RoundKind.QUALIFYING, [_heat((A, 3, _ok(1)), (B, 3, _ok(2)))])]
    with pytest.raises(DataIntegrityError, match="Duplicate gate in M1 heat 1"):
        StandingsCalculator(PointsTable.default()).calculate(rounds)
