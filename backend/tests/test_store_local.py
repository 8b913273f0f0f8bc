from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List

import pytest

from bmx_core import (
    BuildConflictError,
    Category,
    ConfigurationError,
    ConflictError,
    DataIntegrityError,
    DataStore,
    NotFoundError,
    RaceStatus,
    StandingsCalculator,
    build_race,
)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def store(tmp_path) -> DataStore:
    return DataStore(data_dir=tmp_path)


def _register(store: DataStore, race: Dict[str, Any], count: int, status: str = "REGISTERED") -> None:
    for i in range(1, count + 1):
        store.create_registration({
            "eventId": race["eventId"],
            "categoryId": race["categoryId"],
            "status": status,
            "rider": {"id": f"{status.lower()}-{i}", "plate": i, "firstName": f"Rider{i}", "lastName": f"Surname{i:02d}"},
        })


def _built_race(store: DataStore, riders: int = 10, rounds: int = 3) -> tuple[str, List[Dict[str, Any]]]:
    race = store.create_race({"eventId": "ev-1", "categoryId": "cat-1", "roundCount": rounds, "seedValue": "race-42"})
    _register(store, race, riders)
    config = store.get_race(race["id"])
    plan = build_race(config, store.fetch_roster(config))
    return race["id"], store.save_plan(config, plan)


def test_create_race_defaults_and_duplicate(store: DataStore) -> None:
    race = store.create_race({"eventId": "ev-1", "categoryId": "cat-1"})

    assert race["roundCount"] == 4
    assert race["status"] == RaceStatus.PLANNED.value
    assert race["seedValue"].startswith("ev-1-cat-1-")
    assert store.local_store_path.exists()

    with pytest.raises(ConflictError, match="already exists"):
        store.create_race({"eventId": "ev-1", "categoryId": "cat-1"})
    with pytest.raises(ConfigurationError, match="Round count"):
        store.create_race({"eventId": "ev-1", "categoryId": "cat-2", "roundCount": 9})
    with pytest.raises(NotFoundError):
        store.get_race("missing")


def test_roster_skips_cancelled_and_rejects_double_registration(store: DataStore) -> None:
    race = store.create_race({"eventId": "ev-1", "categoryId": "cat-1"})
    _register(store, race, 3)
    _register(store, race, 2, status="CANCELLED")

    roster = store.fetch_roster(store.get_race(race["id"]))
    assert [rider.id for rider in roster] == ["registered-1", "registered-2", "registered-3"]

    with pytest.raises(ConflictError, match="already registered"):
        _register(store, race, 1)


def test_registration_checks_category_eligibility_and_capacity(store: DataStore) -> None:
    category = Category(id="cat-1", name="Boys 9-10", min_age=9, max_age=10, gender="M", max_riders=1)
    event_date = dt.date(2026, 6, 1)
    base = {"eventId": "ev-1", "categoryId": "cat-1"}

    store.create_registration(
        {**base, "rider": {"id": "r1", "plate": 1, "firstName": "Sam", "lastName": "Lee", "dateOfBirth": "2016-05-01", "gender": "M"}},
        category=category,
        event_date=event_date,
    )
    with pytest.raises(ConfigurationError, match="full"):
        store.create_registration(
            {**base, "rider": {"id": "r2", "plate": 2, "firstName": "Max", "lastName": "Ray", "dateOfBirth": "2016-02-01", "gender": "M"}},
            category=category,
            event_date=event_date,
        )
    with pytest.raises(ConfigurationError):
        store.create_registration(
            {**base, "rider": {"id": "r3", "plate": 3, "firstName": "Ivy", "lastName": "Hart", "dateOfBirth": "2010-02-01", "gender": "F"}},
            category=category,
            event_date=event_date,
        )


def test_save_plan_persists_rounds_and_blocks_rebuild(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=10, rounds=3)

    assert [item["type"] for item in rounds] == ["M1", "M2", "Final"]
    for item in rounds:
        assert [len(heat["entries"]) for heat in item["heats"]] == [8, 2]
        assert [entry["gateNo"] for entry in item["heats"][0]["entries"]] == list(range(1, 9))

    config = store.get_race(race_id)
    assert config.has_rounds
    assert config.status is RaceStatus.ACTIVE

    with pytest.raises(BuildConflictError):
        build_race(config, store.fetch_roster(config))
    config.has_rounds = False
    with pytest.raises(BuildConflictError):
        store.save_plan(config, build_race(config, store.fetch_roster(config)))


def test_record_single_results(store: DataStore) -> None:
    _, rounds = _built_race(store)
    first, second, third = rounds[0]["heats"][0]["entries"][:3]

    record = store.record_result(first["id"], {"status": "ok", "finishPos": 1, "timeMs": 30125})
    assert record["status"] == "OK"
    assert record["finishPos"] == 1
    assert record["recordedAt"].endswith("Z")

    with pytest.raises(ConflictError, match="already exists"):
        store.record_result(first["id"], {"status": "OK", "finishPos": 2})
    with pytest.raises(ConflictError, match="Position 1 is already taken"):
        store.record_result(second["id"], {"status": "OK", "finishPos": 1})

    dnf = store.record_result(third["id"], {"status": "DNF", "finishPos": 3, "timeMs": 1})
    assert dnf["finishPos"] is None
    assert dnf["timeMs"] is None

    with pytest.raises(NotFoundError):
        store.record_result("missing", {"status": "OK", "finishPos": 1})


def test_bulk_results_validation(store: DataStore) -> None:
    race_id, rounds = _built_race(store)
    heat = rounds[0]["heats"][1]
    other_heat = rounds[0]["heats"][0]
    a, b = heat["entries"]

    with pytest.raises(ConfigurationError, match="Duplicate finish positions"):
        store.record_heat_results(heat["id"], [
            {"heatEntryId": a["id"], "status": "OK", "finishPos": 1},
            {"heatEntryId": b["id"], "status": "OK", "finishPos": 1},
        ])
    with pytest.raises(ConfigurationError, match="do not belong"):
        store.record_heat_results(heat["id"], [
            {"heatEntryId": other_heat["entries"][0]["id"], "status": "OK", "finishPos": 1},
        ])
    with pytest.raises(NotFoundError):
        store.record_heat_results(f"{race_id}:1:9", [{"heatEntryId": a["id"], "status": "OK", "finishPos": 1}])

    records = store.record_heat_results(heat["id"], [
        {"heatEntryId": a["id"], "status": "OK", "finishPos": 2, "timeMs": 31000},
        {"heatEntryId": b["id"], "status": "OK", "finishPos": 1, "timeMs": 30000},
    ])
    assert len(records) == 2

    with pytest.raises(ConflictError):
        store.record_heat_results(heat["id"], [{"heatEntryId": a["id"], "status": "OK", "finishPos": 1}])

    ordered = store.fetch_heat(heat["id"])
    assert [entry["id"] for entry in ordered] == [b["id"], a["id"]]
    assert store.race_id_for_entry(a["id"]) == race_id


def test_standings_from_stored_results_and_delete_guard(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=4, rounds=3)
    for item in rounds[:-1]:
        for heat in item["heats"]:
            store.record_heat_results(heat["id"], [
                {"heatEntryId": entry["id"], "status": "OK", "finishPos": position}
                for position, entry in enumerate(heat["entries"], start=1)
            ])

    standings = StandingsCalculator(store.fetch_points_table()).calculate(store.fetch_round_results(race_id))

    assert len(standings.rows) == 4
    assert standings.completed_rounds == 2
    assert sum(row.total_points for row in standings.rows) == 2 * (1 + 2 + 3 + 4)

    with pytest.raises(ConfigurationError, match="existing results"):
        store.delete_race(race_id)


def test_delete_race_without_results(store: DataStore) -> None:
    race_id, _ = _built_race(store, riders=3)
    store.delete_race(race_id)
    with pytest.raises(NotFoundError):
        store.get_race(race_id)
    assert store.fetch_rounds(race_id) == []


def test_points_table_round_trip(store: DataStore) -> None:
    assert store.fetch_points_table().as_dict() == {place: place for place in range(1, 9)}
    store.save_points_table({1: 1, 2: 3, 3: 5, 4: 7})
    assert store.fetch_points_table().as_dict() == {1: 1, 2: 3, 3: 5, 4: 7}
    with pytest.raises(ConfigurationError):
        store.save_points_table({1: 2, 2: 2})


def test_final_gates_replace_final_round(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=4, rounds=3)
    riders = [entry["rider"]["id"] for entry in rounds[0]["heats"][0]["entries"]]

    updated = store.save_final_gates(race_id, {rider_id: gate for gate, rider_id in zip((4, 3, 5, 6), riders)})

    final = updated[-1]
    assert final["type"] == "Final"
    assert [entry["gateNo"] for entry in final["heats"][0]["entries"]] == [3, 4, 5, 6]

    with pytest.raises(DataIntegrityError):
        store.save_final_gates(race_id, {riders[0]: 1, riders[1]: 1})
    with pytest.raises(NotFoundError):
        store.save_final_gates(race_id, {"stranger": 1})


def test_empty_final_assignment_keeps_built_final(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=4, rounds=3)

    with pytest.raises(ConfigurationError, match="No qualified riders"):
        store.save_final_gates(race_id, {})

    assert [item["type"] for item in store.fetch_rounds(race_id)] == ["M1", "M2", "Final"]
    assert store.fetch_rounds(race_id)[-1] == rounds[-1]


def test_final_gates_must_be_real_gates(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=2, rounds=3)
    first, second = (entry["rider"]["id"] for entry in rounds[0]["heats"][0]["entries"])

    with pytest.raises(ConfigurationError, match="between 1 and 8"):
        store.save_final_gates(race_id, {first: 1, second: 9})
    with pytest.raises(ConfigurationError, match="between 1 and 8"):
        store.save_final_gates(race_id, {first: 0, second: 2})


def test_update_result_corrects_position_and_keeps_heat_unique(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=3, rounds=3)
    a, b, c = rounds[0]["heats"][0]["entries"]
    store.record_result(a["id"], {"status": "OK", "finishPos": 1, "timeMs": 30000})
    store.record_result(b["id"], {"status": "OK", "finishPos": 2, "timeMs": 31000, "notes": "photo"})

    with pytest.raises(ConflictError, match="Position 1 is already taken in this heat"):
        store.update_result(b["id"], {"finishPos": 1})
    with pytest.raises(NotFoundError, match="Result not found"):
        store.update_result(c["id"], {"finishPos": 3})

    updated = store.update_result(b["id"], {"finishPos": 3})
    assert updated["finishPos"] == 3
    assert updated["timeMs"] == 31000
    assert updated["notes"] == "photo"
    assert updated["updatedAt"].endswith("Z")

    dq = store.update_result(a["id"], {"status": "DQ"})
    assert dq["finishPos"] is None
    assert dq["timeMs"] is None
    # Position 1 is free again once the DQ replaces it.
    store.record_result(c["id"], {"status": "OK", "finishPos": 1})

    standings = StandingsCalculator(store.fetch_points_table()).calculate(store.fetch_round_results(race_id))
    assert {row.competitor.id: row.total_points for row in standings.rows} == {
        a["rider"]["id"]: 9,
        b["rider"]["id"]: 3,
        c["rider"]["id"]: 1,
    }


def test_delete_result_frees_entry_and_allows_race_delete(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=2, rounds=3)
    entry = rounds[0]["heats"][0]["entries"][0]
    store.record_result(entry["id"], {"status": "OK", "finishPos": 1})

    store.delete_result(entry["id"])

    with pytest.raises(NotFoundError, match="Result not found"):
        store.delete_result(entry["id"])
    store.record_result(entry["id"], {"status": "OK", "finishPos": 2})
    store.delete_result(entry["id"])
    store.delete_race(race_id)


def test_race_completes_when_final_is_fully_recorded(store: DataStore) -> None:
    race_id, rounds = _built_race(store, riders=2, rounds=3)
    final_heat = rounds[-1]["heats"][0]
    first, second = final_heat["entries"]

    store.record_result(first["id"], {"status": "OK", "finishPos": 1})
    assert store.get_race(race_id).status is RaceStatus.ACTIVE

    store.record_result(second["id"], {"status": "DNF"})
    assert store.get_race(race_id).status is RaceStatus.COMPLETED

    store.delete_result(second["id"])
    assert store.get_race(race_id).status is RaceStatus.ACTIVE
