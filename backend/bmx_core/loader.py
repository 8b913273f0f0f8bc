from __future__ import annotations

import datetime as dt
import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .entry import ELIGIBLE_STATUSES, Category, Competitor, RegistrationEntry, build_roster
from .errors import BuildConflictError, ConfigurationError, ConflictError, DataIntegrityError, NotFoundError
from .gates import MAX_GATES
from .race import RaceConfiguration, RacePlan, RaceStatus, RoundKind
from .standings import (
    HeatResultEntry,
    HeatResults,
    PointsTable,
    Result,
    ResultStatus,
    RoundResults,
    order_heat_entries,
)

logger = logging.getLogger(__name__)

# Serialises read-modify-write cycles on the local JSON store.
_LOCAL_LOCK = threading.RLock()


class DataStore:
    """Races, rosters, plans and results, stored in Supabase or a local JSON file.

    The engine itself never touches storage; this class is the roster provider,
    points table provider, plan sink and result source it is wired to.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        """Initialize the DataStore.

        Args:
            data_dir: Directory holding the local JSON store used when Supabase
                is not configured.
        """
        self.data_dir = data_dir or (Path(__file__).parent.parent / "data")
        self.local_store_path = self.data_dir / "race_store.json"

        # Supabase configuration
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.supabase_races_table = os.getenv("SUPABASE_RACES_TABLE", "races")
        self.supabase_registrations_table = os.getenv("SUPABASE_REGISTRATIONS_TABLE", "registrations")
        self.supabase_points_table = os.getenv("SUPABASE_POINTS_TABLE", "points_table")
        self.supabase_entries_table = os.getenv("SUPABASE_ROUNDS_TABLE", "heat_entries")
        self.supabase_results_table = os.getenv("SUPABASE_RESULTS_TABLE", "results")

    @property
    def remote_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    # ------------------------------------------------------------------
    # Races

    def create_race(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event_id = str(payload.get("eventId") or "").strip()
        category_id = str(payload.get("categoryId") or "").strip()
        if not event_id or not category_id:
            raise ConfigurationError("eventId and categoryId are required")

        round_count = payload.get("roundCount")
        race = RaceConfiguration.create(
            race_id=str(uuid.uuid4()),
            event_id=event_id,
            category_id=category_id,
            round_count=4 if round_count is None else int(round_count),
            seed_value=payload.get("seedValue") or None,
        )
        record = self._race_record(race)

        if self.remote_enabled:
            existing = self._remote_get(
                self.supabase_races_table,
                {"select": "id", "event_id": f"eq.{event_id}", "category_id": f"eq.{category_id}", "limit": 1},
            )
            if existing:
                raise ConflictError("Race already exists for this event and category")
            self._remote_post(self.supabase_races_table, [record])
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                for row in data["races"].values():
                    if row.get("event_id") == event_id and row.get("category_id") == category_id:
                        raise ConflictError("Race already exists for this event and category")
                data["races"][race.id] = record
                self._save_local(data)

        logger.info("Created race %s for event %s / category %s", race.id, event_id, category_id)
        return self._normalise_race_row(record)

    def get_race(self, race_id: str) -> RaceConfiguration:
        if self.remote_enabled:
            rows = self._remote_get(self.supabase_races_table, {"select": "*", "id": f"eq.{race_id}", "limit": 1})
            row = rows[0] if rows else None
            has_rounds = bool(
                self._remote_get(self.supabase_entries_table, {"select": "id", "race_id": f"eq.{race_id}", "limit": 1})
            )
        else:
            data = self._load_local()
            row = data["races"].get(race_id)
            has_rounds = any(item.get("race_id") == race_id for item in data["heat_entries"])

        if not row:
            raise NotFoundError("Race not found")

        return RaceConfiguration(
            id=str(row["id"]),
            event_id=str(row.get("event_id") or ""),
            category_id=str(row.get("category_id") or ""),
            round_count=int(row.get("round_count") or 4),
            seed_value=str(row.get("seed_value") or ""),
            status=RaceStatus(row.get("status") or RaceStatus.PLANNED.value),
            has_rounds=has_rounds,
        )

    def delete_race(self, race_id: str) -> None:
        self.get_race(race_id)
        entry_rows, results = self._entry_rows_and_results(race_id)
        if any(row["id"] in results for row in entry_rows):
            raise ConfigurationError("Cannot delete race with existing results")

        if self.remote_enabled:
            self._remote_delete(self.supabase_entries_table, {"race_id": f"eq.{race_id}"})
            self._remote_delete(self.supabase_races_table, {"id": f"eq.{race_id}"})
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                data["races"].pop(race_id, None)
                data["heat_entries"] = [row for row in data["heat_entries"] if row.get("race_id") != race_id]
                self._save_local(data)
        logger.info("Deleted race %s", race_id)

    # ------------------------------------------------------------------
    # Registrations & roster

    def create_registration(
        self,
        payload: Dict[str, Any],
        category: Category | None = None,
        event_date: dt.date | None = None,
    ) -> Dict[str, Any]:
        event_id = str(payload.get("eventId") or "").strip()
        category_id = str(payload.get("categoryId") or "").strip()
        rider_payload = payload.get("rider")
        if not event_id or not category_id or not isinstance(rider_payload, dict):
            raise ConfigurationError("eventId, categoryId and rider are required")

        competitor = self._competitor_from_record(rider_payload)
        registrations = self._registration_rows(event_id, category_id)
        if any(str(row["rider"].get("id")) == competitor.id for row in registrations):
            raise ConflictError("Rider is already registered for this event and category")
        if category is not None:
            if event_date is not None:
                category.check_eligible(competitor, event_date)
            active = [row for row in registrations if str(row.get("status") or "").upper() in ELIGIBLE_STATUSES]
            category.check_capacity(len(active))

        seed = payload.get("seed")
        record = {
            "id": str(uuid.uuid4()),
            "event_id": event_id,
            "category_id": category_id,
            "status": str(payload.get("status") or "REGISTERED").upper(),
            "seed": int(seed) if seed is not None else None,
            "rider": self._competitor_record(competitor),
        }

        if self.remote_enabled:
            self._remote_post(self.supabase_registrations_table, [record])
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                data["registrations"].append(record)
                self._save_local(data)
        return record

    def fetch_roster(self, race: RaceConfiguration) -> List[Competitor]:
        registrations = [
            RegistrationEntry(
                competitor=self._competitor_from_record(row["rider"]),
                status=str(row.get("status") or ""),
                seed=row.get("seed"),
            )
            for row in self._registration_rows(race.event_id, race.category_id)
        ]
        return build_roster(registrations)

    def _registration_rows(self, event_id: str, category_id: str) -> List[Dict[str, Any]]:
        if self.remote_enabled:
            rows = self._remote_get(
                self.supabase_registrations_table,
                {"select": "*", "event_id": f"eq.{event_id}", "category_id": f"eq.{category_id}"},
            )
        else:
            rows = self._load_local()["registrations"]
        return [
            row
            for row in rows
            if row.get("event_id") == event_id
            and row.get("category_id") == category_id
            and isinstance(row.get("rider"), dict)
        ]

    # ------------------------------------------------------------------
    # Points table

    def fetch_points_table(self) -> PointsTable:
        if self.remote_enabled:
            rows = self._remote_get(
                self.supabase_points_table,
                {"select": "place,points", "is_default": "eq.true", "order": "place.asc"},
            )
        else:
            rows = self._load_local()["points_table"]
        return PointsTable.from_rows(rows)

    def save_points_table(self, points: Dict[int, int]) -> PointsTable:
        table = PointsTable(points)
        rows = [{"place": place, "points": value, "is_default": True} for place, value in sorted(table.as_dict().items())]
        if self.remote_enabled:
            self._remote_delete(self.supabase_points_table, {"is_default": "eq.true"})
            self._remote_post(self.supabase_points_table, rows)
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                data["points_table"] = rows
                self._save_local(data)
        return table

    # ------------------------------------------------------------------
    # Plans

    def save_plan(self, race: RaceConfiguration, plan: RacePlan) -> List[Dict[str, Any]]:
        """Persist every heat entry of ``plan`` and mark the race ACTIVE.

        The existence check and the insert happen under one lock locally; on
        Supabase the unique key on (race_id, moto_order, heat_no, gate_no)
        rejects a concurrent second build.
        """

        rows = self._plan_rows(race.id, plan)

        if self.remote_enabled:
            existing = self._remote_get(self.supabase_entries_table, {"select": "id", "race_id": f"eq.{race.id}", "limit": 1})
            if existing:
                raise BuildConflictError("Race has already been built")
            try:
                self._remote_post(self.supabase_entries_table, rows, raise_conflict=True)
            except ConflictError:
                raise BuildConflictError("Race has already been built") from None
            self._remote_patch(self.supabase_races_table, {"id": f"eq.{race.id}"}, {"status": RaceStatus.ACTIVE.value})
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                if race.id not in data["races"]:
                    raise NotFoundError("Race not found")
                if any(row.get("race_id") == race.id for row in data["heat_entries"]):
                    raise BuildConflictError("Race has already been built")
                data["heat_entries"].extend(rows)
                data["races"][race.id]["status"] = RaceStatus.ACTIVE.value
                self._save_local(data)

        race.has_rounds = True
        race.status = RaceStatus.ACTIVE
        logger.info("Saved plan for race %s (%s heat entries)", race.id, len(rows))
        return self.fetch_rounds(race.id)

    def save_final_gates(self, race_id: str, gates: Dict[str, int]) -> List[Dict[str, Any]]:
        """Replace the final round with one heat using ``gates`` (rider id -> gate)."""

        if not gates:
            raise ConfigurationError("No qualified riders for the final")
        if any(not 1 <= gate <= MAX_GATES for gate in gates.values()):
            raise ConfigurationError(f"Final gates must be between 1 and {MAX_GATES}")

        race = self.get_race(race_id)
        entry_rows, results = self._entry_rows_and_results(race_id)
        final_rows = [row for row in entry_rows if row.get("moto_type") == "Final"]
        if any(row["id"] in results for row in final_rows):
            raise ConfigurationError("Final already has results")

        riders = {str(row["rider"].get("id")): row["rider"] for row in entry_rows}
        missing = [rider_id for rider_id in gates if rider_id not in riders]
        if missing:
            raise NotFoundError(f"Riders not in this race: {', '.join(sorted(missing))}")
        if len(set(gates.values())) != len(gates):
            raise DataIntegrityError("Duplicate gate in final assignment")

        new_rows = [
            {
                "id": str(uuid.uuid4()),
                "race_id": race_id,
                "moto_order": race.round_count,
                "moto_type": "Final",
                "heat_no": 1,
                "gate_no": gate,
                "rider": riders[rider_id],
            }
            for rider_id, gate in gates.items()
        ]

        if self.remote_enabled:
            self._remote_delete(self.supabase_entries_table, {"race_id": f"eq.{race_id}", "moto_type": "eq.Final"})
            self._remote_post(self.supabase_entries_table, new_rows)
        else:
            with _LOCAL_LOCK:
                data = self._load_local()
                data["heat_entries"] = [
                    row
                    for row in data["heat_entries"]
                    if not (row.get("race_id") == race_id and row.get("moto_type") == "Final")
                ]
                data["heat_entries"].extend(new_rows)
                self._save_local(data)
        return self.fetch_rounds(race_id)

    def fetch_rounds(self, race_id: str) -> List[Dict[str, Any]]:
        """Return the race's rounds as nested dicts (rounds -> heats -> entries)."""

        entry_rows, results = self._entry_rows_and_results(race_id)
        rounds: Dict[int, Dict[str, Any]] = {}
        for row in sorted(entry_rows, key=lambda item: (item["moto_order"], item["heat_no"], item["gate_no"])):
            round_item = rounds.setdefault(
                row["moto_order"],
                {"orderNo": row["moto_order"], "type": row["moto_type"], "heats": {}},
            )
            heat_item = round_item["heats"].setdefault(
                row["heat_no"],
                {"id": self.heat_id(race_id, row["moto_order"], row["heat_no"]), "heatNo": row["heat_no"], "entries": []},
            )
            heat_item["entries"].append(
                {
                    "id": row["id"],
                    "gateNo": row["gate_no"],
                    "rider": row["rider"],
                    "result": results.get(row["id"]),
                }
            )

        ordered = []
        for order_no in sorted(rounds):
            item = rounds[order_no]
            item["heats"] = [item["heats"][heat_no] for heat_no in sorted(item["heats"])]
            ordered.append(item)
        return ordered

    def fetch_round_results(self, race_id: str) -> List[RoundResults]:
        round_results: List[RoundResults] = []
        for round_item in self.fetch_rounds(race_id):
            kind = RoundKind.FINAL if round_item["type"] == "Final" else RoundKind.QUALIFYING
            heats = []
            for heat in round_item["heats"]:
                entries = [
                    HeatResultEntry(
                        competitor=self._competitor_from_record(entry["rider"]),
                        lane=int(entry["gateNo"]),
                        result=self._result_from_record(entry["result"]),
                    )
                    for entry in heat["entries"]
                ]
                heats.append(HeatResults(heat_no=heat["heatNo"], entries=entries))
            round_results.append(RoundResults(ordinal=round_item["orderNo"], kind=kind, heats=heats))
        return round_results

    @staticmethod
    def heat_id(race_id: str, moto_order: int, heat_no: int) -> str:
        return f"{race_id}:{moto_order}:{heat_no}"

    def fetch_heat(self, heat_id: str) -> List[Dict[str, Any]]:
        """Return one heat's entries in result order (see ``order_heat_entries``)."""

        race_id, moto_order, heat_no = self._parse_heat_id(heat_id)
        for round_item in self.fetch_rounds(race_id):
            if round_item["orderNo"] != moto_order:
                continue
            for heat in round_item["heats"]:
                if heat["heatNo"] != heat_no:
                    continue
                by_entry = {}
                for item in heat["entries"]:
                    entry = HeatResultEntry(
                        competitor=self._competitor_from_record(item["rider"]),
                        lane=int(item["gateNo"]),
                        result=self._result_from_record(item["result"]),
                    )
                    by_entry[id(entry)] = (entry, item)
                ordered = order_heat_entries(entry for entry, _ in by_entry.values())
                return [by_entry[id(entry)][1] for entry in ordered]
        raise NotFoundError("Heat not found")

    def race_id_for_entry(self, heat_entry_id: str) -> str:
        return str(self._find_entry_row(heat_entry_id)["race_id"])

    # ------------------------------------------------------------------
    # Results

    def record_result(self, heat_entry_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self._result_from_payload(payload)

        with _LOCAL_LOCK:
            entry_row = self._find_entry_row(heat_entry_id)
            heat_rows, results = self._heat_rows_and_results(entry_row)
            if heat_entry_id in results:
                raise ConflictError("Result already exists for this heat entry")
            self._check_position_free(result, heat_rows, results, heat_entry_id)
            record = self._result_record(heat_entry_id, result, payload.get("notes"))
            self._store_results([record], self._heat_key(entry_row))
            self._sync_race_status(entry_row)

        logger.info("Recorded %s result for heat entry %s", result.status.value, heat_entry_id)
        return record

    def record_heat_results(self, heat_id: str, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        race_id, moto_order, heat_no = self._parse_heat_id(heat_id)
        if not items:
            raise ConfigurationError("At least one result is required")

        with _LOCAL_LOCK:
            entry_rows, results = self._entry_rows_and_results(race_id)
            heat_rows = [row for row in entry_rows if row["moto_order"] == moto_order and row["heat_no"] == heat_no]
            if not heat_rows:
                raise NotFoundError("Heat not found")
            if any(row["id"] in results for row in heat_rows):
                raise ConflictError("Some results already exist for this heat")

            heat_entry_ids = {row["id"] for row in heat_rows}
            parsed: List[Tuple[str, Result, Any]] = []
            for item in items:
                entry_id = str(item.get("heatEntryId") or "")
                if entry_id not in heat_entry_ids:
                    raise ConfigurationError("Some heat entry IDs do not belong to this heat")
                parsed.append((entry_id, self._result_from_payload(item), item.get("notes")))

            positions = [result.finish_position for _, result, _ in parsed if result.finished and result.finish_position]
            if len(positions) != len(set(positions)):
                raise ConfigurationError("Duplicate finish positions found")
            if len({entry_id for entry_id, _, _ in parsed}) != len(parsed):
                raise ConfigurationError("Duplicate heat entry IDs found")

            records = [self._result_record(entry_id, result, notes) for entry_id, result, notes in parsed]
            self._store_results(records, heat_id)
            self._sync_race_status(heat_rows[0])

        logger.info("Recorded %s results for heat %s", len(records), heat_id)
        return records

    def update_result(self, heat_entry_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Correct a recorded result. Only the keys present in ``changes`` are replaced."""

        with _LOCAL_LOCK:
            entry_row = self._find_entry_row(heat_entry_id)
            heat_rows, results = self._heat_rows_and_results(entry_row)
            current = results.get(heat_entry_id)
            if not current:
                raise NotFoundError("Result not found")

            merged = dict(current)
            for key in ("status", "finishPos", "timeMs", "notes"):
                if key in changes:
                    merged[key] = changes[key]
            result = self._result_from_payload(merged)
            self._check_position_free(result, heat_rows, results, heat_entry_id)

            record = self._result_record(heat_entry_id, result, merged.get("notes"))
            record["recordedAt"] = current.get("recordedAt")
            record["updatedAt"] = self._utc_now_iso()

            if self.remote_enabled:
                try:
                    self._remote_patch(
                        self.supabase_results_table,
                        {"heat_entry_id": f"eq.{heat_entry_id}"},
                        {
                            "status": record["status"],
                            "finish_pos": record["finishPos"],
                            "time_ms": record["timeMs"],
                            "notes": record["notes"],
                            "updated_at": record["updatedAt"],
                        },
                        raise_conflict=True,
                    )
                except ConflictError:
                    raise ConflictError(f"Position {result.finish_position} is already taken in this heat") from None
            else:
                data = self._load_local()
                data["results"][heat_entry_id] = record
                self._save_local(data)
            self._sync_race_status(entry_row)

        logger.info("Updated result for heat entry %s", heat_entry_id)
        return record

    def delete_result(self, heat_entry_id: str) -> None:
        with _LOCAL_LOCK:
            entry_row = self._find_entry_row(heat_entry_id)
            _, results = self._heat_rows_and_results(entry_row)
            if heat_entry_id not in results:
                raise NotFoundError("Result not found")

            if self.remote_enabled:
                self._remote_delete(self.supabase_results_table, {"heat_entry_id": f"eq.{heat_entry_id}"})
            else:
                data = self._load_local()
                data["results"].pop(heat_entry_id, None)
                self._save_local(data)
            self._sync_race_status(entry_row)

        logger.info("Deleted result for heat entry %s", heat_entry_id)

    def _check_position_free(
        self,
        result: Result,
        heat_rows: List[Dict[str, Any]],
        results: Dict[str, Dict[str, Any]],
        heat_entry_id: str,
    ) -> None:
        if not (result.finished and result.finish_position):
            return
        for row in heat_rows:
            other = results.get(row["id"])
            if row["id"] == heat_entry_id or not other:
                continue
            if other.get("status") == ResultStatus.OK.value and other.get("finishPos") == result.finish_position:
                raise ConflictError(f"Position {result.finish_position} is already taken in this heat")

    def _store_results(self, records: List[Dict[str, Any]], heat_key: str) -> None:
        """Insert result records for one heat.

        On Supabase the results table carries a unique key on ``heat_entry_id``
        and another on ``(heat_id, finish_pos)``. Non-OK rows have a null
        ``finish_pos`` and never collide, so a concurrent write that takes an
        occupied position is rejected by the database with a 409.
        """

        if self.remote_enabled:
            rows = [
                {
                    "heat_entry_id": record["heatEntryId"],
                    "heat_id": heat_key,
                    "status": record["status"],
                    "finish_pos": record["finishPos"],
                    "time_ms": record["timeMs"],
                    "notes": record["notes"],
                    "recorded_at": record["recordedAt"],
                }
                for record in records
            ]
            try:
                self._remote_post(self.supabase_results_table, rows, raise_conflict=True)
            except ConflictError as exc:
                if "finish_pos" in str(exc):
                    raise ConflictError("Finish position is already taken in this heat") from None
                raise ConflictError("Result already exists for this heat entry") from None
            return

        data = self._load_local()
        for record in records:
            data["results"][record["heatEntryId"]] = record
        self._save_local(data)

    def _sync_race_status(self, entry_row: Dict[str, Any]) -> None:
        """Move the race to COMPLETED once every final entry has a result, and back if one is removed."""

        if entry_row.get("moto_type") != "Final":
            return
        race_id = entry_row["race_id"]
        entry_rows, results = self._entry_rows_and_results(race_id)
        final_rows = [row for row in entry_rows if row.get("moto_type") == "Final"]
        done = bool(final_rows) and all(row["id"] in results for row in final_rows)
        status = RaceStatus.COMPLETED if done else RaceStatus.ACTIVE

        if self.remote_enabled:
            self._remote_patch(self.supabase_races_table, {"id": f"eq.{race_id}"}, {"status": status.value})
        else:
            data = self._load_local()
            if race_id in data["races"]:
                data["races"][race_id]["status"] = status.value
                self._save_local(data)
        logger.info("Race %s is %s", race_id, status.value)

    def _heat_key(self, entry_row: Dict[str, Any]) -> str:
        return self.heat_id(entry_row["race_id"], entry_row["moto_order"], entry_row["heat_no"])

    def _find_entry_row(self, heat_entry_id: str) -> Dict[str, Any]:
        if self.remote_enabled:
            rows = self._remote_get(self.supabase_entries_table, {"select": "*", "id": f"eq.{heat_entry_id}", "limit": 1})
        else:
            rows = [row for row in self._load_local()["heat_entries"] if row.get("id") == heat_entry_id]
        if not rows:
            raise NotFoundError("Heat entry not found")
        return rows[0]

    def _heat_rows_and_results(self, entry_row: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
        entry_rows, results = self._entry_rows_and_results(entry_row["race_id"])
        heat_rows = [
            row
            for row in entry_rows
            if row["moto_order"] == entry_row["moto_order"] and row["heat_no"] == entry_row["heat_no"]
        ]
        return heat_rows, results

    def _entry_rows_and_results(self, race_id: str) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
        if self.remote_enabled:
            entry_rows = self._remote_get(self.supabase_entries_table, {"select": "*", "race_id": f"eq.{race_id}"})
            results: Dict[str, Dict[str, Any]] = {}
            ids = [str(row["id"]) for row in entry_rows]
            if ids:
                rows = self._remote_get(
                    self.supabase_results_table,
                    {"select": "*", "heat_entry_id": f"in.({','.join(ids)})"},
                )
                for row in rows:
                    results[str(row["heat_entry_id"])] = {
                        "heatEntryId": str(row["heat_entry_id"]),
                        "status": row.get("status"),
                        "finishPos": row.get("finish_pos"),
                        "timeMs": row.get("time_ms"),
                        "notes": row.get("notes"),
                        "recordedAt": row.get("recorded_at"),
                        "updatedAt": row.get("updated_at"),
                    }
        else:
            data = self._load_local()
            entry_rows = [row for row in data["heat_entries"] if row.get("race_id") == race_id]
            ids = {row["id"] for row in entry_rows}
            results = {key: value for key, value in data["results"].items() if key in ids}
        return entry_rows, results

    @staticmethod
    def _result_from_payload(payload: Dict[str, Any]) -> Result:
        status = str(payload.get("status") or ResultStatus.OK.value).upper()
        if status not in ResultStatus.__members__:
            raise ConfigurationError(f"Unknown result status '{status}'")
        finish_pos = payload.get("finishPos")
        time_ms = payload.get("timeMs")
        return Result(
            status=ResultStatus(status),
            finish_position=int(finish_pos) if finish_pos is not None else None,
            time_ms=int(time_ms) if time_ms is not None else None,
        )

    @staticmethod
    def _result_from_record(record: Optional[Dict[str, Any]]) -> Optional[Result]:
        if not record:
            return None
        return Result(
            status=ResultStatus(record.get("status") or ResultStatus.OK.value),
            finish_position=record.get("finishPos"),
            time_ms=record.get("timeMs"),
        )

    def _result_record(self, heat_entry_id: str, result: Result, notes: Any) -> Dict[str, Any]:
        return {
            "heatEntryId": heat_entry_id,
            "status": result.status.value,
            "finishPos": result.finish_position,
            "timeMs": result.time_ms,
            "notes": str(notes) if notes else None,
            "recordedAt": self._utc_now_iso(),
            "updatedAt": None,
        }

    # ------------------------------------------------------------------
    # Record conversion helpers

    @staticmethod
    def _race_record(race: RaceConfiguration) -> Dict[str, Any]:
        return {
            "id": race.id,
            "event_id": race.event_id,
            "category_id": race.category_id,
            "round_count": race.round_count,
            "seed_value": race.seed_value,
            "status": race.status.value,
        }

    @staticmethod
    def _normalise_race_row(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(row.get("id")),
            "eventId": row.get("event_id"),
            "categoryId": row.get("category_id"),
            "roundCount": row.get("round_count"),
            "seedValue": row.get("seed_value"),
            "status": row.get("status"),
        }

    def _plan_rows(self, race_id: str, plan: RacePlan) -> List[Dict[str, Any]]:
        rows = []
        for round_plan in plan.rounds:
            for heat in round_plan.heats:
                for entry in heat.entries:
                    rows.append(
                        {
                            "id": str(uuid.uuid4()),
                            "race_id": race_id,
                            "moto_order": round_plan.ordinal,
                            "moto_type": round_plan.label,
                            "heat_no": heat.heat_no,
                            "gate_no": entry.lane,
                            "rider": self._competitor_record(entry.competitor),
                        }
                    )
        return rows

    @staticmethod
    def _competitor_record(competitor: Competitor) -> Dict[str, Any]:
        return {
            "id": competitor.id,
            "plate": competitor.plate,
            "firstName": competitor.first_name,
            "lastName": competitor.last_name,
            "club": competitor.club,
            "dateOfBirth": competitor.date_of_birth.isoformat() if competitor.date_of_birth else None,
            "gender": competitor.gender,
        }

    @staticmethod
    def _competitor_from_record(record: Dict[str, Any]) -> Competitor:
        rider_id = str(record.get("id") or "").strip()
        if not rider_id:
            raise ConfigurationError("Rider id is required")
        try:
            plate = int(record.get("plate"))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid plate number for rider {rider_id}") from exc

        dob_raw = record.get("dateOfBirth")
        try:
            date_of_birth = dt.date.fromisoformat(str(dob_raw)[:10]) if dob_raw else None
        except ValueError as exc:
            raise ConfigurationError(f"Invalid date of birth for rider {rider_id}") from exc

        return Competitor(
            id=rider_id,
            first_name=str(record.get("firstName") or "").strip(),
            last_name=str(record.get("lastName") or "").strip(),
            plate=plate,
            club=str(record.get("club") or "").strip(),
            date_of_birth=date_of_birth,
            gender=str(record.get("gender") or "").strip(),
        )

    @staticmethod
    def _parse_heat_id(heat_id: str) -> Tuple[str, int, int]:
        try:
            race_id, moto_order, heat_no = heat_id.rsplit(":", 2)
            return race_id, int(moto_order), int(heat_no)
        except ValueError as exc:
            raise NotFoundError("Heat not found") from exc

    # ------------------------------------------------------------------
    # Supabase REST helpers

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
            headers["Content-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _remote_get(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.get(self._supabase_endpoint(table), params=params, headers=self._supabase_headers())
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to read {table} from Supabase: {exc}") from exc

        if not isinstance(rows, list):
            logger.warning("Supabase %s query returned unexpected payload: %s", table, type(rows))
            return []
        return [row for row in rows if isinstance(row, dict)]

    def _remote_post(self, table: str, rows: List[Dict[str, Any]], raise_conflict: bool = False) -> None:
        headers = self._supabase_headers("return=minimal")
        headers["Content-Type"] = "application/json"
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(self._supabase_endpoint(table), params={}, json=rows, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if raise_conflict and exc.response is not None and exc.response.status_code == 409:
                raise ConflictError(self._extract_supabase_detail(exc.response) or "Conflict") from exc
            raise RuntimeError(f"Failed to write {table} to Supabase: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to write {table} to Supabase: {exc}") from exc

    def _remote_patch(
        self,
        table: str,
        params: Dict[str, Any],
        values: Dict[str, Any],
        raise_conflict: bool = False,
    ) -> None:
        headers = self._supabase_headers("return=minimal")
        headers["Content-Type"] = "application/json"
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.patch(self._supabase_endpoint(table), params=params, json=values, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if raise_conflict and exc.response is not None and exc.response.status_code == 409:
                raise ConflictError(self._extract_supabase_detail(exc.response) or "Conflict") from exc
            raise RuntimeError(f"Failed to update {table} in Supabase: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to update {table} in Supabase: {exc}") from exc

    def _remote_delete(self, table: str, params: Dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.delete(self._supabase_endpoint(table), params=params, headers=self._supabase_headers())
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Failed to delete from {table} in Supabase: {exc}") from exc

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None

    # ------------------------------------------------------------------
    # Local JSON store

    def _load_local(self) -> Dict[str, Any]:
        data = self._read_json_file(self.local_store_path, {})
        if not isinstance(data, dict):
            data = {}
        data.setdefault("races", {})
        data.setdefault("registrations", [])
        data.setdefault("points_table", [])
        data.setdefault("heat_entries", [])
        data.setdefault("results", {})
        return data

    def _save_local(self, data: Dict[str, Any]) -> None:
        self._write_json_file(self.local_store_path, data)

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise RuntimeError(f"Failed to write local data store {path}") from exc

    @staticmethod
    def _utc_now_iso() -> str:
        return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
