from __future__ import annotations

import datetime as dt
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from bmx_core import (
    BuildConflictError,
    Category,
    ConfigurationError,
    ConflictError,
    DataIntegrityError,
    DataStore,
    FinalAssignmentStrategist,
    FinalMode,
    NotFoundError,
    Notifier,
    StandingsCalculator,
    build_race,
)
from bmx_core.entry import Wheel
from bmx_core.race import DEFAULT_ROUNDS, MAX_ROUNDS, MIN_ROUNDS
from bmx_core.standings import DEFAULT_FINAL_SLOTS, Standing

app = FastAPI(title="BMX Race Engine API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RESULT_STATUSES = ["OK", "DQ", "DNS", "DNF"]


class RiderModel(BaseModel):
    id: str
    plate: int
    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    club: Optional[str] = None
    date_of_birth: Optional[dt.date] = Field(default=None, alias="dateOfBirth")
    gender: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class CategoryModel(BaseModel):
    id: str
    name: str
    min_age: int = Field(alias="minAge", ge=0, le=99)
    max_age: int = Field(alias="maxAge", ge=0, le=99)
    gender: str = Field(default="Mixed", pattern="^(M|F|Mixed)$")
    wheel: Wheel = Wheel.TWENTY_INCH
    max_riders: int = Field(default=32, alias="maxRiders", ge=1, le=64)

    model_config = ConfigDict(populate_by_name=True)


class RegistrationCreate(BaseModel):
    event_id: str = Field(alias="eventId")
    category_id: str = Field(alias="categoryId")
    rider: RiderModel
    seed: Optional[int] = Field(default=None, ge=1)
    status: str = Field(default="REGISTERED", pattern="^(REGISTERED|CONFIRMED|CANCELLED)$")
    category: Optional[CategoryModel] = None
    event_date: Optional[dt.date] = Field(default=None, alias="eventDate")

    model_config = ConfigDict(populate_by_name=True)


class RaceCreate(BaseModel):
    event_id: str = Field(alias="eventId")
    category_id: str = Field(alias="categoryId")
    round_count: int = Field(default=DEFAULT_ROUNDS, alias="roundCount", ge=MIN_ROUNDS, le=MAX_ROUNDS)

    model_config = ConfigDict(populate_by_name=True)


class RaceModel(BaseModel):
    id: str
    event_id: str = Field(alias="eventId")
    category_id: str = Field(alias="categoryId")
    round_count: int = Field(alias="roundCount")
    seed_value: str = Field(alias="seedValue")
    status: str

    model_config = ConfigDict(populate_by_name=True)


class BuildRequest(BaseModel):
    custom_seed: Optional[str] = Field(default=None, alias="customSeed")

    model_config = ConfigDict(populate_by_name=True)


class BuildStats(BaseModel):
    riders_count: int = Field(alias="ridersCount")
    motos_count: int = Field(alias="motosCount")
    heats_count: int = Field(alias="heatsCount")
    seed: str

    model_config = ConfigDict(populate_by_name=True)


class BuildResponse(BaseModel):
    message: str
    race: RaceModel
    motos: List[Dict[str, Any]]
    stats: BuildStats


class RaceDetailResponse(BaseModel):
    race: RaceModel
    motos: List[Dict[str, Any]]


class MotoOutcomeModel(BaseModel):
    moto_type: str = Field(alias="motoType")
    position: Optional[int] = None
    points: int
    time: Optional[int] = None
    status: str

    model_config = ConfigDict(populate_by_name=True)


class StandingModel(BaseModel):
    rider: RiderModel
    motos: List[MotoOutcomeModel]
    total_points: int = Field(alias="totalPoints")
    best_position: int = Field(alias="bestPosition")
    best_time: Optional[int] = Field(default=None, alias="bestTime")
    completed_motos: int = Field(alias="completedMotos")
    rank: int
    qualifies_for_final: bool = Field(alias="qualifiesForFinal")

    model_config = ConfigDict(populate_by_name=True)


class StandingsStats(BaseModel):
    total_riders: int = Field(alias="totalRiders")
    completed_motos: int = Field(alias="completedMotos")
    qualified_for_final: int = Field(alias="qualifiedForFinal")

    model_config = ConfigDict(populate_by_name=True)


class StandingsResponse(BaseModel):
    race: RaceModel
    standings: List[StandingModel]
    stats: StandingsStats


class FinalRequest(BaseModel):
    gate_choice: bool = Field(default=False, alias="gateChoice")

    model_config = ConfigDict(populate_by_name=True)


class FinalAssignmentModel(BaseModel):
    rider: RiderModel
    gate_no: int = Field(alias="gateNo")
    choice_order: int = Field(alias="choiceOrder")

    model_config = ConfigDict(populate_by_name=True)


class FinalResponse(BaseModel):
    mode: FinalMode
    assignments: List[FinalAssignmentModel]


class ResultCreate(BaseModel):
    heat_entry_id: str = Field(alias="heatEntryId")
    finish_pos: Optional[int] = Field(default=None, alias="finishPos", ge=1, le=8)
    time_ms: Optional[int] = Field(default=None, alias="timeMs", ge=0)
    status: str = Field(default="OK", pattern="^(OK|DQ|DNS|DNF)$")
    notes: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class ResultUpdate(BaseModel):
    finish_pos: Optional[int] = Field(default=None, alias="finishPos", ge=1, le=8)
    time_ms: Optional[int] = Field(default=None, alias="timeMs", ge=0)
    status: Optional[str] = Field(default=None, pattern="^(OK|DQ|DNS|DNF)$")
    notes: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True)


class BulkResultsCreate(BaseModel):
    heat_id: str = Field(alias="heatId")
    results: List[ResultCreate] = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ResultModel(BaseModel):
    heat_entry_id: str = Field(alias="heatEntryId")
    status: str
    finish_pos: Optional[int] = Field(default=None, alias="finishPos")
    time_ms: Optional[int] = Field(default=None, alias="timeMs")
    notes: Optional[str] = None
    recorded_at: Optional[str] = Field(default=None, alias="recordedAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class BulkResultsResponse(BaseModel):
    created: int
    results: List[ResultModel]


class HeatEntryModel(BaseModel):
    id: str
    gate_no: int = Field(alias="gateNo")
    rider: RiderModel
    result: Optional[ResultModel] = None

    model_config = ConfigDict(populate_by_name=True)


class HeatResultsResponse(BaseModel):
    heat_id: str = Field(alias="heatId")
    entries: List[HeatEntryModel]
    total_entries: int = Field(alias="totalEntries")
    completed_results: int = Field(alias="completedResults")
    is_complete: bool = Field(alias="isComplete")

    model_config = ConfigDict(populate_by_name=True)


class PointsTablePayload(BaseModel):
    points: Dict[int, int]


@lru_cache(maxsize=1)
def store() -> DataStore:
    return DataStore()


@lru_cache(maxsize=1)
def notifier() -> Notifier:
    return Notifier()


def final_slot_count() -> int:
    try:
        return int(os.getenv("FINAL_SLOT_COUNT", str(DEFAULT_FINAL_SLOTS)))
    except ValueError:
        return DEFAULT_FINAL_SLOTS


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConflictError, DataIntegrityError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def race_model(race) -> RaceModel:
    return RaceModel(
        id=race.id,
        eventId=race.event_id,
        categoryId=race.category_id,
        roundCount=race.round_count,
        seedValue=race.seed_value,
        status=race.status.value,
    )


def rider_model(competitor) -> RiderModel:
    return RiderModel(
        id=competitor.id,
        plate=competitor.plate,
        firstName=competitor.first_name,
        lastName=competitor.last_name,
        club=competitor.club or None,
        dateOfBirth=competitor.date_of_birth,
        gender=competitor.gender or None,
    )


def standing_model(standing: Standing) -> StandingModel:
    return StandingModel(
        rider=rider_model(standing.competitor),
        motos=[
            MotoOutcomeModel(
                motoType=outcome.round_label,
                position=outcome.position,
                points=outcome.points,
                time=outcome.time_ms,
                status=outcome.status.value,
            )
            for outcome in standing.outcomes
        ],
        totalPoints=standing.total_points,
        bestPosition=standing.best_position,
        bestTime=standing.best_time,
        completedMotos=standing.completed_rounds,
        rank=standing.rank,
        qualifiesForFinal=standing.qualifies_for_final,
    )


def compute_standings(race_id: str):
    rounds = store().fetch_round_results(race_id)
    calculator = StandingsCalculator(store().fetch_points_table(), final_slot_count=final_slot_count())
    return calculator.calculate(rounds)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/reference")
def reference() -> dict:
    return {
        "resultStatuses": RESULT_STATUSES,
        "roundCount": {"min": MIN_ROUNDS, "max": MAX_ROUNDS, "default": DEFAULT_ROUNDS},
        "finalSlots": final_slot_count(),
        "finalModes": [mode.value for mode in FinalMode],
    }


@app.get("/points-table")
def points_table() -> dict:
    try:
        table = store().fetch_points_table()
    except RuntimeError as exc:
        raise http_error(exc) from exc
    return {"points": table.as_dict()}


@app.put("/points-table")
def update_points_table(payload: PointsTablePayload) -> dict:
    try:
        table = store().save_points_table(payload.points)
    except (ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc
    return {"points": table.as_dict()}


@app.post("/registrations", status_code=201)
def create_registration(payload: RegistrationCreate) -> dict:
    category = None
    if payload.category is not None:
        category = Category(**payload.category.model_dump())
    try:
        record = store().create_registration(
            payload.model_dump(by_alias=True, mode="json", exclude={"category", "event_date"}),
            category=category,
            event_date=payload.event_date,
        )
    except (ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc
    return record


@app.post("/races", response_model=RaceModel, status_code=201)
def create_race(payload: RaceCreate):
    try:
        record = store().create_race(payload.model_dump(by_alias=True))
    except (ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc
    return RaceModel(**record)


@app.get("/races/{race_id}", response_model=RaceDetailResponse)
def get_race(race_id: str):
    try:
        race = store().get_race(race_id)
        motos = store().fetch_rounds(race_id)
    except (LookupError, RuntimeError) as exc:
        raise http_error(exc) from exc
    return RaceDetailResponse(race=race_model(race), motos=motos)


@app.delete("/races/{race_id}")
def delete_race(race_id: str) -> dict:
    try:
        store().delete_race(race_id)
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc
    return {"message": "Race deleted successfully"}


@app.post("/races/{race_id}/build", response_model=BuildResponse)
def build(race_id: str, payload: Optional[BuildRequest] = None):
    custom_seed = payload.custom_seed if payload else None
    try:
        race = store().get_race(race_id)
        if race.has_rounds:
            raise BuildConflictError("Race has already been built")
        riders = store().fetch_roster(race)
        plan = build_race(race, riders, custom_seed=custom_seed)
        motos = store().save_plan(race, plan)
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    notifier().race_built(race.event_id, race.id, motos)
    return BuildResponse(
        message="Race built successfully",
        race=race_model(race),
        motos=motos,
        stats=BuildStats(**plan.stats()),
    )


@app.get("/races/{race_id}/standings", response_model=StandingsResponse)
def standings(race_id: str):
    try:
        race = store().get_race(race_id)
        table = compute_standings(race_id)
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    return StandingsResponse(
        race=race_model(race),
        standings=[standing_model(row) for row in table.rows],
        stats=StandingsStats(**table.stats()),
    )


@app.post("/races/{race_id}/final", response_model=FinalResponse)
def assign_final(race_id: str, payload: Optional[FinalRequest] = None):
    mode = FinalMode.GATE_CHOICE if payload and payload.gate_choice else FinalMode.RANDOM
    try:
        race = store().get_race(race_id)
        if not race.has_rounds:
            raise ConfigurationError("Race has not been built yet")
        table = compute_standings(race_id)
        if not table.qualified:
            raise ConfigurationError("No qualified riders for the final")
        strategist = FinalAssignmentStrategist(race.seed_value, final_slot_count=final_slot_count())
        assignments = strategist.assign(table.qualified, mode)
        store().save_final_gates(race_id, {item.competitor.id: item.lane for item in assignments})
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    response = FinalResponse(
        mode=mode,
        assignments=[
            FinalAssignmentModel(rider=rider_model(item.competitor), gateNo=item.lane, choiceOrder=item.choice_order)
            for item in assignments
        ],
    )
    notifier().final_assigned(race.event_id, race.id, response.model_dump(by_alias=True, mode="json")["assignments"])
    return response


@app.post("/results", response_model=ResultModel, status_code=201)
def create_result(payload: ResultCreate):
    try:
        race_id = store().race_id_for_entry(payload.heat_entry_id)
        record = store().record_result(payload.heat_entry_id, payload.model_dump(by_alias=True))
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    notifier().results_recorded(race_id, [record])
    return ResultModel(**record)


@app.put("/results/{heat_entry_id}", response_model=ResultModel)
def update_result(heat_entry_id: str, payload: ResultUpdate):
    try:
        race_id = store().race_id_for_entry(heat_entry_id)
        record = store().update_result(heat_entry_id, payload.model_dump(by_alias=True, exclude_unset=True))
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    notifier().result_updated(race_id, record)
    return ResultModel(**record)


@app.delete("/results/{heat_entry_id}")
def delete_result(heat_entry_id: str) -> dict:
    try:
        race_id = store().race_id_for_entry(heat_entry_id)
        store().delete_result(heat_entry_id)
    except (LookupError, RuntimeError) as exc:
        raise http_error(exc) from exc

    notifier().result_deleted(race_id, heat_entry_id)
    return {"message": "Result deleted successfully"}



@app.post("/results/bulk", response_model=BulkResultsResponse, status_code=201)
def create_bulk_results(payload: BulkResultsCreate):
    try:
        records = store().record_heat_results(
            payload.heat_id,
            [item.model_dump(by_alias=True) for item in payload.results],
        )
    except (LookupError, ValueError, RuntimeError) as exc:
        raise http_error(exc) from exc

    race_id = payload.heat_id.rsplit(":", 2)[0]
    notifier().results_recorded(race_id, records, heat_id=payload.heat_id)
    return BulkResultsResponse(created=len(records), results=[ResultModel(**record) for record in records])


@app.get("/heats/{heat_id}/results", response_model=HeatResultsResponse)
def heat_results(heat_id: str):
    try:
        entries = store().fetch_heat(heat_id)
    except (LookupError, RuntimeError) as exc:
        raise http_error(exc) from exc

    completed = sum(1 for entry in entries if entry.get("result"))
    return HeatResultsResponse(
        heatId=heat_id,
        entries=[HeatEntryModel(**entry) for entry in entries],
        totalEntries=len(entries),
        completedResults=completed,
        isComplete=bool(entries) and completed == len(entries),
    )
