"""Race build and standings engine for multi-heat BMX racing."""

from .entry import Category, Competitor, RegistrationEntry, build_roster
from .errors import (
    BuildConflictError,
    ConfigurationError,
    ConflictError,
    DataIntegrityError,
    NotFoundError,
    RaceEngineError,
)
from .final import FinalAssignment, FinalAssignmentStrategist, FinalMode
from .gates import gate_sequence, partition_heats
from .loader import DataStore
from .notify import Notifier
from .race import RaceConfiguration, RacePlan, RaceStatus, RoundBuilder, RoundKind, build_race
from .rng import SeededRandom
from .standings import PointsTable, Result, ResultStatus, Standings, StandingsCalculator

__all__ = [
    "BuildConflictError",
    "Category",
    "Competitor",
    "ConfigurationError",
    "ConflictError",
    "DataIntegrityError",
    "DataStore",
    "FinalAssignment",
    "FinalAssignmentStrategist",
    "FinalMode",
    "NotFoundError",
    "Notifier",
    "PointsTable",
    "RaceConfiguration",
    "RaceEngineError",
    "RacePlan",
    "RaceStatus",
    "RegistrationEntry",
    "Result",
    "ResultStatus",
    "RoundBuilder",
    "RoundKind",
    "SeededRandom",
    "Standings",
    "StandingsCalculator",
    "build_race",
    "build_roster",
    "gate_sequence",
    "partition_heats",
]
