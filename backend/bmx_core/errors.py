"""Typed failures raised by the race engine and its data store."""

from __future__ import annotations


class RaceEngineError(Exception):
    """Base class for every failure the engine reports to its caller."""


class ConfigurationError(RaceEngineError, ValueError):
    """Caller input that cannot produce a plan or a result (round count, empty roster...)."""


class ConflictError(ConfigurationError):
    """The record being created already exists (race, registration, result)."""


class BuildConflictError(ConflictError):
    """The race already has rounds attached; a plan is only built once."""


class DataIntegrityError(RaceEngineError, RuntimeError):
    """Stored heats or results break a uniqueness rule (duplicate lane or finish position)."""


class NotFoundError(RaceEngineError, LookupError):
    """A race, heat or heat entry referenced by the caller does not exist."""
