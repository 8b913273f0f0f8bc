from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .errors import ConfigurationError

ELIGIBLE_STATUSES = frozenset({"REGISTERED", "CONFIRMED"})


@dataclass(frozen=True)
class Competitor:
    """A rider as seen by the race engine.

    Plate numbers are unique within an event and act as the last tie-break
    in standings, so they are kept as integers.
    """

    id: str
    first_name: str
    last_name: str
    plate: int
    club: str = ""
    date_of_birth: Optional[dt.date] = None
    gender: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Wheel(str, Enum):
    TWENTY_INCH = "TWENTY_INCH"
    TWENTY_FOUR_INCH = "TWENTY_FOUR_INCH"
    CRUISER = "Cruiser"


def age_at(date_of_birth: dt.date, on_date: dt.date) -> int:
    """Return the age in whole years reached on ``on_date``."""

    age = on_date.year - date_of_birth.year
    if (on_date.month, on_date.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


@dataclass
class Category:
    """Age, gender and wheel bracket riders register into."""

    id: str
    name: str
    min_age: int
    max_age: int
    gender: str = "Mixed"  # M, F or Mixed
    wheel: Wheel = Wheel.TWENTY_INCH
    max_riders: int = 32

    def check_eligible(self, competitor: Competitor, event_date: dt.date) -> None:
        if competitor.date_of_birth is None:
            raise ConfigurationError(f"Rider {competitor.plate} has no date of birth")

        age = age_at(competitor.date_of_birth, event_date)
        if age < self.min_age or age > self.max_age:
            raise ConfigurationError(
                f"Rider age ({age}) is not eligible for category {self.name} "
                f"({self.min_age}-{self.max_age} years)"
            )

        if self.gender != "Mixed" and competitor.gender != self.gender:
            raise ConfigurationError(
                f"Rider gender ({competitor.gender}) is not eligible for category {self.name}"
            )

    def check_capacity(self, registered_count: int) -> None:
        if registered_count >= self.max_riders:
            raise ConfigurationError("Category is full")


@dataclass
class RegistrationEntry:
    competitor: Competitor
    status: str = "REGISTERED"
    seed: Optional[int] = None  # manual ranking override, 1 is best

    @property
    def is_eligible(self) -> bool:
        return self.status.upper() in ELIGIBLE_STATUSES


def build_roster(registrations: Iterable[RegistrationEntry]) -> List[Competitor]:
    """Return the riders to build a race from.

    Cancelled registrations are dropped. Riders are ordered by manual seed
    (unseeded riders last), then surname, then plate.
    """

    eligible = [reg for reg in registrations if reg.is_eligible]
    eligible.sort(
        key=lambda reg: (
            reg.seed is None,
            reg.seed or 0,
            reg.competitor.last_name.lower(),
            reg.competitor.plate,
        )
    )
    return [reg.competitor for reg in eligible]
