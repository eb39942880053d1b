from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ScheduleSegment(Generic[T]):
    """
    One pre-resolved piece of a therapy schedule.

    `end` may be omitted on the last segment of a schedule, in which case the
    segment is open-ended.
    """
    start: datetime
    end: Optional[datetime]
    value: T

    def __post_init__(self) -> None:
        if self.end is not None and self.end < self.start:
            raise ValueError(f"Schedule segment ends ({self.end}) before it starts ({self.start})")

    def contains(self, date: datetime) -> bool:
        if date < self.start:
            return False
        return self.end is None or date < self.end


@dataclass(frozen=True)
class GlucoseRange:
    lower_bound: float
    upper_bound: float

    def __post_init__(self) -> None:
        if self.upper_bound < self.lower_bound:
            raise ValueError(
                f"Target range upper bound {self.upper_bound} is below lower bound {self.lower_bound}"
            )

    @property
    def average(self) -> float:
        return (self.lower_bound + self.upper_bound) / 2.0


@dataclass(frozen=True)
class GlucoseSample:
    """A glucose value in mg/dL, observed or predicted."""
    timestamp: datetime
    quantity: float
    provenance: str = ""
    is_calibration: bool = False

    def is_contiguous_with(self, other: "GlucoseSample") -> bool:
        return self.provenance == other.provenance and not (self.is_calibration or other.is_calibration)


class DoseType(Enum):
    BASAL = "basal"
    TEMP_BASAL = "temp_basal"
    BOLUS = "bolus"
    SUSPEND = "suspend"
    RESUME = "resume"


class InsulinType(Enum):
    NOVOLOG = "novolog"
    HUMALOG = "humalog"
    APIDRA = "apidra"
    FIASP = "fiasp"
    LYUMJEV = "lyumjev"
    AFREZZA = "afrezza"


@dataclass(frozen=True)
class DoseEntry:
    type: DoseType
    start: datetime
    end: datetime
    programmed_units: float
    delivered_units: Optional[float] = None
    insulin_type: Optional[InsulinType] = None

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Dose ends ({self.end}) before it starts ({self.start})")
        if self.programmed_units < 0:
            raise ValueError(f"Programmed units must be >= 0, got {self.programmed_units}")
        if self.delivered_units is not None and self.delivered_units < 0:
            raise ValueError(f"Delivered units must be >= 0, got {self.delivered_units}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def units(self) -> float:
        return self.delivered_units if self.delivered_units is not None else self.programmed_units

    @property
    def units_per_hour(self) -> float:
        hours = self.duration.total_seconds() / 3600.0
        if hours <= 0:
            return 0.0
        return self.units / hours


@dataclass(frozen=True)
class BasalRelativeDose:
    """A dose sub-interval expressed relative to the scheduled basal rate."""
    type: DoseType
    start: datetime
    end: datetime
    scheduled_basal_rate: float
    units: float
    insulin_type: Optional[InsulinType] = None

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def net_units(self) -> float:
        if self.type == DoseType.BOLUS:
            return self.units
        if self.type == DoseType.BASAL:
            return 0.0
        hours = self.duration.total_seconds() / 3600.0
        return self.units - self.scheduled_basal_rate * hours


@dataclass(frozen=True)
class CarbEntry:
    start: datetime
    grams: float
    absorption_time: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if self.grams < 0:
            raise ValueError(f"Carb grams must be >= 0, got {self.grams}")


@dataclass(frozen=True)
class GlucoseEffect:
    """One discretized sample of a cumulative glucose effect curve (mg/dL)."""
    timestamp: datetime
    quantity: float


@dataclass(frozen=True)
class GlucoseEffectVelocity:
    """Rate of unexplained glucose change over an interval, in mg/dL/min."""
    start: datetime
    end: datetime
    quantity: float

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def effect(self) -> GlucoseEffect:
        return GlucoseEffect(timestamp=self.end, quantity=self.quantity * self.minutes)


@dataclass(frozen=True)
class GlucoseChange:
    start: datetime
    end: datetime
    quantity: float
