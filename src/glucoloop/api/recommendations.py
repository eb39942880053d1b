from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from glucoloop.api.types import GlucoseSample


class CorrectionKind(Enum):
    IN_RANGE = "in_range"
    ABOVE_RANGE = "above_range"
    ENTIRELY_BELOW_RANGE = "entirely_below_range"
    SUSPEND = "suspend"


@dataclass(frozen=True)
class InsulinCorrection:
    """
    Classification of a forecast into exactly one dosing-need state.

    Use the named constructors; each kind carries a different payload:

    - in_range: nothing
    - above_range: min_glucose, correcting_glucose, min_target, units
    - entirely_below_range: min_glucose, min_target, units
    - suspend: min_glucose

    `units` is always >= 0. For entirely_below_range it is the insulin to
    withhold relative to the scheduled basal, see `signed_units`.
    """
    kind: CorrectionKind
    min_glucose: Optional[GlucoseSample] = None
    correcting_glucose: Optional[GlucoseSample] = None
    min_target: Optional[float] = None
    units: float = 0.0

    def __post_init__(self) -> None:
        if self.units < 0:
            raise ValueError(f"Correction units must be >= 0, got {self.units}")
        needs_min = self.kind != CorrectionKind.IN_RANGE
        if needs_min != (self.min_glucose is not None):
            raise ValueError(f"{self.kind.value} correction has an invalid min_glucose payload")
        needs_target = self.kind in (CorrectionKind.ABOVE_RANGE, CorrectionKind.ENTIRELY_BELOW_RANGE)
        if needs_target != (self.min_target is not None):
            raise ValueError(f"{self.kind.value} correction has an invalid min_target payload")
        if (self.kind == CorrectionKind.ABOVE_RANGE) != (self.correcting_glucose is not None):
            raise ValueError(f"{self.kind.value} correction has an invalid correcting_glucose payload")
        if not needs_target and self.units != 0:
            raise ValueError(f"{self.kind.value} correction carries no units")

    @classmethod
    def in_range(cls) -> "InsulinCorrection":
        return cls(kind=CorrectionKind.IN_RANGE)

    @classmethod
    def above_range(
        cls,
        min_glucose: GlucoseSample,
        correcting_glucose: GlucoseSample,
        min_target: float,
        units: float,
    ) -> "InsulinCorrection":
        return cls(
            kind=CorrectionKind.ABOVE_RANGE,
            min_glucose=min_glucose,
            correcting_glucose=correcting_glucose,
            min_target=min_target,
            units=units,
        )

    @classmethod
    def entirely_below_range(
        cls, min_glucose: GlucoseSample, min_target: float, units: float
    ) -> "InsulinCorrection":
        return cls(
            kind=CorrectionKind.ENTIRELY_BELOW_RANGE,
            min_glucose=min_glucose,
            min_target=min_target,
            units=units,
        )

    @classmethod
    def suspend(cls, min_glucose: GlucoseSample) -> "InsulinCorrection":
        return cls(kind=CorrectionKind.SUSPEND, min_glucose=min_glucose)

    @property
    def signed_units(self) -> float:
        """Units relative to the scheduled basal; negative when insulin should be withheld."""
        if self.kind == CorrectionKind.ENTIRELY_BELOW_RANGE:
            return -self.units
        return self.units


@dataclass(frozen=True)
class TempBasalRecommendation:
    units_per_hour: float
    duration: timedelta

    def __post_init__(self) -> None:
        if self.units_per_hour < 0:
            raise ValueError(f"Temp basal rate must be >= 0, got {self.units_per_hour}")

    @classmethod
    def cancel(cls) -> "TempBasalRecommendation":
        return cls(units_per_hour=0.0, duration=timedelta(0))

    @property
    def is_cancel(self) -> bool:
        return self.units_per_hour == 0 and self.duration == timedelta(0)


@dataclass(frozen=True)
class DoseRecommendation:
    """An automatic dose: an optional temp basal and an optional bolus."""
    basal_adjustment: Optional[TempBasalRecommendation] = None
    bolus_units: Optional[float] = None


class BolusNoticeKind(Enum):
    GLUCOSE_BELOW_SUSPEND_THRESHOLD = "glucose_below_suspend_threshold"
    PREDICTED_GLUCOSE_IN_RANGE = "predicted_glucose_in_range"
    ALL_GLUCOSE_BELOW_TARGET = "all_glucose_below_target"
    PREDICTED_GLUCOSE_BELOW_TARGET = "predicted_glucose_below_target"
    CURRENT_GLUCOSE_BELOW_TARGET = "current_glucose_below_target"


@dataclass(frozen=True)
class BolusRecommendationNotice:
    kind: BolusNoticeKind
    glucose: Optional[GlucoseSample] = None


@dataclass(frozen=True)
class ManualBolusRecommendation:
    amount: float
    notice: Optional[BolusRecommendationNotice] = None


@dataclass(frozen=True)
class AlgorithmDoseRecommendation:
    manual: Optional[ManualBolusRecommendation] = None
    automatic: Optional[DoseRecommendation] = None
