from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag
from typing import List, Optional, Sequence

from glucoloop.api.recommendations import AlgorithmDoseRecommendation, InsulinCorrection, TempBasalRecommendation
from glucoloop.api.types import (
    BasalRelativeDose,
    CarbEntry,
    DoseEntry,
    GlucoseEffect,
    GlucoseEffectVelocity,
    GlucoseRange,
    GlucoseSample,
    ScheduleSegment,
)
from glucoloop.core.effects.retrospective import RetrospectiveCorrectionKind
from glucoloop.core.models.carbs import CarbModelPreset
from glucoloop.core.models.insulin import InsulinModelPreset
from glucoloop.core.settings import AlgorithmSettings


class EffectsOptions(Flag):
    CARBS = 1
    INSULIN = 2
    MOMENTUM = 4
    RETROSPECTION = 8
    NONE = 0
    ALL = CARBS | INSULIN | MOMENTUM | RETROSPECTION


class DoseRecommendationType(Enum):
    MANUAL_BOLUS = "manual_bolus"
    AUTOMATIC_BOLUS = "automatic_bolus"
    TEMP_BASAL = "temp_basal"


@dataclass(frozen=True)
class AlgorithmInput:
    """
    Snapshot handed to the engine on each loop cycle.

    Glucose values (history, sensitivity, targets, suspend threshold) are in
    mg/dL. Schedules are pre-resolved, sorted, non-overlapping segments.
    """
    prediction_start: datetime
    glucose_history: Sequence[GlucoseSample]
    doses: Sequence[DoseEntry]
    carb_entries: Sequence[CarbEntry]
    basal: Sequence[ScheduleSegment[float]]
    sensitivity: Sequence[ScheduleSegment[float]]
    carb_ratio: Sequence[ScheduleSegment[float]]
    target: Sequence[ScheduleSegment[GlucoseRange]]
    max_bolus: float
    max_basal_rate: float
    suspend_threshold: Optional[float] = None
    recommendation_type: DoseRecommendationType = DoseRecommendationType.TEMP_BASAL
    retrospective_correction: RetrospectiveCorrectionKind = RetrospectiveCorrectionKind.STANDARD
    insulin_model: InsulinModelPreset = InsulinModelPreset.RAPID_ACTING_ADULT
    carb_model: CarbModelPreset = CarbModelPreset.PIECEWISE_LINEAR
    effects: EffectsOptions = EffectsOptions.ALL
    last_temp_basal: Optional[DoseEntry] = None
    scheduled_basal_rate_matches_pump: bool = True
    basal_rate_increment: Optional[float] = None
    bolus_increment: Optional[float] = None
    settings: AlgorithmSettings = field(default_factory=AlgorithmSettings)

    def __post_init__(self) -> None:
        if self.max_bolus < 0:
            raise ValueError(f"max_bolus must be >= 0, got {self.max_bolus}")
        if self.max_basal_rate < 0:
            raise ValueError(f"max_basal_rate must be >= 0, got {self.max_basal_rate}")


@dataclass(frozen=True)
class PredictionEffects:
    insulin: List[GlucoseEffect]
    carbs: List[GlucoseEffect]
    retrospective_correction: List[GlucoseEffect]
    momentum: List[GlucoseEffect]
    insulin_counteraction: List[GlucoseEffectVelocity]


@dataclass(frozen=True)
class Prediction:
    glucose: List[GlucoseSample]
    effects: PredictionEffects
    doses_relative_to_basal: List[BasalRelativeDose]
    active_insulin: Optional[float] = None
    active_carbs: Optional[float] = None


@dataclass(frozen=True)
class AlgorithmOutput:
    prediction: Prediction
    correction: InsulinCorrection
    recommendation: AlgorithmDoseRecommendation

    @property
    def temp_basal(self) -> Optional[TempBasalRecommendation]:
        automatic = self.recommendation.automatic
        return automatic.basal_adjustment if automatic else None
