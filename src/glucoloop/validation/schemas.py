from __future__ import annotations

from datetime import datetime
from typing import Any, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LATEST_SCHEMA_VERSION = "1.0"

EffectName = Literal["carbs", "insulin", "momentum", "retrospection"]


class ScheduleSegmentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime
    end: Optional[datetime] = None
    value: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "ScheduleSegmentModel":
        if self.end is not None and self.end < self.start:
            raise ValueError("segment end must not precede start")
        return self


class TargetSegmentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime
    end: Optional[datetime] = None
    lower_bound: float = Field(gt=0)
    upper_bound: float = Field(gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "TargetSegmentModel":
        if self.end is not None and self.end < self.start:
            raise ValueError("segment end must not precede start")
        if self.upper_bound < self.lower_bound:
            raise ValueError("upper_bound must be >= lower_bound")
        return self


class GlucoseSampleModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timestamp: datetime
    value: float = Field(gt=0)
    provenance: str = ""
    is_calibration: bool = False


class DoseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["basal", "temp_basal", "bolus", "suspend", "resume"]
    start: datetime
    end: Optional[datetime] = None
    programmed_units: float = Field(default=0.0, ge=0)
    delivered_units: Optional[float] = Field(default=None, ge=0)
    rate: Optional[float] = Field(default=None, ge=0)
    insulin_type: Optional[Literal["novolog", "humalog", "apidra", "fiasp", "lyumjev", "afrezza"]] = None

    @model_validator(mode="after")
    def _check_interval(self) -> "DoseModel":
        end = self.end or self.start
        if end < self.start:
            raise ValueError("dose end must not precede start")
        if self.rate is not None and self.type not in {"basal", "temp_basal"}:
            raise ValueError("rate is only valid for basal and temp_basal doses")
        if self.rate is not None and end == self.start:
            raise ValueError("a dose given as a rate needs an end after its start")
        return self


class CarbEntryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime
    grams: float = Field(ge=0)
    absorption_minutes: Optional[float] = Field(default=None, gt=0)


class AlgorithmInputModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default=LATEST_SCHEMA_VERSION, min_length=1)
    glucose_unit: Literal["mg/dL", "mmol/L"] = "mg/dL"
    prediction_start: Optional[datetime] = None
    recommendation_type: Literal["manual_bolus", "automatic_bolus", "temp_basal"] = "temp_basal"
    retrospective_correction: Literal["standard", "integral"] = "standard"
    insulin_model: Literal[
        "rapid_acting_adult", "rapid_acting_child", "fiasp", "lyumjev", "afrezza"
    ] = "rapid_acting_adult"
    carb_model: Literal["linear", "parabolic", "piecewise_linear"] = "piecewise_linear"
    effects: List[EffectName] = Field(
        default_factory=lambda: ["carbs", "insulin", "momentum", "retrospection"]
    )

    max_bolus: float = Field(ge=0)
    max_basal_rate: float = Field(ge=0)
    suspend_threshold: Optional[float] = Field(default=None, gt=0)

    glucose_history: List[GlucoseSampleModel] = Field(default_factory=list)
    doses: List[DoseModel] = Field(default_factory=list)
    carb_entries: List[CarbEntryModel] = Field(default_factory=list)

    basal: List[ScheduleSegmentModel] = Field(default_factory=list)
    sensitivity: List[ScheduleSegmentModel] = Field(default_factory=list)
    carb_ratio: List[ScheduleSegmentModel] = Field(default_factory=list)
    target: List[TargetSegmentModel] = Field(default_factory=list)

    last_temp_basal: Optional[DoseModel] = None
    scheduled_basal_rate_matches_pump: bool = True
    basal_rate_increment: Optional[float] = Field(default=None, gt=0)
    bolus_increment: Optional[float] = Field(default=None, gt=0)

    @field_validator("schema_version", mode="before")
    @classmethod
    def _normalize_schema_version(cls, value: Any) -> str:
        if isinstance(value, (int, float)):
            return str(value)
        if value is None:
            return LATEST_SCHEMA_VERSION
        return str(value)

    @field_validator("sensitivity", "carb_ratio")
    @classmethod
    def _positive_values(cls, segments: List[ScheduleSegmentModel]) -> List[ScheduleSegmentModel]:
        for segment in segments:
            if segment.value <= 0:
                raise ValueError("schedule values must be > 0")
        return segments

    @field_validator("basal", "sensitivity", "carb_ratio", "target")
    @classmethod
    def _sorted_segments(cls, segments: List[Any]) -> List[Any]:
        for previous, current in zip(segments, segments[1:]):
            if current.start < previous.start:
                raise ValueError("schedule segments must be sorted by start")
            if previous.end is not None and previous.end > current.start:
                raise ValueError("schedule segments must not overlap")
        return segments

    def _datetimes(self) -> Iterator[datetime]:
        if self.prediction_start is not None:
            yield self.prediction_start
        for sample in self.glucose_history:
            yield sample.timestamp
        for dose in self.doses:
            yield dose.start
        for entry in self.carb_entries:
            yield entry.start
        for schedule in (self.basal, self.sensitivity, self.carb_ratio, self.target):
            for segment in schedule:
                yield segment.start

    @model_validator(mode="after")
    def _consistent_timezones(self) -> "AlgorithmInputModel":
        awareness = {value.tzinfo is not None for value in self._datetimes()}
        if len(awareness) > 1:
            raise ValueError("timestamps must be either all timezone-aware or all naive")
        return self


class AlgorithmSettingsModel(BaseModel):
    """Overrides for tuned constants; omitted fields keep their defaults."""
    model_config = ConfigDict(extra="forbid")

    delta_minutes: Optional[float] = Field(default=None, gt=0)
    momentum_data_interval_minutes: Optional[float] = Field(default=None, gt=0)
    momentum_duration_minutes: Optional[float] = Field(default=None, gt=0)
    momentum_velocity_maximum: Optional[float] = Field(default=None, gt=0)
    momentum_minimum_samples: Optional[int] = Field(default=None, ge=2)
    counteraction_minimum_interval_minutes: Optional[float] = Field(default=None, ge=0)
    retrospective_grouping_interval_minutes: Optional[float] = Field(default=None, gt=0)
    retrospective_grouping_fudge_factor: Optional[float] = Field(default=None, ge=1)
    retrospective_effect_duration_minutes: Optional[float] = Field(default=None, gt=0)
    retrospective_recency_minutes: Optional[float] = Field(default=None, gt=0)
    integral_retrospection_interval_minutes: Optional[float] = Field(default=None, gt=0)
    integral_maximum_effect_minutes: Optional[float] = Field(default=None, gt=0)
    integral_current_discrepancy_gain: Optional[float] = Field(default=None, ge=0)
    integral_persistent_discrepancy_gain: Optional[float] = Field(default=None, ge=0)
    integral_correction_time_constant_minutes: Optional[float] = Field(default=None, gt=0)
    integral_differential_gain: Optional[float] = Field(default=None, ge=0)
    integral_minimum_discrepancy: Optional[float] = Field(default=None, ge=0)
    maximum_carb_absorption_minutes: Optional[float] = Field(default=None, gt=0)
    default_carb_absorption_minutes: Optional[float] = Field(default=None, gt=0)
    carb_effect_delay_minutes: Optional[float] = Field(default=None, ge=0)
    carb_absorption_time_overrun: Optional[float] = Field(default=None, ge=1)
    use_minimum_target_until: Optional[float] = Field(default=None, ge=0, lt=1)
    partial_application_factor: Optional[float] = Field(default=None, ge=0, le=1)
    temp_basal_duration_minutes: Optional[float] = Field(default=None, gt=0)
    continuation_interval_minutes: Optional[float] = Field(default=None, ge=0)
    automatic_dosing_iob_multiplier: Optional[float] = Field(default=None, ge=0)
    input_data_recency_minutes: Optional[float] = Field(default=None, gt=0)
    insulin_activity_duration_minutes: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_durations(self) -> "AlgorithmSettingsModel":
        effect = self.retrospective_effect_duration_minutes
        delta = self.delta_minutes or 5.0
        if effect is not None and effect <= delta:
            raise ValueError("retrospective_effect_duration_minutes must exceed delta_minutes")
        return self
