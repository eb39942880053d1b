from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class AlgorithmSettings:
    """
    Central tuned constants for prediction, correction and dosing.
    """
    # Effect discretization
    delta_minutes: float = 5.0

    # Momentum
    momentum_data_interval_minutes: float = 15.0
    momentum_duration_minutes: float = 30.0
    momentum_velocity_maximum: float = 4.0  # mg/dL/min
    momentum_minimum_samples: int = 3

    # Counteraction
    counteraction_minimum_interval_minutes: float = 4.0

    # Retrospective correction
    retrospective_grouping_interval_minutes: float = 30.0
    retrospective_grouping_fudge_factor: float = 1.01
    retrospective_effect_duration_minutes: float = 60.0
    retrospective_recency_minutes: float = 15.0
    integral_retrospection_interval_minutes: float = 180.0
    integral_maximum_effect_minutes: float = 180.0
    integral_current_discrepancy_gain: float = 1.0
    integral_persistent_discrepancy_gain: float = 2.0
    integral_correction_time_constant_minutes: float = 60.0
    integral_differential_gain: float = 2.0
    integral_minimum_discrepancy: float = 0.1  # mg/dL

    # Carbohydrates
    maximum_carb_absorption_minutes: float = 600.0
    default_carb_absorption_minutes: float = 180.0
    carb_effect_delay_minutes: float = 10.0
    carb_absorption_time_overrun: float = 1.5

    # Correction
    use_minimum_target_until: float = 0.5

    # Dosing
    partial_application_factor: float = 0.4
    temp_basal_duration_minutes: float = 30.0
    continuation_interval_minutes: float = 11.0
    automatic_dosing_iob_multiplier: float = 2.0

    # Input checks and forecast padding
    input_data_recency_minutes: float = 15.0
    insulin_activity_duration_minutes: float = 370.0

    def __post_init__(self) -> None:
        if self.delta_minutes <= 0:
            raise ValueError("delta_minutes must be > 0")
        if not 0.0 <= self.use_minimum_target_until < 1.0:
            raise ValueError("use_minimum_target_until must be in [0, 1)")
        if not 0.0 <= self.partial_application_factor <= 1.0:
            raise ValueError("partial_application_factor must be in [0, 1]")
        if self.retrospective_grouping_fudge_factor < 1.0:
            raise ValueError("retrospective_grouping_fudge_factor must be >= 1")

    @property
    def delta(self) -> timedelta:
        return timedelta(minutes=self.delta_minutes)

    @property
    def momentum_data_interval(self) -> timedelta:
        return timedelta(minutes=self.momentum_data_interval_minutes)

    @property
    def momentum_duration(self) -> timedelta:
        return timedelta(minutes=self.momentum_duration_minutes)

    @property
    def counteraction_minimum_interval(self) -> timedelta:
        return timedelta(minutes=self.counteraction_minimum_interval_minutes)

    @property
    def maximum_carb_absorption(self) -> timedelta:
        return timedelta(minutes=self.maximum_carb_absorption_minutes)

    @property
    def default_carb_absorption(self) -> timedelta:
        return timedelta(minutes=self.default_carb_absorption_minutes)

    @property
    def carb_effect_delay(self) -> timedelta:
        return timedelta(minutes=self.carb_effect_delay_minutes)

    @property
    def retrospective_grouping_interval(self) -> timedelta:
        return timedelta(minutes=self.retrospective_grouping_interval_minutes)

    @property
    def retrospective_recency(self) -> timedelta:
        return timedelta(minutes=self.retrospective_recency_minutes)

    @property
    def integral_retrospection_interval(self) -> timedelta:
        return timedelta(minutes=self.integral_retrospection_interval_minutes)

    @property
    def temp_basal_duration(self) -> timedelta:
        return timedelta(minutes=self.temp_basal_duration_minutes)

    @property
    def continuation_interval(self) -> timedelta:
        return timedelta(minutes=self.continuation_interval_minutes)

    @property
    def input_data_recency(self) -> timedelta:
        return timedelta(minutes=self.input_data_recency_minutes)

    @property
    def insulin_activity_duration(self) -> timedelta:
        return timedelta(minutes=self.insulin_activity_duration_minutes)
