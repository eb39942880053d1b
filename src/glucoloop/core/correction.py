from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Optional, Sequence

from glucoloop.api.recommendations import InsulinCorrection
from glucoloop.api.types import GlucoseRange, GlucoseSample, ScheduleSegment
from glucoloop.core.errors import AlgorithmInvariantError
from glucoloop.core.models.insulin import ExponentialInsulinModel
from glucoloop.core.timeline import overlapping, value_at

logger = logging.getLogger("glucoloop.correction")

EPSILON = sys.float_info.epsilon
USE_MINIMUM_TARGET_UNTIL = 0.5


def target_glucose_value(
    percent_effect_duration: float,
    min_value: float,
    max_value: float,
    use_min_value_until: float = USE_MINIMUM_TARGET_UNTIL,
) -> float:
    """Target that holds at `min_value`, then blends linearly to `max_value` by the end of insulin action."""
    if percent_effect_duration <= use_min_value_until:
        return min_value
    if percent_effect_duration >= 1:
        return max_value
    slope = (max_value - min_value) / (1 - use_min_value_until)
    return min_value + slope * (percent_effect_duration - use_min_value_until)


def insulin_correction_units(from_value: float, to_value: float, effected_sensitivity: float) -> float:
    if effected_sensitivity <= 0:
        raise AlgorithmInvariantError(f"effected sensitivity must be positive, got {effected_sensitivity}")
    return (from_value - to_value) / effected_sensitivity


def effected_sensitivity(
    sensitivity: Sequence[ScheduleSegment[float]],
    model: ExponentialInsulinModel,
    start: datetime,
    end: datetime,
) -> float:
    """Sensitivity weighted by the share of insulin action each schedule segment sees between start and end."""
    total = 0.0
    for segment in overlapping(sensitivity, start, end):
        segment_start = max(start, segment.start) - start
        segment_end = (end if segment.end is None else min(end, segment.end)) - start
        percent_effected = model.percent_effect_remaining(segment_start) - model.percent_effect_remaining(segment_end)
        total += percent_effected * segment.value
    return total


def insulin_correction(
    prediction: Sequence[GlucoseSample],
    at: datetime,
    target: Sequence[ScheduleSegment[GlucoseRange]],
    suspend_threshold: float,
    sensitivity: Sequence[ScheduleSegment[float]],
    model: ExponentialInsulinModel,
    use_min_value_until: float = USE_MINIMUM_TARGET_UNTIL,
) -> InsulinCorrection:
    """
    Classify a forecast into the correction it calls for.

    Only points within the model's effect duration after `at` count. Any
    point below `suspend_threshold` yields a suspend immediately.
    """
    min_glucose: Optional[GlucoseSample] = None
    eventual_glucose: Optional[GlucoseSample] = None
    correcting_glucose: Optional[GlucoseSample] = None
    min_correction_units: Optional[float] = None
    sensitivity_at_min_glucose = 0.0

    effect_duration = model.effect_duration
    end_of_action = at + effect_duration

    for point in prediction:
        if point.timestamp < at or point.timestamp > end_of_action:
            continue

        if point.quantity < suspend_threshold:
            logger.debug("Predicted %.1f mg/dL at %s is below suspend threshold", point.quantity, point.timestamp)
            return InsulinCorrection.suspend(point)

        eventual_glucose = point
        percent_effect_duration = (point.timestamp - at) / effect_duration
        target_value = target_glucose_value(
            percent_effect_duration,
            suspend_threshold,
            value_at(target, point.timestamp, "target").average,
            use_min_value_until,
        )

        point_sensitivity = effected_sensitivity(sensitivity, model, at, point.timestamp)

        if min_glucose is None or point.quantity < min_glucose.quantity:
            min_glucose = point
            sensitivity_at_min_glucose = point_sensitivity

        correction_units = insulin_correction_units(
            point.quantity, target_value, max(EPSILON, point_sensitivity)
        )
        if correction_units <= 0:
            continue
        if min_correction_units is None or correction_units < min_correction_units:
            correcting_glucose = point
            min_correction_units = correction_units

    if eventual_glucose is None or min_glucose is None:
        raise AlgorithmInvariantError("prediction has no points within the insulin effect window")

    min_targets = value_at(target, min_glucose.timestamp, "target")
    eventual_targets = value_at(target, eventual_glucose.timestamp, "target")

    if min_glucose.quantity < min_targets.lower_bound and eventual_glucose.quantity < eventual_targets.lower_bound:
        units = insulin_correction_units(
            min_glucose.quantity, min_targets.average, max(EPSILON, sensitivity_at_min_glucose)
        )
        return InsulinCorrection.entirely_below_range(
            min_glucose=min_glucose,
            min_target=min_targets.lower_bound,
            units=-units,
        )

    if (
        eventual_glucose.quantity > eventual_targets.upper_bound
        and min_correction_units is not None
        and correcting_glucose is not None
    ):
        return InsulinCorrection.above_range(
            min_glucose=min_glucose,
            correcting_glucose=correcting_glucose,
            min_target=eventual_targets.lower_bound,
            units=min_correction_units,
        )

    return InsulinCorrection.in_range()
