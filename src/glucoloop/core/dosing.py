from __future__ import annotations

import logging
import math
import sys
from datetime import datetime, timedelta
from typing import Callable, Optional

from glucoloop.api.recommendations import (
    BolusNoticeKind,
    BolusRecommendationNotice,
    CorrectionKind,
    DoseRecommendation,
    InsulinCorrection,
    ManualBolusRecommendation,
    TempBasalRecommendation,
)
from glucoloop.api.types import DoseEntry, DoseType

logger = logging.getLogger("glucoloop.dosing")

Rounder = Callable[[float], float]

EPSILON = sys.float_info.epsilon


def round_to_increment(increment: float) -> Rounder:
    """Rounder that floors to the pump's deliverable `increment`."""
    if increment <= 0:
        raise ValueError(f"increment must be > 0, got {increment}")

    def rounder(value: float) -> float:
        steps = math.floor(value / increment + 1e-9)
        return round(steps * increment, 10)

    return rounder


def matches_rate(recommendation: TempBasalRecommendation, rate: float) -> bool:
    return abs(rate - recommendation.units_per_hour) < EPSILON


def as_temp_basal(
    correction: InsulinCorrection,
    scheduled_basal_rate: float,
    max_basal_rate: float,
    duration: timedelta,
    rate_rounder: Optional[Rounder] = None,
) -> TempBasalRecommendation:
    hours = duration.total_seconds() / 3600.0
    rate = correction.signed_units / hours if hours > 0 else 0.0
    if correction.kind != CorrectionKind.SUSPEND:
        rate += scheduled_basal_rate
    rate = min(max_basal_rate, max(0.0, rate))
    if rate_rounder is not None:
        rate = min(max_basal_rate, max(0.0, rate_rounder(rate)))
    return TempBasalRecommendation(units_per_hour=rate, duration=duration)


def if_necessary(
    recommendation: TempBasalRecommendation,
    at: datetime,
    scheduled_basal_rate: float,
    last_temp_basal: Optional[DoseEntry],
    continuation_interval: timedelta,
    scheduled_basal_rate_matches_pump: bool = True,
) -> Optional[TempBasalRecommendation]:
    """
    Suppress redundant pump commands.

    Returns None for "no change", `TempBasalRecommendation.cancel()` when the
    running temp basal should simply end, or `recommendation` itself.
    """
    if last_temp_basal is not None and last_temp_basal.type == DoseType.TEMP_BASAL and last_temp_basal.end > at:
        if (
            matches_rate(recommendation, last_temp_basal.units_per_hour)
            and last_temp_basal.end - at > continuation_interval
        ):
            return None
        if matches_rate(recommendation, scheduled_basal_rate) and scheduled_basal_rate_matches_pump:
            return TempBasalRecommendation.cancel()
    elif matches_rate(recommendation, scheduled_basal_rate) and scheduled_basal_rate_matches_pump:
        return None
    return recommendation


def bolus_recommendation_notice(correction: InsulinCorrection) -> Optional[BolusRecommendationNotice]:
    if correction.kind == CorrectionKind.SUSPEND:
        return BolusRecommendationNotice(BolusNoticeKind.GLUCOSE_BELOW_SUSPEND_THRESHOLD, correction.min_glucose)
    if correction.kind == CorrectionKind.IN_RANGE:
        return BolusRecommendationNotice(BolusNoticeKind.PREDICTED_GLUCOSE_IN_RANGE)
    if correction.kind == CorrectionKind.ENTIRELY_BELOW_RANGE:
        return BolusRecommendationNotice(BolusNoticeKind.ALL_GLUCOSE_BELOW_TARGET, correction.min_glucose)
    if correction.units > 0 and correction.min_glucose.quantity < correction.min_target:
        return BolusRecommendationNotice(BolusNoticeKind.PREDICTED_GLUCOSE_BELOW_TARGET, correction.min_glucose)
    return None


def as_manual_bolus(
    correction: InsulinCorrection,
    max_bolus: float,
    volume_rounder: Optional[Rounder] = None,
) -> ManualBolusRecommendation:
    amount = min(max_bolus, max(0.0, correction.signed_units))
    if volume_rounder is not None:
        amount = min(max_bolus, max(0.0, volume_rounder(amount)))
    return ManualBolusRecommendation(amount=amount, notice=bolus_recommendation_notice(correction))


def as_partial_bolus(
    correction: InsulinCorrection,
    partial_application_factor: float,
    max_bolus_units: float,
    volume_rounder: Optional[Rounder] = None,
) -> float:
    """Deliver only a fraction of the needed units now; the rest is left to later cycles."""
    partial_dose = correction.signed_units * partial_application_factor
    rounded = volume_rounder(partial_dose) if volume_rounder else partial_dose
    limit = volume_rounder(max_bolus_units) if volume_rounder and math.isfinite(max_bolus_units) else max_bolus_units
    return min(max(0.0, rounded), limit)


def recommend_temp_basal(
    correction: InsulinCorrection,
    at: datetime,
    scheduled_basal_rate: float,
    max_basal_rate: float,
    last_temp_basal: Optional[DoseEntry] = None,
    duration: timedelta = timedelta(minutes=30),
    continuation_interval: timedelta = timedelta(minutes=11),
    rate_rounder: Optional[Rounder] = None,
    scheduled_basal_rate_matches_pump: bool = True,
) -> Optional[TempBasalRecommendation]:
    """
    Temp basal for a correction, or None when the pump needs no new command.

    High temps are not set while the minimum forecast dips below target.
    """
    if (
        correction.kind == CorrectionKind.ABOVE_RANGE
        and correction.min_glucose.quantity < correction.min_target
    ):
        max_basal_rate = min(max_basal_rate, scheduled_basal_rate)

    temp = as_temp_basal(correction, scheduled_basal_rate, max_basal_rate, duration, rate_rounder)
    result = if_necessary(
        temp,
        at,
        scheduled_basal_rate,
        last_temp_basal,
        continuation_interval,
        scheduled_basal_rate_matches_pump,
    )
    if correction.kind == CorrectionKind.SUSPEND:
        logger.warning("Suspending insulin delivery: %.1f mg/dL predicted", correction.min_glucose.quantity)
    return result


def recommended_automatic_dose(
    correction: InsulinCorrection,
    at: datetime,
    scheduled_basal_rate: float,
    max_automatic_bolus: float,
    partial_application_factor: float = 0.4,
    last_temp_basal: Optional[DoseEntry] = None,
    duration: timedelta = timedelta(minutes=30),
    continuation_interval: timedelta = timedelta(minutes=11),
    volume_rounder: Optional[Rounder] = None,
    rate_rounder: Optional[Rounder] = None,
    scheduled_basal_rate_matches_pump: bool = True,
) -> Optional[DoseRecommendation]:
    """
    Temp basal capped at the scheduled rate plus a partial bolus.

    The bolus is withheld while the minimum forecast is below the range's
    lower bound. Returns None when neither part calls for action.
    """
    if (
        correction.kind == CorrectionKind.ABOVE_RANGE
        and correction.min_glucose.quantity < correction.min_target
    ):
        max_automatic_bolus = 0.0

    temp: Optional[TempBasalRecommendation] = as_temp_basal(
        correction, scheduled_basal_rate, scheduled_basal_rate, duration, rate_rounder
    )
    temp = if_necessary(
        temp,
        at,
        scheduled_basal_rate,
        last_temp_basal,
        continuation_interval,
        scheduled_basal_rate_matches_pump,
    )

    bolus_units = as_partial_bolus(correction, partial_application_factor, max_automatic_bolus, volume_rounder)

    if correction.kind == CorrectionKind.SUSPEND:
        logger.warning("Suspending insulin delivery: %.1f mg/dL predicted", correction.min_glucose.quantity)
    if temp is not None or bolus_units > 0:
        return DoseRecommendation(basal_adjustment=temp, bolus_units=bolus_units)
    return None
