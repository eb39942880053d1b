from __future__ import annotations

import logging
from typing import Optional

from glucoloop.api.algorithm_io import AlgorithmInput, AlgorithmOutput, DoseRecommendationType, Prediction
from glucoloop.api.recommendations import (
    AlgorithmDoseRecommendation,
    BolusNoticeKind,
    BolusRecommendationNotice,
    DoseRecommendation,
    InsulinCorrection,
    ManualBolusRecommendation,
)
from glucoloop.core.correction import insulin_correction
from glucoloop.core.dosing import (
    Rounder,
    as_manual_bolus,
    recommend_temp_basal,
    recommended_automatic_dose,
    round_to_increment,
)
from glucoloop.core.errors import GlucoseTooOld, IncompleteSchedules, MissingGlucose, MissingSuspendThreshold
from glucoloop.core.prediction import generate_prediction
from glucoloop.core.timeline import covers, segment_at, validate_segments, value_at

logger = logging.getLogger("glucoloop")


def resolve_suspend_threshold(algorithm_input: AlgorithmInput) -> float:
    if algorithm_input.suspend_threshold is not None:
        return algorithm_input.suspend_threshold
    segment = segment_at(algorithm_input.target, algorithm_input.prediction_start)
    if segment is None:
        raise MissingSuspendThreshold()
    return segment.value.lower_bound


def _rounder(increment: Optional[float]) -> Optional[Rounder]:
    return round_to_increment(increment) if increment else None


def recommend_manual_bolus(
    algorithm_input: AlgorithmInput,
    prediction: Prediction,
    correction: InsulinCorrection,
) -> ManualBolusRecommendation:
    recommendation = as_manual_bolus(
        correction, algorithm_input.max_bolus, _rounder(algorithm_input.bolus_increment)
    )
    current = prediction.glucose[0] if prediction.glucose else None
    notice = recommendation.notice
    if notice is not None and notice.kind == BolusNoticeKind.PREDICTED_GLUCOSE_BELOW_TARGET and current is not None:
        current_target = value_at(algorithm_input.target, current.timestamp, "target")
        if current.quantity < current_target.lower_bound:
            recommendation = ManualBolusRecommendation(
                amount=recommendation.amount,
                notice=BolusRecommendationNotice(BolusNoticeKind.CURRENT_GLUCOSE_BELOW_TARGET, current),
            )
    return recommendation


def recommend_automatic_dose(
    algorithm_input: AlgorithmInput,
    prediction: Prediction,
    correction: InsulinCorrection,
) -> Optional[DoseRecommendation]:
    """
    Automatic dose for the requested recommendation type, bounded by the
    insulin-on-board limit.
    """
    settings = algorithm_input.settings
    start = algorithm_input.prediction_start
    scheduled_basal_rate = value_at(algorithm_input.basal, start, "basal")
    active_insulin = prediction.active_insulin or 0.0
    iob_headroom = algorithm_input.max_bolus * settings.automatic_dosing_iob_multiplier - active_insulin
    duration = settings.temp_basal_duration

    if algorithm_input.recommendation_type == DoseRecommendationType.AUTOMATIC_BOLUS:
        max_automatic_bolus = max(
            0.0, min(iob_headroom, algorithm_input.max_bolus * settings.partial_application_factor)
        )
        return recommended_automatic_dose(
            correction,
            start,
            scheduled_basal_rate,
            max_automatic_bolus,
            partial_application_factor=settings.partial_application_factor,
            last_temp_basal=algorithm_input.last_temp_basal,
            duration=duration,
            continuation_interval=settings.continuation_interval,
            volume_rounder=_rounder(algorithm_input.bolus_increment),
            rate_rounder=_rounder(algorithm_input.basal_rate_increment),
            scheduled_basal_rate_matches_pump=algorithm_input.scheduled_basal_rate_matches_pump,
        )

    hours = duration.total_seconds() / 3600.0
    max_rate_below_iob_limit = scheduled_basal_rate + iob_headroom / hours
    max_basal_rate = max(0.0, min(algorithm_input.max_basal_rate, max_rate_below_iob_limit))
    temp = recommend_temp_basal(
        correction,
        start,
        scheduled_basal_rate,
        max_basal_rate,
        last_temp_basal=algorithm_input.last_temp_basal,
        duration=duration,
        continuation_interval=settings.continuation_interval,
        rate_rounder=_rounder(algorithm_input.basal_rate_increment),
        scheduled_basal_rate_matches_pump=algorithm_input.scheduled_basal_rate_matches_pump,
    )
    if temp is None:
        return None
    return DoseRecommendation(basal_adjustment=temp)


def run(algorithm_input: AlgorithmInput) -> AlgorithmOutput:
    """
    One loop cycle: check the inputs, forecast glucose, classify the forecast
    and turn it into the requested kind of recommendation.
    """
    if not algorithm_input.glucose_history:
        raise MissingGlucose()

    start = algorithm_input.prediction_start
    latest = max(algorithm_input.glucose_history, key=lambda sample: sample.timestamp)
    if start - latest.timestamp >= algorithm_input.settings.input_data_recency:
        raise GlucoseTooOld(latest.timestamp, start)

    for name in ("basal", "sensitivity", "carb_ratio", "target"):
        validate_segments(getattr(algorithm_input, name), name)

    if segment_at(algorithm_input.basal, start) is None:
        raise IncompleteSchedules("basal", f"no basal rate at {start.isoformat()}")

    model = algorithm_input.insulin_model.model
    forecast_end = start + model.effect_duration
    if not covers(algorithm_input.sensitivity, start, forecast_end):
        raise IncompleteSchedules("sensitivity", f"must cover {start.isoformat()} - {forecast_end.isoformat()}")

    suspend_threshold = resolve_suspend_threshold(algorithm_input)
    if not covers(algorithm_input.target, start, forecast_end):
        raise IncompleteSchedules("target", f"must cover {start.isoformat()} - {forecast_end.isoformat()}")

    prediction = generate_prediction(algorithm_input, start)
    correction = insulin_correction(
        prediction.glucose,
        start,
        algorithm_input.target,
        suspend_threshold,
        algorithm_input.sensitivity,
        model,
        algorithm_input.settings.use_minimum_target_until,
    )
    logger.debug("Correction for %s: %s (%.3f U)", start.isoformat(), correction.kind.value, correction.units)

    if algorithm_input.recommendation_type == DoseRecommendationType.MANUAL_BOLUS:
        manual = recommend_manual_bolus(algorithm_input, prediction, correction)
        logger.info("Manual bolus recommendation: %.2f U", manual.amount)
        recommendation = AlgorithmDoseRecommendation(manual=manual)
    else:
        automatic = recommend_automatic_dose(algorithm_input, prediction, correction)
        if automatic is None:
            logger.info("No change to current delivery")
        else:
            logger.info(
                "Automatic recommendation: basal=%s bolus=%s",
                automatic.basal_adjustment,
                automatic.bolus_units,
            )
        recommendation = AlgorithmDoseRecommendation(automatic=automatic)

    return AlgorithmOutput(prediction=prediction, correction=correction, recommendation=recommendation)
