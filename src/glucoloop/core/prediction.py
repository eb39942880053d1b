from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from glucoloop.api.algorithm_io import AlgorithmInput, EffectsOptions, Prediction, PredictionEffects
from glucoloop.api.types import GlucoseEffect, GlucoseSample
from glucoloop.core.effects.carbs import dynamic_carbs_on_board, dynamic_glucose_effects, map_carb_status
from glucoloop.core.effects.counteraction import counteraction_effects
from glucoloop.core.effects.insulin import annotate_doses, insulin_glucose_effects, insulin_on_board
from glucoloop.core.effects.momentum import linear_momentum_effect
from glucoloop.core.effects.retrospective import combined_sums, subtract_effects
from glucoloop.core.errors import IncompleteSchedules, MissingGlucose
from glucoloop.core.models.insulin import PresetInsulinModelProvider
from glucoloop.core.timeline import date_floored

logger = logging.getLogger("glucoloop.prediction")


def predict_glucose(
    starting_glucose: GlucoseSample,
    effects: Sequence[Sequence[GlucoseEffect]],
    momentum: Sequence[GlucoseEffect] = (),
) -> List[GlucoseSample]:
    """
    Integrate effect curves onto a starting glucose value.

    Curves are summed as per-step deltas keyed by timestamp. Momentum is
    blended in linearly: it dominates right after the starting glucose and
    hands over to the summed effects by its last point.
    """
    deltas: Dict[datetime, float] = {}
    for timeline in effects:
        if not timeline:
            continue
        previous = timeline[0].quantity
        for effect in timeline:
            deltas[effect.timestamp] = deltas.get(effect.timestamp, 0.0) + effect.quantity - previous
            previous = effect.quantity

    if len(momentum) > 2:
        blend_count = len(momentum) - 2
        time_delta = (momentum[1].timestamp - momentum[0].timestamp).total_seconds()
        momentum_offset = (starting_glucose.timestamp - momentum[0].timestamp).total_seconds()
        blend_slope = 1.0 / blend_count
        blend_offset = momentum_offset / time_delta * blend_slope

        previous = momentum[0].quantity
        for index, effect in enumerate(momentum):
            change = effect.quantity - previous
            split = min(1.0, max(0.0, (len(momentum) - index) / blend_count - blend_slope + blend_offset))
            deltas[effect.timestamp] = (1.0 - split) * deltas.get(effect.timestamp, 0.0) + split * change
            previous = effect.quantity

    prediction = [GlucoseSample(timestamp=starting_glucose.timestamp, quantity=starting_glucose.quantity)]
    for date in sorted(deltas):
        if date <= starting_glucose.timestamp:
            continue
        prediction.append(GlucoseSample(timestamp=date, quantity=prediction[-1].quantity + deltas[date]))
    return prediction


def generate_prediction(algorithm_input: AlgorithmInput, start: Optional[datetime] = None) -> Prediction:
    """Build the glucose forecast and every effect curve that went into it."""
    if not algorithm_input.glucose_history:
        raise MissingGlucose()

    settings = algorithm_input.settings
    delta = settings.delta
    glucose = sorted(algorithm_input.glucose_history, key=lambda sample: sample.timestamp)
    latest = glucose[-1]
    start = start or latest.timestamp

    doses = sorted(algorithm_input.doses, key=lambda dose: dose.start)
    if doses:
        if not algorithm_input.basal or algorithm_input.basal[0].start > doses[0].start:
            raise IncompleteSchedules("basal", f"first dose starts at {doses[0].start.isoformat()}")

    annotated = annotate_doses(doses, algorithm_input.basal)
    model_provider = PresetInsulinModelProvider(default_preset=algorithm_input.insulin_model)

    insulin_effects = insulin_glucose_effects(
        annotated,
        model_provider,
        algorithm_input.sensitivity,
        start=date_floored(start - settings.maximum_carb_absorption, delta),
        delta=delta,
    )
    counteraction = counteraction_effects(
        glucose,
        insulin_effects,
        minimum_interval=settings.counteraction_minimum_interval,
    )

    carb_settings = algorithm_input.carb_model.settings
    carb_status = map_carb_status(
        algorithm_input.carb_entries,
        counteraction,
        algorithm_input.carb_ratio,
        algorithm_input.sensitivity,
        carb_settings,
        settings,
    )
    carb_effects = dynamic_glucose_effects(
        carb_status, start=start - settings.integral_retrospection_interval, delta=delta
    )

    discrepancies = subtract_effects(counteraction, carb_effects)
    discrepancies_summed = combined_sums(
        discrepancies,
        settings.retrospective_grouping_interval * settings.retrospective_grouping_fudge_factor,
    )
    strategy = algorithm_input.retrospective_correction.strategy(settings)
    retrospective_effects = strategy.compute_effect(
        latest,
        discrepancies_summed,
        settings.retrospective_recency,
        settings.retrospective_grouping_interval,
    )

    options = algorithm_input.effects
    selected: List[List[GlucoseEffect]] = []
    if options & EffectsOptions.CARBS:
        selected.append(carb_effects)
    if options & EffectsOptions.INSULIN:
        selected.append(insulin_effects)
    if options & EffectsOptions.RETROSPECTION:
        selected.append(retrospective_effects)

    momentum_effects: List[GlucoseEffect] = []
    if options & EffectsOptions.MOMENTUM:
        window_start = start - settings.momentum_data_interval
        momentum_input = [sample for sample in glucose if window_start <= sample.timestamp <= start]
        momentum_effects = linear_momentum_effect(
            momentum_input,
            duration=settings.momentum_duration,
            delta=delta,
            velocity_maximum=settings.momentum_velocity_maximum,
            minimum_samples=settings.momentum_minimum_samples,
        )

    forecast = predict_glucose(latest, selected, momentum_effects)

    final_date = latest.timestamp + settings.insulin_activity_duration
    if forecast[-1].timestamp < final_date:
        forecast.append(GlucoseSample(timestamp=final_date, quantity=forecast[-1].quantity))

    logger.debug(
        "Prediction from %s: %d points, %d insulin, %d carb, %d retrospective, %d momentum effects",
        start.isoformat(),
        len(forecast),
        len(insulin_effects),
        len(carb_effects),
        len(retrospective_effects),
        len(momentum_effects),
    )

    return Prediction(
        glucose=forecast,
        effects=PredictionEffects(
            insulin=insulin_effects,
            carbs=carb_effects,
            retrospective_correction=retrospective_effects,
            momentum=momentum_effects,
            insulin_counteraction=counteraction,
        ),
        doses_relative_to_basal=annotated,
        active_insulin=insulin_on_board(annotated, model_provider, start, delta),
        active_carbs=dynamic_carbs_on_board(carb_status, start, delta),
    )
