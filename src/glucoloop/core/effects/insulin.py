from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from glucoloop.api.types import (
    BasalRelativeDose,
    DoseEntry,
    DoseType,
    GlucoseEffect,
    ScheduleSegment,
)
from glucoloop.core.errors import IncompleteSchedules
from glucoloop.core.models.insulin import ExponentialInsulinModel, PresetInsulinModelProvider
from glucoloop.core.timeline import covers, date_ceiled, date_floored, overlapping, value_at

logger = logging.getLogger("glucoloop.effects")

# Doses delivered within this many steps are treated as a single bolus.
MOMENTARY_DOSE_STEP_FACTOR = 1.05


def annotate_doses(
    doses: Sequence[DoseEntry],
    basal: Sequence[ScheduleSegment[float]],
) -> List[BasalRelativeDose]:
    """
    Express each dose relative to the scheduled basal rate.

    Temp basals and suspends are split where the basal schedule changes, each
    piece carrying its share of the delivered units and the rate it replaced.
    """
    annotated: List[BasalRelativeDose] = []
    for dose in doses:
        if dose.type == DoseType.BOLUS:
            annotated.append(
                BasalRelativeDose(
                    type=dose.type,
                    start=dose.start,
                    end=dose.end,
                    scheduled_basal_rate=0.0,
                    units=dose.units,
                    insulin_type=dose.insulin_type,
                )
            )
            continue
        if dose.type not in (DoseType.TEMP_BASAL, DoseType.SUSPEND):
            continue
        if dose.duration <= timedelta(0):
            continue
        if not covers(basal, dose.start, dose.end):
            raise IncompleteSchedules(
                "basal", f"dose {dose.start.isoformat()} - {dose.end.isoformat()} is not covered"
            )
        total_seconds = dose.duration.total_seconds()
        for segment in overlapping(basal, dose.start, dose.end):
            piece_start = max(dose.start, segment.start)
            piece_end = dose.end if segment.end is None else min(dose.end, segment.end)
            if piece_end <= piece_start:
                continue
            fraction = (piece_end - piece_start).total_seconds() / total_seconds
            annotated.append(
                BasalRelativeDose(
                    type=dose.type,
                    start=piece_start,
                    end=piece_end,
                    scheduled_basal_rate=segment.value,
                    units=dose.units * fraction,
                    insulin_type=dose.insulin_type,
                )
            )
    return annotated


def _is_momentary(dose: BasalRelativeDose, delta: timedelta) -> bool:
    return dose.duration.total_seconds() <= MOMENTARY_DOSE_STEP_FACTOR * delta.total_seconds()


def _continuous_delivery(
    dose: BasalRelativeDose,
    model: ExponentialInsulinModel,
    date: datetime,
    delta: timedelta,
    remaining: bool,
) -> float:
    """Sum the model over `delta` slices of a dose delivered at a constant rate."""
    dose_duration = dose.duration.total_seconds()
    step = delta.total_seconds()
    time = (date - dose.start).total_seconds()
    limit = min(math.floor((time + model.delay.total_seconds()) / step) * step, dose_duration)
    total = 0.0
    dose_offset = 0.0
    while True:
        segment = max(0.0, min(dose_offset + step, dose_duration) - dose_offset) / dose_duration
        percent_remaining = model.percent_effect_remaining(timedelta(seconds=time - dose_offset))
        total += segment * (percent_remaining if remaining else 1.0 - percent_remaining)
        dose_offset += step
        if dose_offset > limit:
            break
    return total


def percent_effected(
    dose: BasalRelativeDose, model: ExponentialInsulinModel, date: datetime, delta: timedelta
) -> float:
    if _is_momentary(dose, delta):
        return 1.0 - model.percent_effect_remaining(date - dose.start)
    return _continuous_delivery(dose, model, date, delta, remaining=False)


def percent_remaining(
    dose: BasalRelativeDose, model: ExponentialInsulinModel, date: datetime, delta: timedelta
) -> float:
    if _is_momentary(dose, delta):
        return model.percent_effect_remaining(date - dose.start)
    return _continuous_delivery(dose, model, date, delta, remaining=True)


def insulin_glucose_effects(
    doses: Sequence[BasalRelativeDose],
    model_provider: PresetInsulinModelProvider,
    sensitivity: Sequence[ScheduleSegment[float]],
    start: datetime,
    end: Optional[datetime] = None,
    delta: timedelta = timedelta(minutes=5),
) -> List[GlucoseEffect]:
    """
    Cumulative glucose effect of annotated doses, one sample per `delta`.

    Each step adds the net units absorbed since the previous step, scaled by
    the (negative) insulin sensitivity in effect at the step.
    """
    if not doses:
        return []

    start = date_floored(start, delta)
    if end is None:
        end = max(dose.end for dose in doses) + model_provider.longest_effect_duration
    end = date_ceiled(end, delta)

    active = [(dose, model_provider.model_for(dose.insulin_type)) for dose in doses if dose.net_units != 0]

    effects: List[GlucoseEffect] = []
    cumulative = 0.0
    date = start
    last_date = start
    while date <= end:
        absorbed_units = 0.0
        for dose, model in active:
            absorbed_units += dose.net_units * (
                percent_effected(dose, model, date, delta) - percent_effected(dose, model, last_date, delta)
            )
        if absorbed_units != 0:
            cumulative += absorbed_units * -value_at(sensitivity, date, "sensitivity")
        effects.append(GlucoseEffect(timestamp=date, quantity=cumulative))
        last_date = date
        date += delta

    logger.debug("Built %d insulin effect samples from %d doses", len(effects), len(doses))
    return effects


def insulin_on_board(
    doses: Sequence[BasalRelativeDose],
    model_provider: PresetInsulinModelProvider,
    at: datetime,
    delta: timedelta = timedelta(minutes=5),
) -> float:
    """Net units still active at `at`; negative when basal has been withheld."""
    total = 0.0
    for dose in doses:
        if dose.start > at or dose.net_units == 0:
            continue
        model = model_provider.model_for(dose.insulin_type)
        total += dose.net_units * percent_remaining(dose, model, at, delta)
    return total
