from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Sequence

from glucoloop.api.types import GlucoseEffect, GlucoseEffectVelocity, GlucoseSample


def _first_at_or_after(effects: Sequence[GlucoseEffect], start_index: int, sample: GlucoseSample) -> Optional[int]:
    index = start_index
    while index < len(effects):
        if effects[index].timestamp >= sample.timestamp:
            return index
        index += 1
    return None


def counteraction_effects(
    glucose: Sequence[GlucoseSample],
    insulin_effects: Sequence[GlucoseEffect],
    minimum_interval: timedelta = timedelta(minutes=4),
) -> List[GlucoseEffectVelocity]:
    """
    Glucose movement not explained by insulin, as velocities between readings.

    Pairs of readings closer than `minimum_interval` are merged into the next
    pair. Pairs from different sources or involving a calibration are skipped.
    The result stops where the insulin effect curve runs out.
    """
    velocities: List[GlucoseEffectVelocity] = []
    if len(glucose) < 2 or not insulin_effects:
        return velocities

    effect_index = 0
    start_glucose = glucose[0]
    for end_glucose in glucose[1:]:
        elapsed = end_glucose.timestamp - start_glucose.timestamp
        if elapsed <= minimum_interval:
            continue

        pair_start = start_glucose
        start_glucose = end_glucose
        if not end_glucose.is_contiguous_with(pair_start):
            continue

        start_index = _first_at_or_after(insulin_effects, effect_index, pair_start)
        if start_index is None:
            break
        effect_index = start_index
        end_index = _first_at_or_after(insulin_effects, start_index + 1, end_glucose)
        if end_index is None:
            break

        glucose_change = end_glucose.quantity - pair_start.quantity
        effect_change = insulin_effects[end_index].quantity - insulin_effects[start_index].quantity
        minutes = elapsed.total_seconds() / 60.0
        velocities.append(
            GlucoseEffectVelocity(
                start=pair_start.timestamp,
                end=end_glucose.timestamp,
                quantity=(glucose_change - effect_change) / minutes,
            )
        )
    return velocities
