from __future__ import annotations

from datetime import timedelta
from typing import List, Sequence

import numpy as np

from glucoloop.api.types import GlucoseEffect, GlucoseSample
from glucoloop.core.timeline import date_ceiled, date_floored


def is_continuous(samples: Sequence[GlucoseSample], interval: timedelta = timedelta(minutes=5)) -> bool:
    if not samples:
        return False
    return samples[-1].timestamp - samples[0].timestamp < interval * len(samples)


def has_single_provenance(samples: Sequence[GlucoseSample]) -> bool:
    return len({sample.provenance for sample in samples}) <= 1


def linear_momentum_effect(
    samples: Sequence[GlucoseSample],
    duration: timedelta = timedelta(minutes=30),
    delta: timedelta = timedelta(minutes=5),
    velocity_maximum: float = 4.0,
    minimum_samples: int = 3,
) -> List[GlucoseEffect]:
    """
    Short-horizon projection of the recent glucose trend.

    `samples` should already be limited to the momentum lookback window.
    Returns an empty curve when the samples are too few, have gaps, mix
    sources or include calibrations. Rising slopes are capped at
    `velocity_maximum` mg/dL/min.
    """
    if len(samples) < minimum_samples:
        return []
    if not is_continuous(samples, delta) or not has_single_provenance(samples):
        return []
    if any(sample.is_calibration for sample in samples):
        return []

    first = samples[0]
    last = samples[-1]
    x = np.array([(sample.timestamp - first.timestamp).total_seconds() for sample in samples], dtype=float)
    y = np.array([sample.quantity for sample in samples], dtype=float)
    if x[-1] <= 0:
        return []
    slope, _ = np.polyfit(x, y, 1)
    if not np.isfinite(slope):
        return []
    limited_slope = min(float(slope), velocity_maximum / 60.0)

    start = date_floored(last.timestamp, delta)
    end = date_ceiled(last.timestamp + duration, delta)
    effects: List[GlucoseEffect] = []
    date = start
    while date <= end:
        elapsed = max(0.0, (date - last.timestamp).total_seconds())
        effects.append(GlucoseEffect(timestamp=date, quantity=elapsed * limited_slope))
        date += delta
    return effects
