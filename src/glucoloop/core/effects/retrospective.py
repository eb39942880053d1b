from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Sequence

from glucoloop.api.types import GlucoseChange, GlucoseEffect, GlucoseEffectVelocity, GlucoseSample
from glucoloop.core.settings import AlgorithmSettings
from glucoloop.core.timeline import date_ceiled, date_floored

logger = logging.getLogger("glucoloop.effects")


def subtract_effects(
    velocities: Sequence[GlucoseEffectVelocity],
    effects: Sequence[GlucoseEffect],
) -> List[GlucoseEffect]:
    """
    Per-velocity discrepancy between counteraction and a uniform effect curve.

    Each velocity contributes its full glucose change, less the change of
    `effects` accumulated since the previous discrepancy. Velocities longer
    than one effect step yield a single discrepancy at their end. Once
    `effects` runs out its change is taken as zero.
    """
    if velocities:
        effects = [effect for effect in effects if effect.timestamp >= velocities[0].end]
    if effects:
        velocities = [velocity for velocity in velocities if velocity.end >= effects[0].timestamp]

    subtracted: List[GlucoseEffect] = []
    previous_value = effects[0].quantity if effects else 0.0
    pending_change = 0.0
    index = 0
    for effect in effects[1:]:
        if index >= len(velocities):
            break
        pending_change += effect.quantity - previous_value
        previous_value = effect.quantity
        velocity = velocities[index]
        if velocity.end > effect.timestamp:
            continue
        subtracted.append(GlucoseEffect(timestamp=velocity.end, quantity=velocity.effect.quantity - pending_change))
        pending_change = 0.0
        index += 1

    for velocity in velocities[index:]:
        subtracted.append(velocity.effect)
    return subtracted


def combined_sums(effects: Sequence[GlucoseEffect], duration: timedelta) -> List[GlucoseChange]:
    """Rolling sums of `effects` over trailing windows of `duration`, oldest first."""
    sums: List[GlucoseChange] = []
    last_valid = 0
    for effect in reversed(effects):
        sums.append(GlucoseChange(start=effect.timestamp, end=effect.timestamp, quantity=effect.quantity))
        for index in range(last_valid, len(sums) - 1):
            current = sums[index]
            if current.end > effect.timestamp + duration:
                last_valid += 1
                continue
            sums[index] = GlucoseChange(
                start=min(current.start, effect.timestamp),
                end=max(current.end, effect.timestamp),
                quantity=current.quantity + effect.quantity,
            )
    sums.reverse()
    return sums


def decay_effect(
    glucose: GlucoseSample,
    rate: float,
    duration: timedelta,
    interval: timedelta = timedelta(minutes=5),
) -> List[GlucoseEffect]:
    """
    Glucose curve starting at `glucose` whose velocity (mg/dL/s) decays
    linearly from `rate` to zero over `duration`.
    """
    start = date_floored(glucose.timestamp, interval)
    end = date_ceiled(glucose.timestamp + duration, interval)
    step = interval.total_seconds()
    slope = -rate / (duration.total_seconds() - step)

    values = [GlucoseEffect(timestamp=start, quantity=glucose.quantity)]
    last_value = glucose.quantity
    date = start + interval
    while date < end:
        last_value += (rate + slope * (date - start).total_seconds()) * step
        values.append(GlucoseEffect(timestamp=date, quantity=last_value))
        date += interval
    return values


def _is_recent(glucose: GlucoseSample, discrepancy: Optional[GlucoseChange], recency: timedelta) -> bool:
    return discrepancy is not None and glucose.timestamp - discrepancy.end <= recency


@dataclass(frozen=True)
class StandardRetrospectiveCorrection:
    """Carries the latest discrepancy forward as a velocity decaying to zero."""
    effect_duration: timedelta = timedelta(minutes=60)
    interval: timedelta = timedelta(minutes=5)

    def compute_effect(
        self,
        starting_glucose: GlucoseSample,
        discrepancies_summed: Sequence[GlucoseChange],
        recency_interval: timedelta,
        grouping_interval: timedelta,
    ) -> List[GlucoseEffect]:
        current = discrepancies_summed[-1] if discrepancies_summed else None
        if current is None or not _is_recent(starting_glucose, current, recency_interval):
            return decay_effect(starting_glucose, 0.0, self.effect_duration, self.interval)

        discrepancy_time = max(current.end - current.start, grouping_interval)
        velocity = current.quantity / discrepancy_time.total_seconds()
        return decay_effect(starting_glucose, velocity, self.effect_duration, self.interval)


@dataclass(frozen=True)
class IntegralRetrospectiveCorrection:
    """
    Proportional, integral and differential response to persistent discrepancies.

    Recent discrepancies sharing the sign of the latest one are integrated
    with exponential forgetting, and the effect duration grows with the
    length of that run up to `maximum_effect_duration`.
    """
    effect_duration: timedelta = timedelta(minutes=60)
    maximum_effect_duration: timedelta = timedelta(minutes=180)
    retrospection_interval: timedelta = timedelta(minutes=180)
    current_discrepancy_gain: float = 1.0
    persistent_discrepancy_gain: float = 2.0
    correction_time_constant: timedelta = timedelta(minutes=60)
    differential_gain: float = 2.0
    minimum_discrepancy: float = 0.1
    interval: timedelta = timedelta(minutes=5)

    @property
    def integral_forget(self) -> float:
        return math.exp(-self.interval.total_seconds() / self.correction_time_constant.total_seconds())

    @property
    def integral_gain(self) -> float:
        forget = self.integral_forget
        return ((1 - forget) / forget) * (self.persistent_discrepancy_gain - self.current_discrepancy_gain)

    @property
    def proportional_gain(self) -> float:
        return self.current_discrepancy_gain - self.integral_gain

    def compute_effect(
        self,
        starting_glucose: GlucoseSample,
        discrepancies_summed: Sequence[GlucoseChange],
        recency_interval: timedelta,
        grouping_interval: timedelta,
    ) -> List[GlucoseEffect]:
        current = discrepancies_summed[-1] if discrepancies_summed else None
        if current is None or not _is_recent(starting_glucose, current, recency_interval):
            return decay_effect(starting_glucose, 0.0, self.effect_duration, self.interval)

        glucose_date = starting_glucose.timestamp
        window_start = glucose_date - self.retrospection_interval
        past = [change for change in discrepancies_summed if change.end >= window_start and change.start <= glucose_date]

        current_sign = math.copysign(1.0, current.quantity)
        recent: List[float] = []
        next_discrepancy = current
        for change in reversed(past):
            if (
                math.copysign(1.0, change.quantity) == current_sign
                and next_discrepancy.end - change.end <= recency_interval
                and abs(change.quantity) >= self.minimum_discrepancy
            ):
                recent.append(change.quantity)
                next_discrepancy = change
            else:
                break
        recent.reverse()

        step_minutes = self.interval.total_seconds() / 60.0
        effect_minutes = self.effect_duration.total_seconds() / 60.0
        integral_effect_minutes = effect_minutes - 2.0 * step_minutes
        integral = 0.0
        for discrepancy in recent:
            integral = self.integral_forget * integral + self.integral_gain * discrepancy
            integral_effect_minutes += 2.0 * step_minutes
        integral_effect_minutes = min(integral_effect_minutes, self.maximum_effect_duration.total_seconds() / 60.0)

        differential = 0.0
        if len(recent) > 1:
            differential = current.quantity - recent[-2]
        differential_correction = self.differential_gain * differential if differential < 0 else 0.0

        total = self.proportional_gain * current.quantity + integral + differential_correction
        scaled = total * effect_minutes / integral_effect_minutes
        logger.debug(
            "Integral retrospective correction total=%.2f over %d buckets, effect %.0f min",
            total,
            len(recent),
            integral_effect_minutes,
        )

        discrepancy_time = max(current.end - current.start, grouping_interval)
        velocity = scaled / discrepancy_time.total_seconds()
        return decay_effect(starting_glucose, velocity, timedelta(minutes=integral_effect_minutes), self.interval)


class RetrospectiveCorrectionKind(Enum):
    STANDARD = "standard"
    INTEGRAL = "integral"

    def strategy(self, settings: Optional[AlgorithmSettings] = None):
        settings = settings or AlgorithmSettings()
        duration = timedelta(minutes=settings.retrospective_effect_duration_minutes)
        if self == RetrospectiveCorrectionKind.STANDARD:
            return StandardRetrospectiveCorrection(effect_duration=duration, interval=settings.delta)
        return IntegralRetrospectiveCorrection(
            effect_duration=duration,
            maximum_effect_duration=timedelta(minutes=settings.integral_maximum_effect_minutes),
            retrospection_interval=settings.integral_retrospection_interval,
            current_discrepancy_gain=settings.integral_current_discrepancy_gain,
            persistent_discrepancy_gain=settings.integral_persistent_discrepancy_gain,
            correction_time_constant=timedelta(minutes=settings.integral_correction_time_constant_minutes),
            differential_gain=settings.integral_differential_gain,
            minimum_discrepancy=settings.integral_minimum_discrepancy,
            interval=settings.delta,
        )
