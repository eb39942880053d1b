from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from glucoloop.api.types import CarbEntry, GlucoseEffect, GlucoseEffectVelocity, ScheduleSegment
from glucoloop.core.models.carbs import CarbModelSettings
from glucoloop.core.settings import AlgorithmSettings
from glucoloop.core.timeline import date_ceiled, date_floored, value_at

logger = logging.getLogger("glucoloop.effects")

_EPSILON = sys.float_info.epsilon


@dataclass(frozen=True)
class ObservedAbsorption:
    start: datetime
    end: datetime
    grams: float


@dataclass(frozen=True)
class CarbStatus:
    """Observed and estimated absorption of one carb entry."""
    entry: CarbEntry
    carb_sensitivity: float  # mg/dL per gram
    observed_grams: float
    estimated_time_remaining: timedelta
    time_to_absorb_observed: timedelta
    observed_duration: timedelta
    maximum_absorption_time: timedelta
    observed_timeline: Tuple[ObservedAbsorption, ...]
    model_settings: CarbModelSettings
    delay: timedelta

    @property
    def estimated_absorption_time(self) -> timedelta:
        return self.observed_duration + self.estimated_time_remaining

    def absorbed_carbs(self, date: datetime, delta: timedelta) -> float:
        model = self.model_settings.absorption_model
        total = self.entry.grams
        if date < self.entry.start or total <= 0:
            return 0.0

        if not self.observed_timeline:
            absorption_time = self.estimated_absorption_time
            if absorption_time <= timedelta(0):
                return total
            return model.absorbed_carbs(total, date - self.entry.start - self.delay, absorption_time)

        observation_end = self.observed_timeline[-1].end
        if date > observation_end:
            effective_absorption_time = self.time_to_absorb_observed + self.estimated_time_remaining
            if effective_absorption_time <= timedelta(0):
                return total
            effective_time = date - observation_end + self.time_to_absorb_observed
            return min(model.absorbed_carbs(total, effective_time, effective_absorption_time), total)

        before = [value for value in self.observed_timeline if value.start + delta <= date]
        absorbed = 0.0
        if before:
            last = before.pop()
            duration = (last.end - last.start).total_seconds()
            fraction = 1.0 if duration <= 0 else min(1.0, (date - last.start).total_seconds() / duration)
            absorbed = last.grams * fraction
        absorbed += sum(value.grams for value in before)
        return min(absorbed, total)

    def carbs_on_board(self, date: datetime, delta: timedelta) -> float:
        if date < self.entry.start:
            return 0.0
        return max(self.entry.grams - self.absorbed_carbs(date, delta), 0.0)


class _CarbStatusBuilder:
    def __init__(
        self,
        entry: CarbEntry,
        carb_sensitivity: float,
        declared_absorption_time: timedelta,
        settings: AlgorithmSettings,
        model_settings: CarbModelSettings,
    ) -> None:
        self.entry = entry
        self.carb_sensitivity = carb_sensitivity
        self.model_settings = model_settings
        self.delay = settings.carb_effect_delay
        self.maximum_absorption_time = declared_absorption_time * settings.carb_absorption_time_overrun
        self.initial_absorption_time = min(
            declared_absorption_time * model_settings.initial_absorption_time_overrun,
            self.maximum_absorption_time,
        )
        self.observed_effect = 0.0
        self.observed_timeline: List[ObservedAbsorption] = []
        self.observed_completion_date: Optional[datetime] = None
        self.last_effect_date = entry.start

    @property
    def model(self):
        return self.model_settings.absorption_model

    @property
    def max_end_date(self) -> datetime:
        return self.entry.start + self.maximum_absorption_time + self.delay

    @property
    def entry_effect(self) -> float:
        return self.entry.grams * self.carb_sensitivity

    @property
    def remaining_effect(self) -> float:
        return max(self.entry_effect - self.observed_effect, 0.0)

    @property
    def observed_grams(self) -> float:
        return self.observed_effect / self.carb_sensitivity

    @property
    def observed_duration(self) -> timedelta:
        end = self.observed_completion_date or self.last_effect_date
        return end - self.entry.start

    @property
    def min_absorption_rate(self) -> float:
        return self.entry.grams / self.maximum_absorption_time.total_seconds()

    @property
    def min_predicted_grams(self) -> float:
        elapsed = self.last_effect_date - self.entry.start - self.delay
        return self.model.unabsorbed_carbs(self.entry.grams, elapsed, self.maximum_absorption_time)

    @property
    def remaining_grams(self) -> float:
        return max(0.0, min(self.entry.grams - self.observed_grams, self.min_predicted_grams))

    @property
    def clamped_grams(self) -> float:
        return self.entry.grams - self.remaining_grams

    @property
    def estimated_time_remaining(self) -> timedelta:
        elapsed = self.observed_duration
        not_to_exceed = max(self.maximum_absorption_time - elapsed, timedelta(0))
        if not_to_exceed <= timedelta(0):
            return timedelta(0)

        initial_rate = self.entry.grams / self.initial_absorption_time.total_seconds()
        dynamic = timedelta(seconds=self.remaining_grams / initial_rate)

        standby = self.initial_absorption_time * self.model_settings.adaptive_rate_standby_interval_fraction
        absorbed_fraction = self.clamped_grams / self.entry.grams
        if (
            self.model_settings.adaptive_absorption_rate_enabled
            and elapsed >= standby
            and 0 < absorbed_fraction < 1
        ):
            dynamic = self.model.absorption_time(absorbed_fraction, elapsed) - elapsed

        return max(min(dynamic, not_to_exceed), timedelta(0))

    @property
    def time_to_absorb_observed(self) -> timedelta:
        observed = self.model.time_to_absorb(self.clamped_grams / self.entry.grams, self.initial_absorption_time)
        return min(observed, self.maximum_absorption_time)

    def is_active(self, velocity: GlucoseEffectVelocity) -> bool:
        return self.entry.start <= velocity.start < self.max_end_date

    def absorption_rate_at(self, elapsed: timedelta) -> float:
        """Grams per second the entry is expected to absorb `elapsed` after it started."""
        if not self.model_settings.adaptive_absorption_rate_enabled:
            return self.min_absorption_rate
        dynamic_time = min(self.observed_duration + self.estimated_time_remaining, self.maximum_absorption_time)
        if dynamic_time <= timedelta(0):
            return self.min_absorption_rate
        seconds = dynamic_time.total_seconds()
        modeled = self.entry.grams / seconds * self.model.percent_rate_at_percent_time(
            elapsed.total_seconds() / seconds
        )
        return max(modeled, self.min_absorption_rate)

    def add_next_effect(self, effect: float, start: datetime, end: datetime) -> None:
        if start < self.entry.start:
            return
        self.observed_effect += effect
        self.last_effect_date = end
        if self.observed_completion_date is None:
            self.observed_timeline.append(
                ObservedAbsorption(start=start, end=end, grams=effect / self.carb_sensitivity)
            )
            if self.observed_effect + _EPSILON >= self.entry_effect:
                self.observed_completion_date = end

    def build(self) -> CarbStatus:
        return CarbStatus(
            entry=self.entry,
            carb_sensitivity=self.carb_sensitivity,
            observed_grams=self.clamped_grams,
            estimated_time_remaining=self.estimated_time_remaining,
            time_to_absorb_observed=self.time_to_absorb_observed,
            observed_duration=self.observed_duration,
            maximum_absorption_time=self.maximum_absorption_time,
            observed_timeline=tuple(self.observed_timeline),
            model_settings=self.model_settings,
            delay=self.delay,
        )


def map_carb_status(
    entries: Sequence[CarbEntry],
    velocities: Sequence[GlucoseEffectVelocity],
    carb_ratio: Sequence[ScheduleSegment[float]],
    sensitivity: Sequence[ScheduleSegment[float]],
    model_settings: CarbModelSettings,
    settings: Optional[AlgorithmSettings] = None,
) -> List[CarbStatus]:
    """
    Attribute positive counteraction to carb entries.

    Each interval's effect is split across the entries active at its start in
    proportion to their expected absorption rates. Effect left over once
    every entry has taken its share is credited to the last active entry.
    """
    settings = settings or AlgorithmSettings()
    builders: List[_CarbStatusBuilder] = []
    for entry in entries:
        if entry.grams <= 0:
            continue
        carb_sensitivity = value_at(sensitivity, entry.start, "sensitivity") / value_at(
            carb_ratio, entry.start, "carb_ratio"
        )
        builders.append(
            _CarbStatusBuilder(
                entry=entry,
                carb_sensitivity=carb_sensitivity,
                declared_absorption_time=entry.absorption_time or settings.default_carb_absorption,
                settings=settings,
                model_settings=model_settings,
            )
        )

    for velocity in velocities:
        if velocity.end <= velocity.start:
            continue
        active = [builder for builder in builders if builder.is_active(velocity)]
        if not active:
            continue

        effect_value = max(0.0, velocity.effect.quantity)
        rates = [builder.absorption_rate_at(velocity.start - builder.entry.start) for builder in active]
        total_rate = sum(rates)

        for builder, rate in zip(active, rates):
            partial = 0.0
            if total_rate > 0:
                partial = min(builder.remaining_effect, rate / total_rate * effect_value)
                total_rate -= rate
                effect_value -= partial
            builder.add_next_effect(partial, velocity.start, velocity.end)

        if effect_value > _EPSILON:
            active[-1].add_next_effect(effect_value, velocity.start, velocity.end)

    return [builder.build() for builder in builders]


def dynamic_glucose_effects(
    statuses: Sequence[CarbStatus],
    start: datetime,
    end: Optional[datetime] = None,
    delta: timedelta = timedelta(minutes=5),
) -> List[GlucoseEffect]:
    """Cumulative carb effect curve from observed and projected absorption."""
    if not statuses:
        return []

    start = date_floored(start, delta)
    if end is None:
        end = max(status.entry.start + status.maximum_absorption_time + status.delay for status in statuses)
    end = date_ceiled(end, delta)

    effects: List[GlucoseEffect] = []
    date = start
    while date <= end:
        value = sum(status.carb_sensitivity * status.absorbed_carbs(date, delta) for status in statuses)
        effects.append(GlucoseEffect(timestamp=date, quantity=value))
        date += delta

    logger.debug("Built %d carb effect samples from %d entries", len(effects), len(statuses))
    return effects


def dynamic_carbs_on_board(
    statuses: Sequence[CarbStatus], at: datetime, delta: timedelta = timedelta(minutes=5)
) -> float:
    return sum(status.carbs_on_board(at, delta) for status in statuses)
