from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum


def _clamp_unit(value: float) -> float:
    return min(max(value, 0.0), 1.0)


class CarbAbsorptionModel(ABC):
    """
    Shape of carbohydrate absorption over a normalized absorption window.

    Subclasses provide the open-interval formulas; the public methods apply
    the boundary policy (<= 0 maps to 0, >= 1 maps to 1).
    """

    @abstractmethod
    def _absorbed(self, percent_time: float) -> float:
        pass

    @abstractmethod
    def _time_at(self, percent_absorption: float) -> float:
        pass

    @abstractmethod
    def _rate(self, percent_time: float) -> float:
        pass

    def percent_absorption_at_percent_time(self, percent_time: float) -> float:
        if percent_time <= 0:
            return 0.0
        if percent_time >= 1:
            return 1.0
        return _clamp_unit(self._absorbed(percent_time))

    def percent_time_at_percent_absorption(self, percent_absorption: float) -> float:
        if percent_absorption <= 0:
            return 0.0
        if percent_absorption >= 1:
            return 1.0
        return _clamp_unit(self._time_at(percent_absorption))

    def percent_rate_at_percent_time(self, percent_time: float) -> float:
        if percent_time <= 0 or percent_time > 1:
            return 0.0
        return self._rate(percent_time)

    def absorbed_carbs(self, total: float, time: timedelta, absorption_time: timedelta) -> float:
        percent_time = time.total_seconds() / absorption_time.total_seconds()
        return total * self.percent_absorption_at_percent_time(percent_time)

    def unabsorbed_carbs(self, total: float, time: timedelta, absorption_time: timedelta) -> float:
        percent_time = time.total_seconds() / absorption_time.total_seconds()
        return total * (1.0 - self.percent_absorption_at_percent_time(percent_time))

    def absorption_time(self, percent_absorbed: float, at_time: timedelta) -> timedelta:
        """Total absorption time implied by having absorbed `percent_absorbed` after `at_time`."""
        percent_time = self.percent_time_at_percent_absorption(percent_absorbed)
        return at_time / percent_time

    def time_to_absorb(self, percent_absorbed: float, total_absorption_time: timedelta) -> timedelta:
        return total_absorption_time * self.percent_time_at_percent_absorption(percent_absorbed)


class LinearAbsorption(CarbAbsorptionModel):
    def _absorbed(self, percent_time: float) -> float:
        return percent_time

    def _time_at(self, percent_absorption: float) -> float:
        return percent_absorption

    def _rate(self, percent_time: float) -> float:
        return 1.0


class ParabolicAbsorption(CarbAbsorptionModel):
    def _absorbed(self, percent_time: float) -> float:
        if percent_time <= 0.5:
            return 2.0 * percent_time ** 2
        return -1.0 + 2.0 * percent_time * (2.0 - percent_time)

    def _time_at(self, percent_absorption: float) -> float:
        if percent_absorption <= 0.5:
            return math.sqrt(percent_absorption / 2.0)
        return 1.0 - math.sqrt((1.0 - percent_absorption) / 2.0)

    def _rate(self, percent_time: float) -> float:
        if percent_time <= 0.5:
            return 4.0 * percent_time
        return 4.0 - 4.0 * percent_time


class PiecewiseLinearAbsorption(CarbAbsorptionModel):
    """Rate rises linearly until `rise_end`, holds until `plateau_end`, then falls to zero."""

    def __init__(self, rise_end: float = 0.15, plateau_end: float = 0.5) -> None:
        if not 0 < rise_end < plateau_end < 1:
            raise ValueError("expected 0 < rise_end < plateau_end < 1")
        self.rise_end = rise_end
        self.plateau_end = plateau_end
        self.scale = 2.0 / (1.0 + plateau_end - rise_end)

    def _absorbed(self, percent_time: float) -> float:
        r, s, scale = self.rise_end, self.plateau_end, self.scale
        if percent_time < r:
            return 0.5 * scale * percent_time ** 2 / r
        if percent_time < s:
            return scale * (percent_time - 0.5 * r)
        return scale * (s - 0.5 * r + (percent_time - s) * (1 - 0.5 * (percent_time - s) / (1 - s)))

    def _time_at(self, percent_absorption: float) -> float:
        r, s, scale = self.rise_end, self.plateau_end, self.scale
        if percent_absorption <= 0.5 * scale * r:
            return math.sqrt(2.0 * r * percent_absorption / scale)
        if percent_absorption <= scale * (s - 0.5 * r):
            return percent_absorption / scale + 0.5 * r
        return 1.0 - math.sqrt((1 - s) * (1 + s - r) * (1 - percent_absorption))

    def _rate(self, percent_time: float) -> float:
        r, s, scale = self.rise_end, self.plateau_end, self.scale
        if percent_time < r:
            return scale * percent_time / r
        if percent_time < s:
            return scale
        return scale * (1 - percent_time) / (1 - s)


@dataclass(frozen=True)
class CarbModelSettings:
    absorption_model: CarbAbsorptionModel
    initial_absorption_time_overrun: float
    adaptive_absorption_rate_enabled: bool
    adaptive_rate_standby_interval_fraction: float = 0.2


class CarbModelPreset(Enum):
    LINEAR = "linear"
    PARABOLIC = "parabolic"
    PIECEWISE_LINEAR = "piecewise_linear"

    @property
    def settings(self) -> CarbModelSettings:
        if self == CarbModelPreset.LINEAR:
            return CarbModelSettings(LinearAbsorption(), 1.5, False)
        if self == CarbModelPreset.PARABOLIC:
            return CarbModelSettings(ParabolicAbsorption(), 2.5, False)
        return CarbModelSettings(PiecewiseLinearAbsorption(), 1.0, True, 0.2)
