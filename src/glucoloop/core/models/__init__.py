from .carbs import (
    CarbAbsorptionModel,
    CarbModelPreset,
    CarbModelSettings,
    LinearAbsorption,
    ParabolicAbsorption,
    PiecewiseLinearAbsorption,
)
from .insulin import ExponentialInsulinModel, InsulinModelPreset, PresetInsulinModelProvider

__all__ = [
    "CarbAbsorptionModel",
    "CarbModelPreset",
    "CarbModelSettings",
    "ExponentialInsulinModel",
    "InsulinModelPreset",
    "LinearAbsorption",
    "ParabolicAbsorption",
    "PiecewiseLinearAbsorption",
    "PresetInsulinModelProvider",
]
