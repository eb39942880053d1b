from __future__ import annotations

from enum import Enum

MG_DL_PER_MMOL_L = 18.01559


class GlucoseUnit(Enum):
    MG_DL = "mg/dL"
    MMOL_L = "mmol/L"

    @classmethod
    def parse(cls, value: str) -> "GlucoseUnit":
        normalized = value.strip().lower().replace(" ", "")
        for unit in cls:
            if unit.value.lower() == normalized:
                return unit
        if normalized in {"mgdl", "mg_dl"}:
            return cls.MG_DL
        if normalized in {"mmol", "mmoll", "mmol_l"}:
            return cls.MMOL_L
        raise ValueError(f"Unknown glucose unit '{value}'")


def to_mg_dl(value: float, unit: GlucoseUnit) -> float:
    if unit == GlucoseUnit.MMOL_L:
        return value * MG_DL_PER_MMOL_L
    return value


def from_mg_dl(value: float, unit: GlucoseUnit) -> float:
    if unit == GlucoseUnit.MMOL_L:
        return value / MG_DL_PER_MMOL_L
    return value
