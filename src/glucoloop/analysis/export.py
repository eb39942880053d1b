from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Sequence

import pandas as pd

from glucoloop.api.algorithm_io import AlgorithmOutput, Prediction
from glucoloop.api.types import GlucoseEffect
from glucoloop.core.units import GlucoseUnit, from_mg_dl


def _effect_series(effects: Sequence[GlucoseEffect], name: str, unit: GlucoseUnit) -> pd.Series:
    return pd.Series(
        [from_mg_dl(effect.quantity, unit) for effect in effects],
        index=pd.DatetimeIndex([effect.timestamp for effect in effects]),
        name=name,
    )


def prediction_to_dataframe(prediction: Prediction, unit: GlucoseUnit = GlucoseUnit.MG_DL) -> pd.DataFrame:
    """
    Forecast and effect curves aligned on timestamp.

    Columns missing a value at a timestamp are NaN; effect columns hold
    cumulative values in `unit`.
    """
    forecast = pd.Series(
        [from_mg_dl(sample.quantity, unit) for sample in prediction.glucose],
        index=pd.DatetimeIndex([sample.timestamp for sample in prediction.glucose]),
        name="predicted_glucose",
    )
    effects = prediction.effects
    curves = {
        "insulin_effect": effects.insulin,
        "carb_effect": effects.carbs,
        "retrospective_correction": effects.retrospective_correction,
        "momentum_effect": effects.momentum,
    }
    series = [forecast] + [_effect_series(values, name, unit) for name, values in curves.items() if values]
    frame = pd.concat(series, axis=1)
    for name in curves:
        if name not in frame.columns:
            frame[name] = float("nan")
    frame = frame[["predicted_glucose"] + list(curves)]
    frame = frame[frame.index >= forecast.index.min()].sort_index()
    frame.index.name = "timestamp"
    return frame


def counteraction_to_dataframe(prediction: Prediction) -> pd.DataFrame:
    velocities = prediction.effects.insulin_counteraction
    return pd.DataFrame(
        {
            "start": [velocity.start for velocity in velocities],
            "end": [velocity.end for velocity in velocities],
            "velocity_mg_dl_per_min": [velocity.quantity for velocity in velocities],
        }
    )


def _to_serializable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds() / 60.0
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _to_serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_serializable(item) for item in value]
    return value


def output_summary(output: AlgorithmOutput) -> Dict[str, Any]:
    """Recommendation and correction as plain JSON-compatible data; durations in minutes."""
    prediction = output.prediction
    summary: Dict[str, Any] = {
        "correction": asdict(output.correction),
        "recommendation": asdict(output.recommendation),
        "active_insulin": prediction.active_insulin,
        "active_carbs": prediction.active_carbs,
        "eventual_glucose": prediction.glucose[-1].quantity if prediction.glucose else None,
    }
    return _to_serializable(summary)


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    safe_payload = {
        key: asdict(value) if is_dataclass(value) and not isinstance(value, type) else value
        for key, value in payload.items()
    }
    path.write_text(json.dumps(_to_serializable(safe_payload), indent=2, sort_keys=True))


__all__ = [
    "counteraction_to_dataframe",
    "output_summary",
    "prediction_to_dataframe",
    "write_json",
]
