from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from glucoloop.api.algorithm_io import AlgorithmInput, DoseRecommendationType, EffectsOptions
from glucoloop.api.types import (
    CarbEntry,
    DoseEntry,
    DoseType,
    GlucoseRange,
    GlucoseSample,
    InsulinType,
    ScheduleSegment,
)
from glucoloop.core.effects.retrospective import RetrospectiveCorrectionKind
from glucoloop.core.models.carbs import CarbModelPreset
from glucoloop.core.models.insulin import InsulinModelPreset
from glucoloop.core.settings import AlgorithmSettings
from glucoloop.core.timeline import resolve_segment_ends
from glucoloop.core.units import GlucoseUnit, to_mg_dl
from glucoloop.validation.schemas import (
    AlgorithmInputModel,
    AlgorithmSettingsModel,
    DoseModel,
    ScheduleSegmentModel,
)

_EFFECT_FLAGS = {
    "carbs": EffectsOptions.CARBS,
    "insulin": EffectsOptions.INSULIN,
    "momentum": EffectsOptions.MOMENTUM,
    "retrospection": EffectsOptions.RETROSPECTION,
}


def _read_document(path: Union[str, Path]) -> Dict[str, Any]:
    document_path = Path(path)
    text = document_path.read_text()
    if document_path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{document_path} must contain a mapping at the top level")
    return data


def validate_algorithm_input_dict(data: Dict[str, Any]) -> AlgorithmInputModel:
    return AlgorithmInputModel.model_validate(data)


def validate_algorithm_settings_dict(data: Dict[str, Any]) -> AlgorithmSettingsModel:
    return AlgorithmSettingsModel.model_validate(data)


def build_algorithm_settings(model: AlgorithmSettingsModel) -> AlgorithmSettings:
    return AlgorithmSettings(**model.model_dump(exclude_none=True))


def load_algorithm_settings(path: Union[str, Path]) -> AlgorithmSettings:
    data = _read_document(path)
    return build_algorithm_settings(validate_algorithm_settings_dict(data))


def _build_dose(model: DoseModel) -> DoseEntry:
    end = model.end or model.start
    programmed_units = model.programmed_units
    if model.rate is not None:
        programmed_units = model.rate * (end - model.start).total_seconds() / 3600.0
    return DoseEntry(
        type=DoseType(model.type),
        start=model.start,
        end=end,
        programmed_units=programmed_units,
        delivered_units=model.delivered_units,
        insulin_type=InsulinType(model.insulin_type) if model.insulin_type else None,
    )


def _build_schedule(segments: List[ScheduleSegmentModel], scale: float = 1.0) -> List[ScheduleSegment[float]]:
    return list(
        resolve_segment_ends(
            [ScheduleSegment(start=segment.start, end=segment.end, value=segment.value * scale) for segment in segments]
        )
    )


def build_algorithm_input(
    model: AlgorithmInputModel,
    settings: Optional[AlgorithmSettings] = None,
) -> AlgorithmInput:
    """Convert a validated document into engine types, with glucose values in mg/dL."""
    unit = GlucoseUnit.parse(model.glucose_unit)
    glucose_scale = to_mg_dl(1.0, unit)

    glucose = sorted(
        (
            GlucoseSample(
                timestamp=sample.timestamp,
                quantity=to_mg_dl(sample.value, unit),
                provenance=sample.provenance,
                is_calibration=sample.is_calibration,
            )
            for sample in model.glucose_history
        ),
        key=lambda sample: sample.timestamp,
    )

    prediction_start = model.prediction_start
    if prediction_start is None:
        if not glucose:
            raise ValueError("prediction_start is required when glucose_history is empty")
        prediction_start = glucose[-1].timestamp

    target = list(
        resolve_segment_ends(
            [
                ScheduleSegment(
                    start=segment.start,
                    end=segment.end,
                    value=GlucoseRange(
                        lower_bound=to_mg_dl(segment.lower_bound, unit),
                        upper_bound=to_mg_dl(segment.upper_bound, unit),
                    ),
                )
                for segment in model.target
            ]
        )
    )

    effects = EffectsOptions.NONE
    for name in model.effects:
        effects |= _EFFECT_FLAGS[name]

    return AlgorithmInput(
        prediction_start=prediction_start,
        glucose_history=glucose,
        doses=[_build_dose(dose) for dose in model.doses],
        carb_entries=[
            CarbEntry(
                start=entry.start,
                grams=entry.grams,
                absorption_time=timedelta(minutes=entry.absorption_minutes) if entry.absorption_minutes else None,
            )
            for entry in model.carb_entries
        ],
        basal=_build_schedule(model.basal),
        sensitivity=_build_schedule(model.sensitivity, glucose_scale),
        carb_ratio=_build_schedule(model.carb_ratio),
        target=target,
        max_bolus=model.max_bolus,
        max_basal_rate=model.max_basal_rate,
        suspend_threshold=to_mg_dl(model.suspend_threshold, unit) if model.suspend_threshold else None,
        recommendation_type=DoseRecommendationType(model.recommendation_type),
        retrospective_correction=RetrospectiveCorrectionKind(model.retrospective_correction),
        insulin_model=InsulinModelPreset(model.insulin_model),
        carb_model=CarbModelPreset(model.carb_model),
        effects=effects,
        last_temp_basal=_build_dose(model.last_temp_basal) if model.last_temp_basal else None,
        scheduled_basal_rate_matches_pump=model.scheduled_basal_rate_matches_pump,
        basal_rate_increment=model.basal_rate_increment,
        bolus_increment=model.bolus_increment,
        settings=settings or AlgorithmSettings(),
    )


def load_algorithm_input(
    path: Union[str, Path],
    settings: Optional[AlgorithmSettings] = None,
) -> AlgorithmInput:
    data = _read_document(path)
    return build_algorithm_input(validate_algorithm_input_dict(data), settings)


def input_warnings(model: AlgorithmInputModel) -> List[str]:
    warnings: List[str] = []
    scale = to_mg_dl(1.0, GlucoseUnit.parse(model.glucose_unit))
    if not model.glucose_history:
        warnings.append("glucose_history: empty, no prediction can be made")
    if model.max_basal_rate > 10:
        warnings.append(f"max_basal_rate: {model.max_basal_rate} U/hr is unusually high")
    if model.max_bolus > 20:
        warnings.append(f"max_bolus: {model.max_bolus} U is unusually high")
    if model.suspend_threshold is not None and model.suspend_threshold * scale < 54:
        warnings.append("suspend_threshold: below 54 mg/dL is unusually low")
    for idx, entry in enumerate(model.carb_entries):
        if entry.grams > 200:
            warnings.append(f"carb_entries[{idx}]: {entry.grams}g is unusually high")
    for idx, segment in enumerate(model.target):
        if model.suspend_threshold is not None and segment.lower_bound < model.suspend_threshold:
            warnings.append(f"target[{idx}]: lower_bound is below suspend_threshold")
    for name in ("basal", "sensitivity", "carb_ratio", "target"):
        if not getattr(model, name):
            warnings.append(f"{name}: schedule is empty")
    return warnings


def format_validation_error(error: ValidationError) -> List[str]:
    lines: List[str] = []
    for entry in error.errors():
        loc = ".".join(str(item) for item in entry.get("loc", []))
        msg = entry.get("msg", "Invalid value")
        lines.append(f"{loc}: {msg}")
    return lines


__all__ = [
    "AlgorithmInputModel",
    "AlgorithmSettingsModel",
    "build_algorithm_input",
    "build_algorithm_settings",
    "format_validation_error",
    "input_warnings",
    "load_algorithm_input",
    "load_algorithm_settings",
    "validate_algorithm_input_dict",
    "validate_algorithm_settings_dict",
]
