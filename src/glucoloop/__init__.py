# src/glucoloop/__init__.py

__version__ = "0.1.0"

# Data model
from .api.types import (
    CarbEntry,
    DoseEntry,
    DoseType,
    GlucoseEffect,
    GlucoseRange,
    GlucoseSample,
    InsulinType,
    ScheduleSegment,
)
from .api.recommendations import (
    DoseRecommendation,
    InsulinCorrection,
    ManualBolusRecommendation,
    TempBasalRecommendation,
)
from .api.algorithm_io import (
    AlgorithmInput,
    AlgorithmOutput,
    DoseRecommendationType,
    EffectsOptions,
    Prediction,
)

# Engine
from .core.settings import AlgorithmSettings
from .core.errors import (
    AlgorithmError,
    GlucoseTooOld,
    IncompleteSchedules,
    MissingGlucose,
    MissingSuspendThreshold,
)
from .core.prediction import generate_prediction
from .core.correction import insulin_correction
from .core.algorithm import run as run_algorithm
from .core.units import GlucoseUnit

# Input documents
from .validation import load_algorithm_input, load_algorithm_settings

__all__ = [
    "AlgorithmError",
    "AlgorithmInput",
    "AlgorithmOutput",
    "AlgorithmSettings",
    "CarbEntry",
    "DoseEntry",
    "DoseRecommendation",
    "DoseRecommendationType",
    "DoseType",
    "EffectsOptions",
    "GlucoseEffect",
    "GlucoseRange",
    "GlucoseSample",
    "GlucoseTooOld",
    "GlucoseUnit",
    "IncompleteSchedules",
    "InsulinCorrection",
    "InsulinType",
    "ManualBolusRecommendation",
    "MissingGlucose",
    "MissingSuspendThreshold",
    "Prediction",
    "ScheduleSegment",
    "TempBasalRecommendation",
    "generate_prediction",
    "insulin_correction",
    "load_algorithm_input",
    "load_algorithm_settings",
    "run_algorithm",
]
