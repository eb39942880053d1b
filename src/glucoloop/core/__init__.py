from .errors import (
    AlgorithmError,
    AlgorithmInvariantError,
    GlucoseTooOld,
    IncompleteSchedules,
    MissingGlucose,
    MissingSuspendThreshold,
)
from .settings import AlgorithmSettings

__all__ = [
    "AlgorithmError",
    "AlgorithmInvariantError",
    "AlgorithmSettings",
    "GlucoseTooOld",
    "IncompleteSchedules",
    "MissingGlucose",
    "MissingSuspendThreshold",
]
