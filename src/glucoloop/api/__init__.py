from .algorithm_io import (
    AlgorithmInput,
    AlgorithmOutput,
    DoseRecommendationType,
    EffectsOptions,
    Prediction,
    PredictionEffects,
)
from .recommendations import (
    AlgorithmDoseRecommendation,
    BolusNoticeKind,
    BolusRecommendationNotice,
    CorrectionKind,
    DoseRecommendation,
    InsulinCorrection,
    ManualBolusRecommendation,
    TempBasalRecommendation,
)
from .types import (
    BasalRelativeDose,
    CarbEntry,
    DoseEntry,
    DoseType,
    GlucoseChange,
    GlucoseEffect,
    GlucoseEffectVelocity,
    GlucoseRange,
    GlucoseSample,
    InsulinType,
    ScheduleSegment,
)
