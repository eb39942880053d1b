from .carbs import CarbStatus, dynamic_carbs_on_board, dynamic_glucose_effects, map_carb_status
from .counteraction import counteraction_effects
from .insulin import annotate_doses, insulin_glucose_effects, insulin_on_board
from .momentum import linear_momentum_effect
from .retrospective import (
    IntegralRetrospectiveCorrection,
    RetrospectiveCorrectionKind,
    StandardRetrospectiveCorrection,
    combined_sums,
    decay_effect,
    subtract_effects,
)

__all__ = [
    "CarbStatus",
    "IntegralRetrospectiveCorrection",
    "RetrospectiveCorrectionKind",
    "StandardRetrospectiveCorrection",
    "annotate_doses",
    "combined_sums",
    "counteraction_effects",
    "decay_effect",
    "dynamic_carbs_on_board",
    "dynamic_glucose_effects",
    "insulin_glucose_effects",
    "insulin_on_board",
    "linear_momentum_effect",
    "map_carb_status",
    "subtract_effects",
]
