from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

import pytest

project_root = Path(__file__).resolve().parents[1]
src_path = project_root / "src"

if src_path.exists():
    sys.path.insert(0, str(src_path))

from glucoloop.api.algorithm_io import AlgorithmInput  # noqa: E402
from glucoloop.api.types import GlucoseRange, GlucoseSample, ScheduleSegment  # noqa: E402


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def flat_glucose():
    """Factory for a CGM trace every 5 minutes ending at NOW."""

    def _make(value: float, minutes: int = 60, end: datetime = NOW, provenance: str = "cgm"):
        count = minutes // 5 + 1
        return [
            GlucoseSample(
                timestamp=end - timedelta(minutes=5 * (count - 1 - index)),
                quantity=value,
                provenance=provenance,
            )
            for index in range(count)
        ]

    return _make


@pytest.fixture
def make_input(flat_glucose):
    """
    Factory for a snapshot with constant schedules around NOW:
    basal 1 U/hr, sensitivity 50 mg/dL/U, carb ratio 10 g/U, target 100-110.
    """

    def _make(glucose_value: float = 150.0, **overrides) -> AlgorithmInput:
        start = NOW - timedelta(hours=24)
        end = NOW + timedelta(hours=24)
        fields = dict(
            prediction_start=NOW,
            glucose_history=flat_glucose(glucose_value),
            doses=[],
            carb_entries=[],
            basal=[ScheduleSegment(start=start, end=end, value=1.0)],
            sensitivity=[ScheduleSegment(start=start, end=end, value=50.0)],
            carb_ratio=[ScheduleSegment(start=start, end=end, value=10.0)],
            target=[ScheduleSegment(start=start, end=end, value=GlucoseRange(100.0, 110.0))],
            max_bolus=10.0,
            max_basal_rate=4.0,
            suspend_threshold=70.0,
        )
        fields.update(overrides)
        return AlgorithmInput(**fields)

    return _make
