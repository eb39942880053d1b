from __future__ import annotations

from datetime import datetime
from typing import Optional


class AlgorithmError(RuntimeError):
    """Input problem that makes the current invocation impossible to complete."""


class MissingGlucose(AlgorithmError):
    def __init__(self) -> None:
        super().__init__("MISSING_GLUCOSE: glucose history is empty")


class GlucoseTooOld(AlgorithmError):
    def __init__(self, latest: datetime, prediction_start: datetime) -> None:
        self.latest = latest
        self.prediction_start = prediction_start
        super().__init__(
            f"GLUCOSE_TOO_OLD: latest glucose at {latest.isoformat()} is too old "
            f"for a prediction starting at {prediction_start.isoformat()}"
        )


class IncompleteSchedules(AlgorithmError):
    def __init__(self, schedule: str, detail: Optional[str] = None) -> None:
        self.schedule = schedule
        message = f"INCOMPLETE_SCHEDULES: {schedule} schedule does not cover the required interval"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class MissingSuspendThreshold(AlgorithmError):
    def __init__(self) -> None:
        super().__init__("MISSING_SUSPEND_THRESHOLD: no suspend threshold or target range available")


class AlgorithmInvariantError(AssertionError):
    """An upstream component handed over data that should be impossible."""
