from datetime import datetime, timedelta, timezone

import pytest

from glucoloop.api.recommendations import CorrectionKind, InsulinCorrection
from glucoloop.api.types import GlucoseRange, GlucoseSample, ScheduleSegment
from glucoloop.core.correction import (
    effected_sensitivity,
    insulin_correction,
    insulin_correction_units,
    target_glucose_value,
)
from glucoloop.core.errors import AlgorithmInvariantError
from glucoloop.core.models.insulin import InsulinModelPreset

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
MODEL = InsulinModelPreset.RAPID_ACTING_ADULT.model


def _segments(value):
    return [ScheduleSegment(start=T0 - timedelta(hours=6), end=T0 + timedelta(hours=12), value=value)]


def _forecast(*values, step_minutes=30):
    return [
        GlucoseSample(timestamp=T0 + timedelta(minutes=step_minutes * index), quantity=value)
        for index, value in enumerate(values)
    ]


def _correct(prediction, suspend_threshold=70.0):
    return insulin_correction(
        prediction,
        T0,
        _segments(GlucoseRange(100.0, 110.0)),
        suspend_threshold,
        _segments(50.0),
        MODEL,
    )


def test_target_holds_minimum_then_blends_to_maximum():
    assert target_glucose_value(0.25, 70.0, 105.0) == 70.0
    assert target_glucose_value(0.5, 70.0, 105.0) == 70.0
    assert target_glucose_value(0.75, 70.0, 105.0) == pytest.approx(87.5)
    assert target_glucose_value(1.0, 70.0, 105.0) == 105.0


def test_correction_units_require_positive_sensitivity():
    assert insulin_correction_units(200.0, 100.0, 50.0) == pytest.approx(2.0)
    with pytest.raises(AlgorithmInvariantError):
        insulin_correction_units(200.0, 100.0, 0.0)


def test_effected_sensitivity_over_full_action_equals_schedule():
    assert effected_sensitivity(_segments(50.0), MODEL, T0, T0 + MODEL.effect_duration) == pytest.approx(50.0)
    assert effected_sensitivity(_segments(50.0), MODEL, T0, T0 + timedelta(minutes=5)) == 0.0


def test_point_below_suspend_threshold_suspends():
    correction = _correct(_forecast(120.0, 90.0, 65.0, 130.0))

    assert correction.kind == CorrectionKind.SUSPEND
    assert correction.min_glucose.quantity == 65.0
    assert correction.units == 0.0


def test_forecast_inside_range_needs_nothing():
    correction = _correct(_forecast(*([105.0] * 13)))

    assert correction == InsulinCorrection.in_range()


def test_high_forecast_is_above_range():
    correction = _correct(_forecast(*([150.0] * 13)))

    assert correction.kind == CorrectionKind.ABOVE_RANGE
    assert correction.min_target == 100.0
    assert correction.units > 0
    assert correction.correcting_glucose is not None


def test_low_forecast_is_entirely_below_range():
    correction = _correct(_forecast(*([85.0] * 13)))

    assert correction.kind == CorrectionKind.ENTIRELY_BELOW_RANGE
    assert correction.min_target == 100.0
    assert correction.units > 0
    assert correction.signed_units < 0


def test_points_outside_effect_window_are_ignored():
    prediction = [
        GlucoseSample(timestamp=T0 - timedelta(minutes=30), quantity=40.0),
        GlucoseSample(timestamp=T0, quantity=105.0),
        GlucoseSample(timestamp=T0 + timedelta(minutes=400), quantity=40.0),
    ]

    assert _correct(prediction).kind == CorrectionKind.IN_RANGE


def test_empty_effect_window_raises():
    prediction = [GlucoseSample(timestamp=T0 - timedelta(minutes=30), quantity=120.0)]

    with pytest.raises(AlgorithmInvariantError):
        _correct(prediction)


def test_correction_payload_is_validated():
    sample = GlucoseSample(timestamp=T0, quantity=150.0)

    with pytest.raises(ValueError):
        InsulinCorrection(kind=CorrectionKind.IN_RANGE, units=1.0)
    with pytest.raises(ValueError):
        InsulinCorrection.above_range(sample, sample, 100.0, -1.0)
    with pytest.raises(ValueError):
        InsulinCorrection(kind=CorrectionKind.SUSPEND)
    assert InsulinCorrection.suspend(sample).signed_units == 0.0


def _sensitivity_change_at(offset, before, after):
    return [
        ScheduleSegment(start=T0 - timedelta(hours=6), end=T0 + offset, value=before),
        ScheduleSegment(start=T0 + offset, end=T0 + timedelta(hours=12), value=after),
    ]


def test_effected_sensitivity_weights_each_schedule_segment():
    split = MODEL.percent_effect_remaining(timedelta(hours=2))
    schedule = _sensitivity_change_at(timedelta(hours=2), 50.0, 100.0)

    assert 0.0 < split < 1.0
    assert effected_sensitivity(schedule, MODEL, T0, T0 + MODEL.effect_duration) == pytest.approx(
        (1.0 - split) * 50.0 + split * 100.0
    )
    assert effected_sensitivity(schedule, MODEL, T0, T0 + timedelta(hours=2)) == pytest.approx((1.0 - split) * 50.0)


def test_correction_uses_sensitivity_change_inside_window():
    forecast = _forecast(*([150.0] * 13))
    target = _segments(GlucoseRange(100.0, 110.0))
    changing = _sensitivity_change_at(timedelta(hours=2), 50.0, 100.0)

    correction = insulin_correction(forecast, T0, target, 70.0, changing, MODEL)
    at_50 = insulin_correction(forecast, T0, target, 70.0, _segments(50.0), MODEL)
    at_100 = insulin_correction(forecast, T0, target, 70.0, _segments(100.0), MODEL)

    assert correction.kind == CorrectionKind.ABOVE_RANGE
    assert at_100.units < correction.units < at_50.units

    correcting = correction.correcting_glucose
    percent = (correcting.timestamp - T0) / MODEL.effect_duration
    expected = insulin_correction_units(
        correcting.quantity,
        target_glucose_value(percent, 70.0, 105.0),
        effected_sensitivity(changing, MODEL, T0, correcting.timestamp),
    )
    assert correction.units == pytest.approx(expected)
