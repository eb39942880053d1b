from datetime import datetime, timedelta, timezone

import pytest

from glucoloop.api.types import CarbEntry, GlucoseEffectVelocity, ScheduleSegment
from glucoloop.core.effects.carbs import dynamic_carbs_on_board, dynamic_glucose_effects, map_carb_status
from glucoloop.core.models.carbs import CarbModelPreset, PiecewiseLinearAbsorption

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
DELTA = timedelta(minutes=5)


def _schedule(value):
    return [ScheduleSegment(start=T0 - timedelta(hours=12), end=T0 + timedelta(hours=24), value=value)]


def _velocities(count, quantity=1.0, start=T0):
    return [
        GlucoseEffectVelocity(
            start=start + DELTA * index,
            end=start + DELTA * (index + 1),
            quantity=quantity,
        )
        for index in range(count)
    ]


def _status(entries, velocities, preset=CarbModelPreset.PIECEWISE_LINEAR):
    return map_carb_status(entries, velocities, _schedule(10.0), _schedule(50.0), preset.settings)


def test_unobserved_entry_follows_the_model():
    entry = CarbEntry(start=T0, grams=30.0, absorption_time=timedelta(minutes=180))
    status = _status([entry], [], CarbModelPreset.LINEAR)[0]

    assert status.carb_sensitivity == pytest.approx(5.0)
    assert status.observed_grams == 0.0
    assert status.estimated_absorption_time == timedelta(minutes=270)
    assert status.absorbed_carbs(T0 + timedelta(minutes=145), DELTA) == pytest.approx(15.0)
    assert status.carbs_on_board(T0 + timedelta(minutes=145), DELTA) == pytest.approx(15.0)
    assert status.carbs_on_board(T0 - DELTA, DELTA) == 0.0


def test_carb_effect_reaches_grams_times_sensitivity():
    entry = CarbEntry(start=T0, grams=30.0, absorption_time=timedelta(minutes=180))
    statuses = _status([entry], [], CarbModelPreset.LINEAR)
    effects = dynamic_glucose_effects(statuses, start=T0 - timedelta(minutes=30))

    assert effects[0].quantity == 0.0
    assert effects[-1].timestamp == T0 + timedelta(minutes=280)
    assert effects[-1].quantity == pytest.approx(150.0)
    for earlier, later in zip(effects, effects[1:]):
        assert later.quantity >= earlier.quantity


def test_observed_counteraction_is_credited_to_entry():
    entry = CarbEntry(start=T0, grams=10.0, absorption_time=timedelta(minutes=180))
    status = _status([entry], _velocities(6))[0]

    assert status.observed_grams == pytest.approx(6.0)
    assert len(status.observed_timeline) == 6
    assert status.observed_duration == timedelta(minutes=30)


def test_observed_grams_never_exceed_entry():
    entry = CarbEntry(start=T0, grams=10.0, absorption_time=timedelta(minutes=180))
    status = _status([entry], _velocities(12))[0]

    assert status.observed_grams == pytest.approx(10.0)
    assert status.observed_duration == timedelta(minutes=50)
    assert status.carbs_on_board(T0 + timedelta(minutes=60), DELTA) == pytest.approx(0.0)


def test_falling_glucose_still_assumes_minimum_absorption():
    entry = CarbEntry(start=T0, grams=10.0)
    status = _status([entry], _velocities(6, quantity=-1.0))[0]
    minimum = PiecewiseLinearAbsorption().absorbed_carbs(10.0, timedelta(minutes=20), timedelta(minutes=270))

    assert 0.0 < minimum < 1.0
    assert status.observed_grams == pytest.approx(minimum)


def test_simultaneous_entries_share_counteraction():
    entries = [
        CarbEntry(start=T0, grams=10.0, absorption_time=timedelta(minutes=120)),
        CarbEntry(start=T0, grams=10.0, absorption_time=timedelta(minutes=120)),
    ]
    statuses = _status(entries, _velocities(1, quantity=2.0), CarbModelPreset.LINEAR)

    assert [status.observed_grams for status in statuses] == pytest.approx([1.0, 1.0])
    assert dynamic_carbs_on_board(statuses, T0 + DELTA, DELTA) < 20.0


def test_entries_before_velocity_window_are_not_credited():
    entry = CarbEntry(start=T0 + timedelta(hours=1), grams=20.0)
    status = _status([entry], _velocities(6))[0]

    assert status.observed_grams == 0.0
    assert status.observed_timeline == ()


def test_no_entries_no_effects():
    assert dynamic_glucose_effects([], start=T0) == []
    assert dynamic_carbs_on_board([], T0) == 0.0
