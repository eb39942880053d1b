from datetime import datetime, timedelta, timezone

import pytest

from glucoloop.api.types import GlucoseEffect, GlucoseSample
from glucoloop.core.effects.counteraction import counteraction_effects

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def _samples(values, step_minutes=5, provenance="cgm"):
    return [
        GlucoseSample(timestamp=T0 + timedelta(minutes=step_minutes * index), quantity=value, provenance=provenance)
        for index, value in enumerate(values)
    ]


def _effects(values, step_minutes=5):
    return [
        GlucoseEffect(timestamp=T0 + timedelta(minutes=step_minutes * index), quantity=value)
        for index, value in enumerate(values)
    ]


def test_rising_glucose_without_insulin_is_all_counteraction():
    glucose = _samples([100, 105, 110, 115])
    velocities = counteraction_effects(glucose, _effects([0.0] * 6))

    assert len(velocities) == 3
    assert [velocity.quantity for velocity in velocities] == pytest.approx([1.0, 1.0, 1.0])
    assert velocities[0].start == T0
    assert velocities[0].end == T0 + timedelta(minutes=5)


def test_insulin_effect_is_removed_from_observed_change():
    glucose = _samples([100, 100, 100])
    insulin = _effects([0.0, -10.0, -20.0, -30.0])
    velocities = counteraction_effects(glucose, insulin)

    assert [velocity.quantity for velocity in velocities] == pytest.approx([2.0, 2.0])


def test_close_readings_are_merged():
    glucose = _samples([100, 101, 102, 103, 104], step_minutes=2)
    velocities = counteraction_effects(glucose, _effects([0.0] * 4))

    assert len(velocities) == 1
    assert velocities[0].start == T0
    assert velocities[0].end == T0 + timedelta(minutes=6)
    assert velocities[0].quantity == pytest.approx(0.5)


def test_mixed_sources_are_skipped():
    glucose = _samples([100, 105]) + [
        GlucoseSample(timestamp=T0 + timedelta(minutes=10), quantity=130, provenance="fingerstick")
    ]
    velocities = counteraction_effects(glucose, _effects([0.0] * 4))

    assert len(velocities) == 1
    assert velocities[0].end == T0 + timedelta(minutes=5)


def test_stops_where_insulin_effects_end():
    glucose = _samples([100, 105, 110, 115, 120])
    velocities = counteraction_effects(glucose, _effects([0.0] * 3))

    assert len(velocities) == 2


def test_needs_two_readings_and_an_insulin_curve():
    assert counteraction_effects(_samples([100]), _effects([0.0, 0.0])) == []
    assert counteraction_effects(_samples([100, 110]), []) == []


def test_pair_inside_one_effect_step_uses_next_effect_sample():
    glucose = [
        GlucoseSample(timestamp=T0 + timedelta(seconds=30), quantity=100, provenance="cgm"),
        GlucoseSample(timestamp=T0 + timedelta(minutes=4, seconds=50), quantity=100, provenance="cgm"),
    ]
    velocities = counteraction_effects(glucose, _effects([0.0, -10.0, -20.0]))

    assert len(velocities) == 1
    assert velocities[0].quantity == pytest.approx(10.0 / (260.0 / 60.0))
