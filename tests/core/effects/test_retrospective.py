from datetime import datetime, timedelta, timezone

import pytest

from glucoloop.api.types import GlucoseChange, GlucoseEffect, GlucoseEffectVelocity, GlucoseSample
from glucoloop.core.effects.retrospective import (
    IntegralRetrospectiveCorrection,
    RetrospectiveCorrectionKind,
    StandardRetrospectiveCorrection,
    combined_sums,
    decay_effect,
    subtract_effects,
)
from glucoloop.core.settings import AlgorithmSettings

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
DELTA = timedelta(minutes=5)
RECENCY = timedelta(minutes=15)
GROUPING = timedelta(minutes=30)


def test_decay_effect_without_velocity_is_flat():
    glucose = GlucoseSample(timestamp=T0, quantity=120.0)
    effects = decay_effect(glucose, 0.0, timedelta(minutes=60))

    assert len(effects) == 12
    assert all(effect.quantity == 120.0 for effect in effects)


def test_decay_effect_rises_and_levels_off():
    glucose = GlucoseSample(timestamp=T0, quantity=120.0)
    effects = decay_effect(glucose, 1.0 / 60.0, timedelta(minutes=60))
    steps = [later.quantity - earlier.quantity for earlier, later in zip(effects, effects[1:])]

    assert effects[0].quantity == 120.0
    assert steps[0] > 0
    assert all(step >= 0 for step in steps)
    assert steps[-1] == pytest.approx(0.0, abs=1e-9)


def test_subtract_effects_with_flat_carb_curve():
    velocities = [
        GlucoseEffectVelocity(start=T0 + DELTA * index, end=T0 + DELTA * (index + 1), quantity=1.0)
        for index in range(6)
    ]
    flat = [GlucoseEffect(timestamp=T0 + DELTA * index, quantity=30.0) for index in range(7)]
    discrepancies = subtract_effects(velocities, flat)

    assert len(discrepancies) == 6
    assert [effect.quantity for effect in discrepancies] == pytest.approx([5.0] * 6)


def test_subtract_effects_emits_one_row_per_velocity_across_gaps():
    velocities = [
        GlucoseEffectVelocity(start=T0, end=T0 + DELTA, quantity=1.0),
        GlucoseEffectVelocity(start=T0 + DELTA, end=T0 + DELTA * 4, quantity=1.0),
    ]
    flat = [GlucoseEffect(timestamp=T0 + DELTA * index, quantity=30.0) for index in range(5)]
    rising = [GlucoseEffect(timestamp=T0 + DELTA * index, quantity=float(index)) for index in range(5)]

    discrepancies = subtract_effects(velocities, flat)

    assert [effect.timestamp for effect in discrepancies] == [T0 + DELTA, T0 + DELTA * 4]
    assert [effect.quantity for effect in discrepancies] == pytest.approx([5.0, 15.0])
    assert [effect.quantity for effect in subtract_effects(velocities, rising)] == pytest.approx([4.0, 13.0])


def test_combined_sums_cover_trailing_window():
    effects = [GlucoseEffect(timestamp=T0 + DELTA * index, quantity=1.0) for index in range(13)]
    sums = combined_sums(effects, GROUPING * 1.01)

    assert len(sums) == 13
    assert sums[-1].quantity == 7.0
    assert sums[-1].start == T0 + timedelta(minutes=30)
    assert sums[-1].end == T0 + timedelta(minutes=60)
    assert sums[0].quantity == 1.0


def test_standard_correction_ignores_stale_discrepancy():
    glucose = GlucoseSample(timestamp=T0, quantity=140.0)
    stale = [GlucoseChange(start=T0 - timedelta(minutes=60), end=T0 - timedelta(minutes=30), quantity=20.0)]
    effects = StandardRetrospectiveCorrection().compute_effect(glucose, stale, RECENCY, GROUPING)

    assert all(effect.quantity == 140.0 for effect in effects)


def test_standard_correction_carries_recent_discrepancy_forward():
    glucose = GlucoseSample(timestamp=T0, quantity=140.0)
    recent = [GlucoseChange(start=T0 - timedelta(minutes=30), end=T0, quantity=15.0)]
    effects = StandardRetrospectiveCorrection().compute_effect(glucose, recent, RECENCY, GROUPING)

    assert effects[-1].quantity > 140.0
    negative = [GlucoseChange(start=T0 - timedelta(minutes=30), end=T0, quantity=-15.0)]
    falling = StandardRetrospectiveCorrection().compute_effect(glucose, negative, RECENCY, GROUPING)
    assert falling[-1].quantity < 140.0


def test_integral_matches_standard_for_single_discrepancy():
    glucose = GlucoseSample(timestamp=T0, quantity=140.0)
    summed = [GlucoseChange(start=T0 - timedelta(minutes=30), end=T0, quantity=12.0)]
    standard = StandardRetrospectiveCorrection().compute_effect(glucose, summed, RECENCY, GROUPING)
    integral = IntegralRetrospectiveCorrection().compute_effect(glucose, summed, RECENCY, GROUPING)

    assert [effect.quantity for effect in integral] == pytest.approx([effect.quantity for effect in standard])


def test_integral_correction_grows_with_persistent_discrepancy():
    glucose = GlucoseSample(timestamp=T0, quantity=140.0)
    summed = [
        GlucoseChange(start=T0 - timedelta(minutes=30) - DELTA * index, end=T0 - DELTA * index, quantity=10.0)
        for index in reversed(range(6))
    ]
    standard = StandardRetrospectiveCorrection().compute_effect(glucose, summed, RECENCY, GROUPING)
    integral = IntegralRetrospectiveCorrection().compute_effect(glucose, summed, RECENCY, GROUPING)

    assert integral[-1].timestamp > standard[-1].timestamp
    assert integral[-1].quantity > standard[-1].quantity


def test_integral_gains_follow_time_constant():
    strategy = IntegralRetrospectiveCorrection()

    assert 0.0 < strategy.integral_forget < 1.0
    assert strategy.proportional_gain + strategy.integral_gain == pytest.approx(1.0)


def test_strategy_from_kind_uses_settings():
    settings = AlgorithmSettings(retrospective_effect_duration_minutes=90.0)

    standard = RetrospectiveCorrectionKind.STANDARD.strategy(settings)
    integral = RetrospectiveCorrectionKind.INTEGRAL.strategy(settings)

    assert isinstance(standard, StandardRetrospectiveCorrection)
    assert standard.effect_duration == timedelta(minutes=90)
    assert isinstance(integral, IntegralRetrospectiveCorrection)
    assert integral.maximum_effect_duration == timedelta(minutes=180)
