from datetime import datetime, timedelta, timezone

import pytest

from glucoloop.api.algorithm_io import EffectsOptions
from glucoloop.api.recommendations import TempBasalRecommendation
from glucoloop.api.types import (
    BasalRelativeDose,
    CarbEntry,
    DoseEntry,
    DoseType,
    GlucoseEffectVelocity,
    GlucoseRange,
    GlucoseSample,
    ScheduleSegment,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_dose_entry_prefers_delivered_units():
    dose = DoseEntry(
        type=DoseType.TEMP_BASAL,
        start=T0,
        end=T0 + timedelta(minutes=30),
        programmed_units=1.0,
        delivered_units=0.8,
    )

    assert dose.units == 0.8
    assert dose.units_per_hour == pytest.approx(1.6)
    assert DoseEntry(type=DoseType.BOLUS, start=T0, end=T0, programmed_units=2.0).units_per_hour == 0.0


def test_dose_entry_validation():
    with pytest.raises(ValueError):
        DoseEntry(type=DoseType.BOLUS, start=T0, end=T0 - timedelta(minutes=1), programmed_units=1.0)
    with pytest.raises(ValueError):
        DoseEntry(type=DoseType.BOLUS, start=T0, end=T0, programmed_units=-1.0)
    with pytest.raises(ValueError):
        CarbEntry(start=T0, grams=-5.0)


def test_basal_relative_net_units():
    temp = BasalRelativeDose(
        type=DoseType.TEMP_BASAL, start=T0, end=T0 + timedelta(hours=1), scheduled_basal_rate=0.8, units=2.0
    )
    basal = BasalRelativeDose(
        type=DoseType.BASAL, start=T0, end=T0 + timedelta(hours=1), scheduled_basal_rate=0.8, units=0.8
    )

    assert temp.net_units == pytest.approx(1.2)
    assert basal.net_units == 0.0


def test_schedule_segment_and_range_checks():
    segment = ScheduleSegment(start=T0, end=None, value=1.0)

    assert segment.contains(T0 + timedelta(days=30))
    assert not segment.contains(T0 - timedelta(seconds=1))
    with pytest.raises(ValueError):
        ScheduleSegment(start=T0, end=T0 - timedelta(hours=1), value=1.0)
    with pytest.raises(ValueError):
        GlucoseRange(lower_bound=120.0, upper_bound=100.0)


def test_velocity_effect_over_interval():
    velocity = GlucoseEffectVelocity(start=T0, end=T0 + timedelta(minutes=10), quantity=1.5)

    assert velocity.minutes == 10.0
    assert velocity.effect.quantity == pytest.approx(15.0)
    assert velocity.effect.timestamp == T0 + timedelta(minutes=10)


def test_glucose_contiguity():
    cgm = GlucoseSample(timestamp=T0, quantity=100.0, provenance="cgm")

    assert cgm.is_contiguous_with(GlucoseSample(timestamp=T0, quantity=101.0, provenance="cgm"))
    assert not cgm.is_contiguous_with(GlucoseSample(timestamp=T0, quantity=101.0, provenance="meter"))
    assert not cgm.is_contiguous_with(
        GlucoseSample(timestamp=T0, quantity=101.0, provenance="cgm", is_calibration=True)
    )


def test_temp_basal_recommendation_rules():
    assert TempBasalRecommendation.cancel().is_cancel
    assert not TempBasalRecommendation(units_per_hour=0.0, duration=timedelta(minutes=30)).is_cancel
    with pytest.raises(ValueError):
        TempBasalRecommendation(units_per_hour=-0.1, duration=timedelta(minutes=30))


def test_effects_options_combine():
    options = EffectsOptions.CARBS | EffectsOptions.INSULIN

    assert options & EffectsOptions.CARBS
    assert not options & EffectsOptions.MOMENTUM
    assert EffectsOptions.ALL & EffectsOptions.RETROSPECTION
    assert not EffectsOptions.NONE & EffectsOptions.ALL
