from datetime import timedelta

import pytest

from glucoloop.core.settings import AlgorithmSettings
from glucoloop.core.units import MG_DL_PER_MMOL_L, GlucoseUnit, from_mg_dl, to_mg_dl


def test_glucose_unit_conversion():
    assert to_mg_dl(5.5, GlucoseUnit.MMOL_L) == pytest.approx(5.5 * MG_DL_PER_MMOL_L)
    assert from_mg_dl(180.1559, GlucoseUnit.MMOL_L) == pytest.approx(10.0)
    assert to_mg_dl(120.0, GlucoseUnit.MG_DL) == 120.0


def test_glucose_unit_parse_accepts_common_spellings():
    assert GlucoseUnit.parse("mg/dL") == GlucoseUnit.MG_DL
    assert GlucoseUnit.parse("MMOL/L") == GlucoseUnit.MMOL_L
    assert GlucoseUnit.parse("mmol") == GlucoseUnit.MMOL_L
    with pytest.raises(ValueError):
        GlucoseUnit.parse("g/L")


def test_default_settings():
    settings = AlgorithmSettings()

    assert settings.delta == timedelta(minutes=5)
    assert settings.momentum_data_interval == timedelta(minutes=15)
    assert settings.continuation_interval == timedelta(minutes=11)
    assert settings.insulin_activity_duration == timedelta(minutes=370)
    assert settings.partial_application_factor == 0.4


def test_settings_reject_out_of_range_values():
    with pytest.raises(ValueError, match="partial_application_factor"):
        AlgorithmSettings(partial_application_factor=1.5)
    with pytest.raises(ValueError, match="delta_minutes"):
        AlgorithmSettings(delta_minutes=0)
