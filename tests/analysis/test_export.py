import json
import math
from datetime import timedelta

import pytest

from glucoloop import run_algorithm
from glucoloop.analysis.export import (
    counteraction_to_dataframe,
    output_summary,
    prediction_to_dataframe,
    write_json,
)
from glucoloop.api.types import DoseEntry, DoseType
from glucoloop.core.prediction import generate_prediction
from glucoloop.core.units import MG_DL_PER_MMOL_L, GlucoseUnit


def test_prediction_frame_has_all_curves(make_input, now):
    frame = prediction_to_dataframe(generate_prediction(make_input(150.0)))

    assert list(frame.columns) == [
        "predicted_glucose",
        "insulin_effect",
        "carb_effect",
        "retrospective_correction",
        "momentum_effect",
    ]
    assert frame.index.name == "timestamp"
    assert frame.index[0] == now
    assert frame["predicted_glucose"].iloc[0] == 150.0
    assert frame["insulin_effect"].isna().all()


def test_prediction_frame_converts_units(make_input):
    frame = prediction_to_dataframe(generate_prediction(make_input(180.0)), GlucoseUnit.MMOL_L)

    assert frame["predicted_glucose"].iloc[0] == pytest.approx(180.0 / MG_DL_PER_MMOL_L)


def test_counteraction_frame_lists_velocities(make_input, now):
    bolus = DoseEntry(
        type=DoseType.BOLUS,
        start=now - timedelta(hours=2),
        end=now - timedelta(hours=2),
        programmed_units=1.0,
    )
    prediction = generate_prediction(make_input(150.0, doses=[bolus]))
    frame = counteraction_to_dataframe(prediction)

    assert list(frame.columns) == ["start", "end", "velocity_mg_dl_per_min"]
    assert len(frame) == len(prediction.effects.insulin_counteraction) > 0
    assert (frame["velocity_mg_dl_per_min"] > 0).all()


def test_output_summary_is_json_ready(make_input, tmp_path):
    output = run_algorithm(make_input(150.0))
    summary = output_summary(output)

    assert summary["correction"]["kind"] == "above_range"
    assert summary["correction"]["min_glucose"]["timestamp"].startswith("2024-03-01T12:00:00")
    assert summary["eventual_glucose"] == pytest.approx(150.0)
    assert not math.isnan(summary["active_insulin"])

    path = tmp_path / "summary.json"
    write_json(path, {"summary": summary, "correction": output.correction})
    data = json.loads(path.read_text())
    assert data["correction"]["kind"] == "above_range"
    assert data["summary"]["recommendation"]["manual"] is None
