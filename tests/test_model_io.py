import json

import numpy as np
import pytest

from stereotrack.api.model_io import (
    camera_system_from_record,
    camera_system_to_record,
    load_camera_system,
    load_matches,
    save_camera_system,
    save_matches,
)
from stereotrack.config import CalibrationSettings
from stereotrack.errors import RecordValidationError
from stereotrack.match.triangulate import MatchResult
from stereotrack.sim.synthetic import ground_truth_system


def _system():
    return ground_truth_system(phi=0.5877, settings=CalibrationSettings(dp=2e-4, mu=0.02, z0=1.25, ntrials=321))


def test_camera_system_round_trip(tmp_path):
    system = _system()
    path = save_camera_system(tmp_path / "cs.json", system)
    loaded = load_camera_system(path)
    assert loaded == system
    assert loaded.settings.ntrials == 321


def test_camera_system_record_is_flat():
    rec = camera_system_to_record(_system())
    for key in ("theta1", "theta2", "phi", "phi1", "phi2", "k1", "k2", "r1", "r2"):
        assert isinstance(rec[key], float)
    assert len(rec["c1"]) == 3
    assert len(rec["c2"]) == 3


@pytest.mark.parametrize("key", ["theta1", "phi2", "k1", "r2", "c1", "calibration"])
def test_camera_system_rejects_missing_field(key):
    rec = camera_system_to_record(_system())
    del rec[key]
    with pytest.raises(RecordValidationError):
        camera_system_from_record(rec)


@pytest.mark.parametrize(
    "patch",
    [
        {"c1": [0.0, 0.0]},
        {"theta1": "low"},
        {"phi": float("nan")},
        {"k2": 0.0},
        {"schema_version": "stereotrack.camera_system.v9"},
        {"calibration": {"dp": 0.0, "mu": 0.01, "z0": 1.0, "ntrials": 100}},
        {"calibration": {"dp": 1e-4, "mu": -1.0, "z0": 1.0, "ntrials": 100}},
        {"calibration": {"dp": 1e-4, "mu": 0.01, "z0": 1.0, "ntrials": 0}},
        {"calibration": {"dp": 1e-4, "mu": 0.01, "z0": 1.0, "ntrials": -3}},
        {"calibration": {"dp": 1e-4, "mu": 0.01, "z0": 1.0, "ntrials": 5.0}},
    ],
)
def test_camera_system_rejects_bad_values(patch):
    rec = camera_system_to_record(_system())
    rec.update(patch)
    with pytest.raises(RecordValidationError):
        camera_system_from_record(rec)


def test_load_camera_system_rejects_empty_file(tmp_path):
    path = tmp_path / "cs.json"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(RecordValidationError):
        load_camera_system(path)


def test_matches_round_trip(tmp_path):
    rng = np.random.default_rng(0)
    matches = [
        MatchResult(i=0, j=2, loss=0.25, start=5, end=14, points=rng.normal(size=(10, 3))),
        MatchResult(i=3, j=1, loss=1.5, start=0, end=0, points=rng.normal(size=(1, 3))),
    ]
    path = save_matches(tmp_path / "matches.json", matches)
    loaded = load_matches(path)
    assert [(m.i, m.j, m.loss, m.start, m.end) for m in loaded] == [(m.i, m.j, m.loss, m.start, m.end) for m in matches]
    for a, b in zip(matches, loaded):
        assert np.array_equal(a.points, b.points)

    data = json.loads(path.read_text(encoding="utf-8"))
    data["matches"][0]["size"] = 11
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(RecordValidationError):
        load_matches(path)
