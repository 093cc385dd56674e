from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from stereotrack.config import (
    CalibrationSettings,
    CameraConfig,
    RigConfig,
    calibration_to_dict,
    validate_calibration_settings,
)
from stereotrack.core.camera import CameraParams, CameraSystem
from stereotrack.errors import ConfigValidationError, RecordValidationError
from stereotrack.match.triangulate import MatchResult

CAMERA_SYSTEM_SCHEMA = "stereotrack.camera_system.v0"
MATCHES_SCHEMA = "stereotrack.matches.v0"


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise RecordValidationError(msg)


def _float(record: dict[str, Any], key: str) -> float:
    _require(key in record, f"missing key: {key}")
    v = record[key]
    _require(isinstance(v, (int, float)) and not isinstance(v, bool), f"{key} must be a number")
    _require(math.isfinite(float(v)), f"{key} must be finite")
    return float(v)


def _int(record: dict[str, Any], key: str) -> int:
    _require(key in record, f"missing key: {key}")
    v = record[key]
    _require(isinstance(v, int) and not isinstance(v, bool), f"{key} must be an integer")
    return int(v)


def _to_float_matrix(x: Any, shape: tuple[int, ...], name: str) -> np.ndarray:
    try:
        arr = np.asarray(x, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise RecordValidationError(f"{name} must be numeric") from e
    _require(arr.shape == shape, f"{name} must have shape {shape}, got {arr.shape}")
    _require(bool(np.all(np.isfinite(arr))), f"{name} has non-finite values")
    return arr


def camera_system_to_record(system: CameraSystem) -> dict[str, Any]:
    """Flat record of a camera system (orientation, rig, calibration settings)."""
    p = system.params
    rig = system.rig
    return {
        "schema_version": CAMERA_SYSTEM_SCHEMA,
        "theta1": p.theta1,
        "theta2": p.theta2,
        "phi": p.phi,
        "phi1": p.phi1,
        "phi2": p.phi2,
        "k1": rig.cam1.k,
        "k2": rig.cam2.k,
        "r1": rig.cam1.r,
        "r2": rig.cam2.r,
        "c1": list(rig.cam1.position),
        "c2": list(rig.cam2.position),
        "calibration": calibration_to_dict(system.settings),
    }


def camera_system_from_record(record: dict[str, Any]) -> CameraSystem:
    _require(isinstance(record, dict), "camera system record must be an object")
    _require(
        record.get("schema_version") == CAMERA_SYSTEM_SCHEMA,
        f"schema_version must be {CAMERA_SYSTEM_SCHEMA}",
    )
    params = CameraParams(
        theta1=_float(record, "theta1"),
        theta2=_float(record, "theta2"),
        phi=_float(record, "phi"),
        phi1=_float(record, "phi1"),
        phi2=_float(record, "phi2"),
    )
    cams = []
    for idx in (1, 2):
        k = _float(record, f"k{idx}")
        r = _float(record, f"r{idx}")
        _require(k > 0.0 and r > 0.0, f"k{idx} and r{idx} must be > 0")
        _require(f"c{idx}" in record, f"missing key: c{idx}")
        c = _to_float_matrix(record[f"c{idx}"], (3,), f"c{idx}")
        cams.append(CameraConfig(k=k, r=r, position=(float(c[0]), float(c[1]), float(c[2]))))

    _require(isinstance(record.get("calibration"), dict), "missing key: calibration")
    cal = record["calibration"]
    settings = CalibrationSettings(
        dp=_float(cal, "dp"),
        mu=_float(cal, "mu"),
        z0=_float(cal, "z0"),
        ntrials=_int(cal, "ntrials"),
    )
    try:
        validate_calibration_settings(settings)
    except ConfigValidationError as e:
        raise RecordValidationError(str(e)) from e
    return CameraSystem(params=params, rig=RigConfig(cam1=cams[0], cam2=cams[1]), settings=settings)


def save_camera_system(path: Path, system: CameraSystem) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(camera_system_to_record(system), indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_camera_system(path: Path) -> CameraSystem:
    record = json.loads(Path(path).read_text(encoding="utf-8"))
    return camera_system_from_record(record)


def match_to_record(match: MatchResult) -> dict[str, Any]:
    return {
        "i": match.i,
        "j": match.j,
        "loss": match.loss,
        "start": match.start,
        "end": match.end,
        "size": match.size,
        "points": np.asarray(match.points, dtype=np.float64).tolist(),
    }


def match_from_record(record: dict[str, Any]) -> MatchResult:
    _require(isinstance(record, dict), "match record must be an object")
    i, j = _int(record, "i"), _int(record, "j")
    start, end, size = _int(record, "start"), _int(record, "end"), _int(record, "size")
    loss = _float(record, "loss")
    _require(i >= 0 and j >= 0, "i and j must be >= 0")
    _require(loss >= 0.0, "loss must be >= 0")
    _require(0 <= start <= end, "match span must satisfy 0 <= start <= end")
    _require(size == end - start + 1, "size must equal end - start + 1")
    _require("points" in record, "missing key: points")
    points = _to_float_matrix(record["points"], (size, 3), "points")
    return MatchResult(i=i, j=j, loss=loss, start=start, end=end, points=points)


def save_matches(path: Path, matches: Sequence[MatchResult]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"schema_version": MATCHES_SCHEMA, "matches": [match_to_record(m) for m in matches]}
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_matches(path: Path) -> list[MatchResult]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict) and data.get("schema_version") == MATCHES_SCHEMA, f"schema_version must be {MATCHES_SCHEMA}")
    _require(isinstance(data.get("matches"), list), "matches must be a list")
    return [match_from_record(m) for m in data["matches"]]
