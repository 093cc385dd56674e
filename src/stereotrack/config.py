from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stereotrack.errors import ConfigValidationError

CONFIG_SCHEMA = "stereotrack.config.v0"


@dataclass(frozen=True)
class CameraConfig:
    """
    Fixed (never optimized) parameters of one camera.

    - `k`: zoom / focal scale of the view direction against the normalized screen
    - `r`: aspect ratio; the vertical screen offset is divided by it
    - `position`: camera center in world coordinates
    """

    k: float
    r: float
    position: tuple[float, float, float]


@dataclass(frozen=True)
class RigConfig:
    cam1: CameraConfig
    cam2: CameraConfig

    def camera(self, cami: int) -> CameraConfig:
        if cami == 0:
            return self.cam1
        if cami == 1:
            return self.cam2
        raise ValueError("cami should be 0 or 1")


@dataclass(frozen=True)
class CalibrationSettings:
    dp: float = 1e-4
    mu: float = 0.01
    z0: float = 0.0
    ntrials: int = 5000


@dataclass(frozen=True)
class AssociationSettings:
    max_loss: float = 30.0
    min_dist: float = 10.0
    workers: int = 1


@dataclass(frozen=True)
class InitialOrientation:
    theta1: float = -0.5 * math.pi
    theta2: float = -0.5 * math.pi
    phi: float = -0.5 * math.pi


@dataclass(frozen=True)
class StereoTrackConfig:
    rig: RigConfig
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    association: AssociationSettings = field(default_factory=AssociationSettings)
    initial: InitialOrientation = field(default_factory=InitialOrientation)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _finite(value: Any, name: str) -> float:
    _require(value is not None, f"{name} is required")
    try:
        x = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"{name} must be a number") from e
    _require(math.isfinite(x), f"{name} must be finite")
    return x


def _position(value: Any, name: str) -> tuple[float, float, float]:
    _require(isinstance(value, (list, tuple)) and len(value) == 3, f"{name} must be [x,y,z]")
    x, y, z = (_finite(v, name) for v in value)
    return (x, y, z)


def parse_rig_config(data: dict[str, Any]) -> RigConfig:
    _require(isinstance(data, dict), "rig must be an object")
    cams = []
    for idx in (1, 2):
        k = _finite(data.get(f"k{idx}"), f"rig.k{idx}")
        r = _finite(data.get(f"r{idx}"), f"rig.r{idx}")
        _require(k > 0.0, f"rig.k{idx} must be > 0")
        _require(r > 0.0, f"rig.r{idx} must be > 0")
        c = _position(data.get(f"c{idx}"), f"rig.c{idx}")
        cams.append(CameraConfig(k=k, r=r, position=c))
    return RigConfig(cam1=cams[0], cam2=cams[1])


def parse_calibration_settings(data: dict[str, Any]) -> CalibrationSettings:
    _require(isinstance(data, dict), "calibration must be an object")
    d = CalibrationSettings()
    dp = _finite(data.get("dp", d.dp), "calibration.dp")
    mu = _finite(data.get("mu", d.mu), "calibration.mu")
    z0 = _finite(data.get("z0", d.z0), "calibration.z0")
    ntrials_raw = data.get("ntrials", d.ntrials)
    _require(isinstance(ntrials_raw, int) and not isinstance(ntrials_raw, bool), "calibration.ntrials must be an integer")
    return validate_calibration_settings(CalibrationSettings(dp=dp, mu=mu, z0=z0, ntrials=int(ntrials_raw)))


def validate_calibration_settings(settings: CalibrationSettings) -> CalibrationSettings:
    """Range checks shared by config files, saved camera systems and CLI overrides."""
    _require(math.isfinite(settings.dp) and settings.dp > 0.0, "calibration.dp must be > 0")
    _require(math.isfinite(settings.mu) and settings.mu > 0.0, "calibration.mu must be > 0")
    _require(math.isfinite(settings.z0), "calibration.z0 must be finite")
    _require(
        isinstance(settings.ntrials, int) and not isinstance(settings.ntrials, bool) and settings.ntrials >= 1,
        "calibration.ntrials must be an integer >= 1",
    )
    return settings


def parse_association_settings(data: dict[str, Any]) -> AssociationSettings:
    _require(isinstance(data, dict), "association must be an object")
    d = AssociationSettings()
    max_loss = _finite(data.get("max_loss", d.max_loss), "association.max_loss")
    min_dist = _finite(data.get("min_dist", d.min_dist), "association.min_dist")
    workers = data.get("workers", d.workers)
    _require(isinstance(workers, int) and not isinstance(workers, bool), "association.workers must be an integer")
    _require(max_loss >= 0.0, "association.max_loss must be >= 0")
    _require(min_dist >= 0.0, "association.min_dist must be >= 0")
    _require(workers >= 1, "association.workers must be >= 1")
    return AssociationSettings(max_loss=max_loss, min_dist=min_dist, workers=int(workers))


def parse_initial_orientation(data: dict[str, Any]) -> InitialOrientation:
    _require(isinstance(data, dict), "initial must be an object")
    d = InitialOrientation()
    return InitialOrientation(
        theta1=_finite(data.get("theta1", d.theta1), "initial.theta1"),
        theta2=_finite(data.get("theta2", d.theta2), "initial.theta2"),
        phi=_finite(data.get("phi", d.phi), "initial.phi"),
    )


def parse_config(data: dict[str, Any]) -> StereoTrackConfig:
    _require(isinstance(data, dict), "config must be an object")
    _require(data.get("schema_version") == CONFIG_SCHEMA, f"schema_version must be {CONFIG_SCHEMA}")
    _require("rig" in data, "rig is required")
    return StereoTrackConfig(
        rig=parse_rig_config(data["rig"]),
        calibration=parse_calibration_settings(data.get("calibration", {})),
        association=parse_association_settings(data.get("association", {})),
        initial=parse_initial_orientation(data.get("initial", {})),
    )


def load_config(path: Path) -> StereoTrackConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_config(data)


def rig_to_dict(rig: RigConfig) -> dict[str, Any]:
    return {
        "k1": rig.cam1.k,
        "k2": rig.cam2.k,
        "r1": rig.cam1.r,
        "r2": rig.cam2.r,
        "c1": list(rig.cam1.position),
        "c2": list(rig.cam2.position),
    }


def calibration_to_dict(settings: CalibrationSettings) -> dict[str, Any]:
    return {"dp": settings.dp, "mu": settings.mu, "z0": settings.z0, "ntrials": settings.ntrials}


def config_to_dict(config: StereoTrackConfig) -> dict[str, Any]:
    return {
        "schema_version": CONFIG_SCHEMA,
        "rig": rig_to_dict(config.rig),
        "calibration": calibration_to_dict(config.calibration),
        "association": {
            "max_loss": config.association.max_loss,
            "min_dist": config.association.min_dist,
            "workers": config.association.workers,
        },
        "initial": {
            "theta1": config.initial.theta1,
            "theta2": config.initial.theta2,
            "phi": config.initial.phi,
        },
    }
