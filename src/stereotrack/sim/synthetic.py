from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from stereotrack.config import (
    CONFIG_SCHEMA,
    CalibrationSettings,
    CameraConfig,
    RigConfig,
    calibration_to_dict,
    rig_to_dict,
)
from stereotrack.core.camera import CameraParams, CameraSystem
from stereotrack.core.geometry import screen_from_world
from stereotrack.core.tracks import Track, save_tracks

DEFAULT_HORIZON = 601
DEFAULT_ASPECT = 16.0 / 9.0

# Ground-truth orientation of the default rig, aimed roughly at (12, 14, 1).
GT_THETA1 = -0.27
GT_THETA2 = -0.25
GT_PAN1 = 0.85
GT_PAN2 = 2.30

# (theta1, theta2, phi) offset of the initial guess written with a synthetic scene.
INITIAL_OFFSET = (0.04, -0.04, 0.08)


def default_rig(k: float = 1.0, r: float = DEFAULT_ASPECT) -> RigConfig:
    return RigConfig(
        cam1=CameraConfig(k=k, r=r, position=(0.0, 0.0, 6.0)),
        cam2=CameraConfig(k=k, r=r, position=(24.0, 0.0, 6.0)),
    )


def look_at(position: tuple[float, float, float], target: tuple[float, float, float]) -> tuple[float, float]:
    """(theta, pan) of a camera at `position` looking at `target`."""
    dx, dy, dz = (float(t) - float(p) for p, t in zip(position, target))
    return math.atan2(dz, math.hypot(dx, dy)), math.atan2(dy, dx)


def linear_path(p0: np.ndarray, p1: np.ndarray, n: int) -> np.ndarray:
    """`n` evenly spaced points from `p0` to `p1`, shaped (n,3)."""
    p0 = np.asarray(p0, dtype=np.float64).reshape(3)
    p1 = np.asarray(p1, dtype=np.float64).reshape(3)
    s = np.linspace(0.0, 1.0, int(n))
    return p0[None, :] + s[:, None] * (p1 - p0)[None, :]


def heading(path: np.ndarray) -> float:
    delta = np.asarray(path[-1], dtype=np.float64) - np.asarray(path[0], dtype=np.float64)
    return math.atan2(float(delta[1]), float(delta[0]))


def track_from_world(
    system: CameraSystem,
    cami: int,
    xyz: np.ndarray,
    start: int,
    *,
    horizon: int = DEFAULT_HORIZON,
    confidence: float = 1.0,
    noise_std: float = 0.0,
    rng: np.random.Generator | None = None,
) -> Track:
    """Back-project world points (one per frame from `start`) into a camera track."""
    theta, pan = system.params.orientation(cami)
    cam = system.rig.camera(cami)
    pq = screen_from_world(theta, pan, cam.k, cam.r, cam.position, xyz)
    if noise_std > 0.0:
        rng = np.random.default_rng(0) if rng is None else rng
        pq = pq + rng.normal(scale=noise_std, size=pq.shape)
    plots = np.zeros((int(horizon), 2), dtype=np.float64)
    plots[start : start + pq.shape[0]] = pq
    return Track(confidence=confidence, start=start, end=start + pq.shape[0] - 1, plots=plots)


@dataclass(frozen=True, eq=False)
class SyntheticScene:
    system: CameraSystem  # ground truth
    paths: list[np.ndarray]  # per subject, (frames,3) from `starts[k]`
    starts: list[int]
    tracks1: list[Track]
    tracks2: list[Track]


def ground_truth_system(
    rig: RigConfig | None = None,
    *,
    phi: float = 0.0,
    settings: CalibrationSettings | None = None,
) -> CameraSystem:
    rig = default_rig() if rig is None else rig
    settings = CalibrationSettings(z0=1.0) if settings is None else settings
    params = CameraParams(theta1=GT_THETA1, theta2=GT_THETA2, phi=phi, phi1=GT_PAN1, phi2=GT_PAN2)
    return CameraSystem(params=params, rig=rig, settings=settings)


def _random_segment(rng: np.random.Generator, z: float, min_length: float) -> tuple[np.ndarray, np.ndarray]:
    while True:
        p0 = np.array([rng.uniform(4.0, 20.0), rng.uniform(8.0, 22.0), z])
        p1 = np.array([rng.uniform(4.0, 20.0), rng.uniform(8.0, 22.0), z])
        if np.linalg.norm(p1 - p0) >= min_length:
            return p0, p1


def make_scene(
    *,
    subjects: int = 1,
    frames: int = 50,
    horizon: int = DEFAULT_HORIZON,
    noise_std: float = 0.0,
    seed: int = 0,
    settings: CalibrationSettings | None = None,
) -> SyntheticScene:
    """
    Synthetic two-camera scene of subjects walking straight lines on z = settings.z0.

    Subject 0 moves from (4, 8) to (16, 16) starting at frame 0 and is seen by both
    cameras over the same span; the others are random and each camera sees a
    shifted sub-span of their life, like unsynchronized detectors do.
    """
    rng = np.random.default_rng(seed)
    settings = CalibrationSettings(z0=1.0) if settings is None else settings
    z = settings.z0

    p0, p1 = np.array([4.0, 8.0, z]), np.array([16.0, 16.0, z])
    path0 = linear_path(p0, p1, frames)
    system = ground_truth_system(phi=heading(path0), settings=settings)

    paths = [path0]
    starts = [0]
    tracks1 = [track_from_world(system, 0, path0, 0, horizon=horizon, noise_std=noise_std, rng=rng)]
    tracks2 = [track_from_world(system, 1, path0, 0, horizon=horizon, noise_std=noise_std, rng=rng)]

    for _ in range(1, subjects):
        a, b = _random_segment(rng, z, min_length=12.0)
        n = int(rng.integers(frames // 2 + 10, frames + 10))
        start = int(rng.integers(0, max(1, horizon - n)))
        path = linear_path(a, b, n)
        paths.append(path)
        starts.append(start)
        # Each camera loses the subject for a few frames at either end.
        for tracks, cami in ((tracks1, 0), (tracks2, 1)):
            cut_lo = int(rng.integers(0, 5))
            cut_hi = int(rng.integers(0, 5))
            seg = path[cut_lo : n - cut_hi]
            conf = float(rng.uniform(0.5, 1.0))
            tracks.append(
                track_from_world(
                    system, cami, seg, start + cut_lo, horizon=horizon, confidence=conf, noise_std=noise_std, rng=rng
                )
            )

    return SyntheticScene(system=system, paths=paths, starts=starts, tracks1=tracks1, tracks2=tracks2)


def write_synthetic(out_dir: Path, scene: SyntheticScene) -> dict[str, Path]:
    """
    Write config.json, tracks1.json, tracks2.json and ground_truth.json into `out_dir`.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    system = scene.system

    config = {
        "schema_version": CONFIG_SCHEMA,
        "rig": rig_to_dict(system.rig),
        "calibration": calibration_to_dict(system.settings),
        # Perturbed ground truth so a local fit has somewhere sensible to start.
        "initial": {
            "theta1": system.params.theta1 + INITIAL_OFFSET[0],
            "theta2": system.params.theta2 + INITIAL_OFFSET[1],
            "phi": system.params.phi + INITIAL_OFFSET[2],
        },
    }
    config_path = out_dir / "config.json"
    config_path.write_text(json.dumps(config, indent=2, sort_keys=True), encoding="utf-8")

    gt = {
        "theta1": system.params.theta1,
        "theta2": system.params.theta2,
        "phi": system.params.phi,
        "phi1": system.params.phi1,
        "phi2": system.params.phi2,
        "starts": list(scene.starts),
        "paths": [np.asarray(p).tolist() for p in scene.paths],
    }
    gt_path = out_dir / "ground_truth.json"
    gt_path.write_text(json.dumps(gt, indent=2, sort_keys=True), encoding="utf-8")

    return {
        "config": config_path,
        "tracks1": save_tracks(out_dir / "tracks1.json", scene.tracks1),
        "tracks2": save_tracks(out_dir / "tracks2.json", scene.tracks2),
        "ground_truth": gt_path,
    }
