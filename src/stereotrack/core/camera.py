from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from stereotrack.config import CalibrationSettings, InitialOrientation, RigConfig
from stereotrack.core.geometry import intersect_plane, ray_directions, triangulate_midpoint

# theta1, theta2, phi
N_SEARCHED = 3


@dataclass(frozen=True)
class CameraParams:
    """
    Orientation of both cameras.

    `theta1`, `theta2` are tilts and `phi` is the shared heading searched by the
    calibrator; `phi1`, `phi2` are the per-camera pans, derived from `phi`.
    """

    theta1: float
    theta2: float
    phi: float
    phi1: float = 0.0
    phi2: float = 0.0

    @classmethod
    def initial(cls, init: InitialOrientation | None = None) -> "CameraParams":
        init = InitialOrientation() if init is None else init
        return cls(theta1=init.theta1, theta2=init.theta2, phi=init.phi)

    @property
    def searched(self) -> np.ndarray:
        return np.array([self.theta1, self.theta2, self.phi], dtype=np.float64)

    def with_searched(self, vec: np.ndarray) -> "CameraParams":
        vec = np.asarray(vec, dtype=np.float64).reshape(-1)
        if vec.size != N_SEARCHED:
            raise ValueError(f"searched vector must have length {N_SEARCHED}")
        return replace(self, theta1=float(vec[0]), theta2=float(vec[1]), phi=float(vec[2]))

    def with_pans(self, phi1: float, phi2: float) -> "CameraParams":
        return replace(self, phi1=float(phi1), phi2=float(phi2))

    def orientation(self, cami: int) -> tuple[float, float]:
        """(theta, pan) of camera `cami` (0 or 1)."""
        if cami == 0:
            return self.theta1, self.phi1
        if cami == 1:
            return self.theta2, self.phi2
        raise ValueError("cami should be 0 or 1")


@dataclass(frozen=True)
class CameraSystem:
    """
    Two-camera rig: orientation (`params`), fixed optics and positions (`rig`),
    and the calibration settings the orientation was fitted with.
    """

    params: CameraParams
    rig: RigConfig
    settings: CalibrationSettings = CalibrationSettings()

    def with_params(self, params: CameraParams) -> "CameraSystem":
        return replace(self, params=params)

    def origin(self, cami: int) -> np.ndarray:
        return np.asarray(self.rig.camera(cami).position, dtype=np.float64)

    def rays(self, cami: int, pq: np.ndarray, params: CameraParams | None = None) -> tuple[np.ndarray, np.ndarray]:
        """Ray origin (3,) and directions (N,3) of camera `cami` for screen coordinates `pq`."""
        params = self.params if params is None else params
        theta, pan = params.orientation(cami)
        cam = self.rig.camera(cami)
        return self.origin(cami), ray_directions(theta, pan, cam.k, cam.r, pq)

    def project_to_plane(
        self,
        cami: int,
        pq: np.ndarray,
        params: CameraParams | None = None,
        z0: float | None = None,
    ) -> np.ndarray:
        """
        Plane-project screen coordinates of camera `cami` onto z = z0.

        `z0` defaults to the reference plane height of `settings`.
        """
        z0 = self.settings.z0 if z0 is None else float(z0)
        origin, dirs = self.rays(cami, pq, params)
        return intersect_plane(origin, dirs, z0)

    def triangulate(
        self, pq1: np.ndarray, pq2: np.ndarray, *, first_frame: int | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Ray-ray triangulation of corresponding coordinates (N,2) of both cameras.

        Returns (XYZ (N,3), residual (N,)).
        """
        pq1 = np.asarray(pq1, dtype=np.float64).reshape(-1, 2)
        pq2 = np.asarray(pq2, dtype=np.float64).reshape(-1, 2)
        if pq1.shape[0] != pq2.shape[0]:
            raise ValueError("pq1 and pq2 must have the same length")
        o1, d1 = self.rays(0, pq1)
        o2, d2 = self.rays(1, pq2)
        return triangulate_midpoint(o1, d1, o2, d2, first_frame=first_frame)

    def describe(self) -> list[dict[str, Any]]:
        """
        Per-camera summary for a y-up rendering engine.

        Position is (x, z, y); rotation is (-theta, 90 - pan, 0) in degrees.
        """
        out = []
        for cami in (0, 1):
            theta, pan = self.params.orientation(cami)
            cam = self.rig.camera(cami)
            x, y, z = cam.position
            out.append(
                {
                    "camera": cami + 1,
                    "position": [x, z, y],
                    "rotation_deg": [-math.degrees(theta), 90.0 - math.degrees(pan), 0.0],
                    "vertical_fov_deg": math.degrees(2.0 * math.atan(cam.k / 2.0 / cam.r)),
                    "aspect_ratio": cam.r,
                }
            )
        return out
