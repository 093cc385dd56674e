from __future__ import annotations

import numpy as np

from stereotrack.errors import SingularSystemError

# Relative threshold on the 2x2 closest-point determinant (|d1|^2 |d2|^2 sin^2).
SINGULAR_TOL = 1e-12


def camera_frame(theta: float, phi: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Orthonormal camera frame for tilt `theta` and pan `phi`.

    Returns (n, a, b): view direction, horizontal screen axis, vertical screen axis.
    """
    ct, st = np.cos(theta), np.sin(theta)
    cp, sp = np.cos(phi), np.sin(phi)
    n = np.array([cp * ct, sp * ct, st], dtype=np.float64)
    a = np.array([sp, -cp, 0.0], dtype=np.float64)
    b = np.array([-cp * st, -sp * st, ct], dtype=np.float64)
    return n, a, b


def ray_directions(theta: float, phi: float, k: float, r: float, pq: np.ndarray) -> np.ndarray:
    """
    Ray directions d = k n + p a + (q/r) b for screen coordinates `pq` (N,2).

    Directions are not normalized; `k` sets their spread against the screen extent.
    """
    pq = np.asarray(pq, dtype=np.float64).reshape(-1, 2)
    n, a, b = camera_frame(theta, phi)
    return k * n[None, :] + pq[:, 0:1] * a[None, :] + (pq[:, 1:2] / r) * b[None, :]


def intersect_plane(origin: np.ndarray, dirs: np.ndarray, z0: float) -> np.ndarray:
    """
    Intersect rays (origin + t d) with the horizontal plane z = z0.
    """
    origin = np.asarray(origin, dtype=np.float64).reshape(3)
    dirs = np.asarray(dirs, dtype=np.float64).reshape(-1, 3)
    dz = dirs[:, 2]
    bad = np.abs(dz) < 1e-12
    if np.any(bad):
        idx = int(np.flatnonzero(bad)[0])
        raise SingularSystemError(f"ray {idx} is parallel to the plane z={z0}")
    t = (float(z0) - origin[2]) / dz
    return origin[None, :] + t[:, None] * dirs


def screen_from_world(
    theta: float, phi: float, k: float, r: float, origin: np.ndarray, xyz: np.ndarray
) -> np.ndarray:
    """
    Inverse of `ray_directions`: screen coordinates (N,2) whose rays pass through `xyz` (N,3).
    """
    origin = np.asarray(origin, dtype=np.float64).reshape(3)
    xyz = np.asarray(xyz, dtype=np.float64).reshape(-1, 3)
    n, a, b = camera_frame(theta, phi)
    v = xyz - origin[None, :]
    depth = v @ n
    if np.any(depth <= 0.0):
        raise ValueError("points must lie in front of the camera")
    p = k * (v @ a) / depth
    q = r * k * (v @ b) / depth
    return np.stack([p, q], axis=-1)


def triangulate_midpoint(
    o1: np.ndarray, d1: np.ndarray, o2: np.ndarray, d2: np.ndarray, *, first_frame: int | None = None
) -> tuple[np.ndarray, np.ndarray]:
    """
    Mid-point triangulation of two rays (o1 + t1 d1) and (o2 + t2 d2).
    Returns (XYZ, ray_distance).

    Raises SingularSystemError for near-parallel rays; `first_frame` offsets the
    reported frame index when the rows are consecutive frames.
    """
    o1 = np.asarray(o1, dtype=np.float64)
    o2 = np.asarray(o2, dtype=np.float64)
    d1 = np.asarray(d1, dtype=np.float64)
    d2 = np.asarray(d2, dtype=np.float64)

    # Solve for closest points on skew lines.
    w0 = o1 - o2
    a = np.sum(d1 * d1, axis=-1)
    b = np.sum(d1 * d2, axis=-1)
    c = np.sum(d2 * d2, axis=-1)
    d = np.sum(d1 * w0, axis=-1)
    e = np.sum(d2 * w0, axis=-1)

    denom = a * c - b * b
    singular = ~(np.abs(denom) > SINGULAR_TOL * a * c)
    if np.any(singular):
        idx = int(np.flatnonzero(np.atleast_1d(singular))[0])
        frame = None if first_frame is None else int(first_frame) + idx
        raise SingularSystemError("rays are parallel; closest-point system is not invertible", frame=frame)

    t1 = (b * e - c * d) / denom
    t2 = (a * e - b * d) / denom

    p1 = o1 + t1[..., None] * d1
    p2 = o2 + t2[..., None] * d2
    xyz = 0.5 * (p1 + p2)
    dist = np.linalg.norm(p1 - p2, axis=-1)
    return xyz, dist
