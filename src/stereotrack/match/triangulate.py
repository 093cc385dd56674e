from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from stereotrack.core.camera import CameraSystem
from stereotrack.core.tracks import Track, sync, union_window


@dataclass(frozen=True, eq=False)
class MatchResult:
    """
    A triangulated track pair.

    `points` covers the union span [start, end]; `loss` is the mean ray-ray
    residual over the frames both cameras observed.
    """

    i: int
    j: int
    loss: float
    start: int
    end: int
    points: np.ndarray  # (size,3)

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def displacement(self) -> float:
        """Net distance between the first and last point of the path."""
        return float(np.linalg.norm(self.points[-1] - self.points[0]))


def reconstruct_path(
    system: CameraSystem, track1: Track, track2: Track, *, z0: float | None = None
) -> tuple[np.ndarray, float, int, int]:
    """
    3D path of a track pair over their union span.

    Frames seen by both cameras use the ray-ray midpoint; frames seen by one camera
    only fall back to plane projection at `z0` (defaults to `system.settings.z0`),
    since depth is unobservable from a single ray. The two depth assumptions
    meet at the overlap boundary and are not blended.

    Returns (points (size,3), mean overlap residual, start, end).
    Raises NoOverlapError / SingularSystemError.
    """
    window = sync(track1, track2)
    xyz, residual = system.triangulate(window.coords1, window.coords2, first_frame=window.start)

    start, end = union_window(track1, track2)
    points = np.empty((end - start + 1, 3), dtype=np.float64)
    points[window.start - start : window.end - start + 1] = xyz

    for cami, track in ((0, track1), (1, track2)):
        # Frames before and after the overlap covered by this track only.
        for lo, hi in ((track.start, window.start - 1), (window.end + 1, track.end)):
            if lo > hi:
                continue
            points[lo - start : hi - start + 1] = system.project_to_plane(cami, track.coords(lo, hi), z0=z0)

    return points, float(np.mean(residual)), start, end


def triangulate_pair(
    system: CameraSystem, track1: Track, track2: Track, i: int, j: int, *, z0: float | None = None
) -> MatchResult:
    points, loss, start, end = reconstruct_path(system, track1, track2, z0=z0)
    return MatchResult(i=int(i), j=int(j), loss=loss, start=start, end=end, points=points)


def triangulate_match(
    system: CameraSystem,
    tracks1: Sequence[Track],
    tracks2: Sequence[Track],
    match: MatchResult,
    *,
    z0: float | None = None,
) -> MatchResult:
    """Recompute the full 3D path of an accepted match from its source tracks."""
    return triangulate_pair(system, tracks1[match.i], tracks2[match.j], match.i, match.j, z0=z0)
