from __future__ import annotations

import concurrent.futures
import logging
from typing import Sequence

import numpy as np

from stereotrack.config import AssociationSettings
from stereotrack.core.camera import CameraSystem
from stereotrack.core.tracks import Track
from stereotrack.errors import NoOverlapError, SingularSystemError
from stereotrack.match.triangulate import MatchResult, triangulate_pair

logger = logging.getLogger(__name__)


def score_pair(
    system: CameraSystem,
    track1: Track,
    track2: Track,
    i: int,
    j: int,
    settings: AssociationSettings,
    *,
    z0: float | None = None,
) -> MatchResult | None:
    """
    Triangulate one candidate pair, or return None when it is rejected.

    Rejected: no common frames, parallel rays, mean residual above `max_loss`,
    or a path whose endpoints are closer than `min_dist` (static detections).
    """
    try:
        res = triangulate_pair(system, track1, track2, i, j, z0=z0)
    except NoOverlapError:
        return None
    except SingularSystemError as e:
        logger.debug("pair (%d,%d) rejected: %s", i, j, e)
        return None

    if not np.isfinite(res.loss) or not np.all(np.isfinite(res.points)):
        logger.debug("pair (%d,%d) rejected: non-finite reconstruction", i, j)
        return None
    if res.loss > settings.max_loss:
        logger.debug("pair (%d,%d) rejected: loss %.3f > %.3f", i, j, res.loss, settings.max_loss)
        return None
    dist = res.displacement()
    if dist < settings.min_dist:
        logger.debug("pair (%d,%d) rejected: displacement %.3f < %.3f", i, j, dist, settings.min_dist)
        return None
    return res


def score_candidates(
    system: CameraSystem,
    tracks1: Sequence[Track],
    tracks2: Sequence[Track],
    settings: AssociationSettings,
    *,
    z0: float | None = None,
) -> tuple[np.ndarray, list[list[MatchResult | None]]]:
    """
    Evaluate all N1 x N2 candidate pairs.

    Returns (loss (N1,N2), results) where rejected cells hold +inf / None. With
    `settings.workers > 1` cells are evaluated on a thread pool; each task owns one cell.
    """
    n1, n2 = len(tracks1), len(tracks2)
    loss = np.full((n1, n2), np.inf, dtype=np.float64)
    results: list[list[MatchResult | None]] = [[None] * n2 for _ in range(n1)]

    def _fill(i: int, j: int, res: MatchResult | None) -> None:
        if res is not None:
            loss[i, j] = res.loss
            results[i][j] = res

    cells = [(i, j) for i in range(n1) for j in range(n2)]
    if settings.workers <= 1:
        for i, j in cells:
            _fill(i, j, score_pair(system, tracks1[i], tracks2[j], i, j, settings, z0=z0))
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=settings.workers) as executor:
            futures = {
                executor.submit(score_pair, system, tracks1[i], tracks2[j], i, j, settings, z0=z0): (i, j)
                for i, j in cells
            }
            for future in concurrent.futures.as_completed(futures):
                i, j = futures[future]
                _fill(i, j, future.result())
    return loss, results


def greedy_assign(loss: np.ndarray) -> list[tuple[int, int]]:
    """
    Greedy bipartite assignment: repeatedly take the smallest finite loss among
    unused rows and columns. Not globally optimal.
    """
    loss = np.array(loss, dtype=np.float64)
    if loss.ndim != 2:
        raise ValueError("loss must be a 2D matrix")
    pairs: list[tuple[int, int]] = []
    while loss.size and np.any(np.isfinite(loss)):
        masked = np.where(np.isfinite(loss), loss, np.inf)
        i, j = np.unravel_index(int(np.argmin(masked)), masked.shape)
        pairs.append((int(i), int(j)))
        loss[i, :] = np.inf
        loss[:, j] = np.inf
    return pairs


def associate(
    system: CameraSystem,
    tracks1: Sequence[Track],
    tracks2: Sequence[Track],
    settings: AssociationSettings | None = None,
    *,
    z0: float | None = None,
) -> list[MatchResult]:
    """
    Match tracks of camera 1 to tracks of camera 2 with a calibrated system.

    Returns accepted matches sorted by ascending loss; each source and target
    index appears at most once.
    """
    settings = AssociationSettings() if settings is None else settings
    loss, results = score_candidates(system, tracks1, tracks2, settings, z0=z0)
    n_valid = int(np.sum(np.isfinite(loss)))

    matches = []
    for i, j in greedy_assign(loss):
        # Finite loss cells always hold a result.
        res = results[i][j]
        if res is not None:
            matches.append(res)
    matches.sort(key=lambda m: m.loss)

    logger.info(
        "associated %d pairs from %dx%d candidates (%d valid)", len(matches), len(tracks1), len(tracks2), n_valid
    )
    return matches
