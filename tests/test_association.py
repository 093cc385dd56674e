import numpy as np
import pytest

from stereotrack.config import AssociationSettings, CameraConfig, RigConfig
from stereotrack.core.camera import CameraParams, CameraSystem
from stereotrack.match import associate, greedy_assign, score_candidates, triangulate_match, triangulate_pair
from stereotrack.match.associate import score_pair
from stereotrack.sim.synthetic import ground_truth_system, linear_path, track_from_world

SEGMENTS = [
    ((4.0, 8.0, 1.0), (16.0, 16.0, 1.0), 0, 40),
    ((18.0, 10.0, 1.0), (6.0, 20.0, 1.0), 10, 50),
    ((6.0, 21.0, 1.0), (19.0, 12.0, 1.0), 30, 50),
]


def _scene(system):
    tracks1, tracks2 = [], []
    for p0, p1, start, n in SEGMENTS:
        path = linear_path(p0, p1, n)
        tracks1.append(track_from_world(system, 0, path, start, horizon=120))
        tracks2.append(track_from_world(system, 1, path, start, horizon=120))
    return tracks1, tracks2


def test_greedy_assign_literal_matrices():
    assert greedy_assign(np.array([[1.0, 2.0], [0.5, 3.0]])) == [(1, 0), (0, 1)]
    assert greedy_assign(np.array([[np.inf, 1.0], [np.inf, 2.0]])) == [(0, 1)]
    assert greedy_assign(np.full((2, 3), np.inf)) == []
    assert greedy_assign(np.zeros((0, 4))) == []


def test_associate_recovers_permuted_pairs():
    system = ground_truth_system()
    tracks1, tracks2 = _scene(system)
    perm = [2, 0, 1]
    tracks2 = [tracks2[k] for k in perm]

    matches = associate(system, tracks1, tracks2)
    pairs = sorted((m.i, m.j) for m in matches)
    assert pairs == [(0, 1), (1, 2), (2, 0)]
    assert len({m.i for m in matches}) == len(matches)
    assert len({m.j for m in matches}) == len(matches)
    losses = [m.loss for m in matches]
    assert losses == sorted(losses)
    assert max(losses) < 1e-6


def test_worker_pool_matches_inline_scoring():
    system = ground_truth_system()
    tracks1, tracks2 = _scene(system)
    loss_a, _ = score_candidates(system, tracks1, tracks2, AssociationSettings(workers=1))
    loss_b, _ = score_candidates(system, tracks1, tracks2, AssociationSettings(workers=4))
    assert np.array_equal(np.isfinite(loss_a), np.isfinite(loss_b))
    assert np.array_equal(loss_a[np.isfinite(loss_a)], loss_b[np.isfinite(loss_b)])


def test_static_subject_is_rejected():
    system = ground_truth_system()
    path = np.repeat(np.array([[12.0, 14.0, 1.0]]), 30, axis=0)
    t1 = track_from_world(system, 0, path, 0, horizon=50)
    t2 = track_from_world(system, 1, path, 0, horizon=50)

    res = triangulate_pair(system, t1, t2, 0, 0)
    assert res.loss < 1e-9
    assert res.displacement() < 1e-6
    assert associate(system, [t1], [t2]) == []


def test_disjoint_tracks_are_not_candidates():
    system = ground_truth_system()
    path = linear_path((4.0, 8.0, 1.0), (16.0, 16.0, 1.0), 60)
    t1 = track_from_world(system, 0, path[:20], 0, horizon=80)
    t2 = track_from_world(system, 1, path[30:], 30, horizon=80)
    assert score_pair(system, t1, t2, 0, 0, AssociationSettings()) is None


def test_max_loss_rejects_noisy_pair():
    system = ground_truth_system()
    path = linear_path((4.0, 8.0, 1.0), (16.0, 16.0, 1.0), 40)
    t1 = track_from_world(system, 0, path, 0, horizon=50)
    t2 = track_from_world(system, 1, path, 0, horizon=50, noise_std=0.01, rng=np.random.default_rng(0))
    strict = AssociationSettings(max_loss=1e-3)
    assert score_pair(system, t1, t2, 0, 0, AssociationSettings()) is not None
    assert score_pair(system, t1, t2, 0, 0, strict) is None


def test_parallel_rays_are_not_candidates():
    cam = CameraConfig(k=1.0, r=1.5, position=(0.0, 0.0, 6.0))
    system = CameraSystem(
        params=CameraParams(theta1=-0.3, theta2=-0.3, phi=0.0, phi1=0.8, phi2=0.8),
        rig=RigConfig(cam1=cam, cam2=cam),
    )
    t1 = track_from_world(ground_truth_system(), 0, linear_path((4.0, 8.0, 1.0), (16.0, 16.0, 1.0), 30), 0, horizon=30)
    assert score_pair(system, t1, t1, 0, 0, AssociationSettings()) is None


def test_union_path_covers_both_spans():
    system = ground_truth_system()
    path = linear_path((4.0, 8.0, 1.0), (16.0, 16.0, 1.0), 45)
    t1 = track_from_world(system, 0, path[:40], 0, horizon=60)
    t2 = track_from_world(system, 1, path[5:], 5, horizon=60)

    res = triangulate_pair(system, t1, t2, 0, 0)
    assert (res.start, res.end) == (0, 44)
    assert res.points.shape == (45, 3)
    # Outside the overlap the plane projection lands on the walking plane itself.
    assert np.max(np.linalg.norm(res.points - path, axis=-1)) < 1e-6

    again = triangulate_match(system, [t1], [t2], res)
    assert np.array_equal(again.points, res.points)


def test_associate_with_no_tracks():
    system = ground_truth_system()
    assert associate(system, [], []) == []
    tracks1, _ = _scene(system)
    assert associate(system, tracks1, []) == []


@pytest.mark.parametrize("workers", [1, 3])
def test_associate_is_order_independent(workers):
    system = ground_truth_system()
    tracks1, tracks2 = _scene(system)
    settings = AssociationSettings(workers=workers)
    a = {(m.i, m.j) for m in associate(system, tracks1, tracks2, settings)}
    b = {(m.i, m.j) for m in associate(system, tracks1, tracks2[::-1], settings)}
    n = len(tracks2)
    assert {(i, n - 1 - j) for i, j in b} == a
