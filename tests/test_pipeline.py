import math

import numpy as np
import pytest

from stereotrack.calib import calibrate
from stereotrack.config import CalibrationSettings
from stereotrack.core.camera import CameraParams
from stereotrack.core.tracks import sync
from stereotrack.match import associate
from stereotrack.sim.synthetic import INITIAL_OFFSET, make_scene


def _angle_err(a, b):
    return abs(math.remainder(a - b, math.tau))


@pytest.mark.integration
def test_calibrate_then_associate_recovers_ground_truth():
    settings = CalibrationSettings(z0=1.0, ntrials=5000)
    scene = make_scene(subjects=1, frames=50, settings=settings)
    gt = scene.system.params
    start = scene.system.with_params(
        CameraParams(
            theta1=gt.theta1 + INITIAL_OFFSET[0],
            theta2=gt.theta2 + INITIAL_OFFSET[1],
            phi=gt.phi + INITIAL_OFFSET[2],
        )
    )

    window = sync(scene.tracks1[0], scene.tracks2[0])
    result = calibrate(start, window, settings)
    fit = result.system.params
    assert result.iterations == 5000
    assert result.final_loss < 0.05 * result.loss_history[0]
    for a, b in ((fit.theta1, gt.theta1), (fit.theta2, gt.theta2), (fit.phi, gt.phi), (fit.phi1, gt.phi1), (fit.phi2, gt.phi2)):
        assert _angle_err(a, b) < 0.02

    matches = associate(result.system, scene.tracks1, scene.tracks2)
    assert len(matches) == 1
    m = matches[0]
    assert (m.i, m.j) == (0, 0)
    assert m.loss < 30.0
    assert np.linalg.norm(m.points[-1] - scene.paths[0][-1]) < 1.0
