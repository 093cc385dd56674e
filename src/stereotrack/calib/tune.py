from __future__ import annotations

import logging
import math
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np

from stereotrack.config import CalibrationSettings, validate_calibration_settings
from stereotrack.core.camera import N_SEARCHED, CameraParams, CameraSystem
from stereotrack.core.tracks import SyncedWindow
from stereotrack.errors import DegenerateGradientError, ReferenceWindowError, SingularSystemError

logger = logging.getLogger(__name__)


def wrap_angle(x: float) -> float:
    """Wrap an angle to [-pi, pi]."""
    return math.remainder(float(x), math.tau)


def _heading(system: CameraSystem, cami: int, theta: float, endpoints: np.ndarray, z0: float) -> float:
    # Heading of the plane-projected endpoint displacement, with the camera panned to 0.
    probe = CameraParams(theta1=theta, theta2=theta, phi=0.0)
    pts = system.project_to_plane(cami, endpoints, params=probe, z0=z0)
    delta = pts[1] - pts[0]
    return math.atan2(float(delta[1]), float(delta[0]))


def anchor_pans(system: CameraSystem, params: CameraParams, window: SyncedWindow, z0: float) -> CameraParams:
    """
    Derive phi1/phi2 so both cameras' projected endpoint displacement points along `phi`.

    Panning a camera rotates its plane projection about the vertical axis through
    the camera center, so the implied heading shifts by exactly the pan change.
    """
    e1, e2 = window.endpoints()
    h1 = _heading(system, 0, params.theta1, e1, z0)
    h2 = _heading(system, 1, params.theta2, e2, z0)
    return params.with_pans(wrap_angle(params.phi - h1), wrap_angle(params.phi - h2))


def plane_disagreement(system: CameraSystem, params: CameraParams, window: SyncedWindow, z0: float) -> float:
    """Sum over the window of distances between both cameras' plane-projected points."""
    m1 = system.project_to_plane(0, window.coords1, params=params, z0=z0)
    m2 = system.project_to_plane(1, window.coords2, params=params, z0=z0)
    return float(np.sum(np.linalg.norm(m1 - m2, axis=-1)))


def learning_rate(settings: CalibrationSettings, iteration: int) -> float:
    return settings.mu * math.exp(-4.0 * iteration / settings.ntrials)


@dataclass(frozen=True)
class CalibrationResult:
    system: CameraSystem
    iterations: int
    loss_history: np.ndarray  # (iterations,) loss before each update
    final_loss: float
    timed_out: bool = False
    diagnostics: dict[str, float] = field(default_factory=dict)


@dataclass
class CalibrationSession:
    """
    Mutable iteration state of one calibration run.

    The session only advances `params`; the camera system it was built from is
    never modified.
    """

    system: CameraSystem
    window: SyncedWindow
    settings: CalibrationSettings
    params: CameraParams = field(init=False)
    iteration: int = 0

    def __post_init__(self) -> None:
        with self.at_iteration():
            self.params = self.anchored(self.system.params.searched)

    @property
    def z0(self) -> float:
        return self.settings.z0

    def anchored(self, searched: np.ndarray) -> CameraParams:
        return anchor_pans(self.system, self.system.params.with_searched(searched), self.window, self.z0)

    def loss_at(self, searched: np.ndarray) -> float:
        return plane_disagreement(self.system, self.anchored(searched), self.window, self.z0)

    @contextmanager
    def at_iteration(self) -> Iterator[None]:
        """Tag ray failures raised inside the block with the current iteration."""
        try:
            yield
        except SingularSystemError as e:
            if e.iteration is not None:
                raise
            raise SingularSystemError(e.detail, frame=e.frame, iteration=self.iteration) from e

    def loss(self) -> float:
        with self.at_iteration():
            return plane_disagreement(self.system, self.params, self.window, self.z0)

    def gradient(self) -> np.ndarray:
        """Symmetric finite-difference gradient of the loss w.r.t. (theta1, theta2, phi)."""
        x = self.params.searched
        dp = self.settings.dp
        grad = np.zeros((N_SEARCHED,), dtype=np.float64)
        for j in range(N_SEARCHED):
            step = np.zeros_like(x)
            step[j] = dp
            grad[j] = (self.loss_at(x + step) - self.loss_at(x - step)) / (2.0 * dp)
        return grad

    def step(self) -> CameraParams:
        with self.at_iteration():
            grad = self.gradient()
        norm = float(np.linalg.norm(grad))
        if not math.isfinite(norm) or norm == 0.0:
            raise DegenerateGradientError(self.iteration, norm)
        rate = learning_rate(self.settings, self.iteration)
        with self.at_iteration():
            self.params = self.anchored(self.params.searched - rate * grad / norm)
        self.iteration += 1
        return self.params


def calibrate(
    system: CameraSystem,
    window: SyncedWindow,
    settings: CalibrationSettings | None = None,
    *,
    deadline_s: float | None = None,
) -> CalibrationResult:
    """
    Fit theta1, theta2 and the shared heading phi against one reference window.

    Runs exactly `settings.ntrials` normalized gradient steps with an exponentially
    decaying rate mu*exp(-4 i/ntrials). There is no convergence test. If
    `deadline_s` is given, the run stops early once that many seconds have
    elapsed (checked once per iteration).
    """
    settings = validate_calibration_settings(system.settings if settings is None else settings)
    if window.size < 2:
        raise ReferenceWindowError(f"reference window [{window.start},{window.end}] must span at least 2 frames")

    session = CalibrationSession(system=system, window=window, settings=settings)
    losses = np.empty((settings.ntrials,), dtype=np.float64)
    t0 = time.monotonic()
    timed_out = False
    log_every = max(1, settings.ntrials // 10)

    logger.info(
        "calibrating on frames [%d,%d] (%d frames, ntrials=%d)", window.start, window.end, window.size, settings.ntrials
    )
    for it in range(settings.ntrials):
        if deadline_s is not None and time.monotonic() - t0 >= deadline_s:
            timed_out = True
            logger.warning("calibration deadline reached after %d/%d iterations", it, settings.ntrials)
            break
        losses[it] = session.loss()
        session.step()
        if it % log_every == 0:
            logger.debug("iter %d loss=%.6g rate=%.3g", it, losses[it], learning_rate(settings, it))

    final_loss = session.loss()
    history = losses[: session.iteration].copy()
    logger.info("calibration finished: %d iterations, loss=%.6g", session.iteration, final_loss)
    return CalibrationResult(
        system=CameraSystem(params=session.params, rig=system.rig, settings=settings),
        iterations=session.iteration,
        loss_history=history,
        final_loss=final_loss,
        timed_out=timed_out,
        diagnostics={
            "initial_loss": float(history[0]) if history.size else final_loss,
            "final_loss": final_loss,
            "elapsed_s": time.monotonic() - t0,
            "mean_residual": final_loss / window.size,
        },
    )
