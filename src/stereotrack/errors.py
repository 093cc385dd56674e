from __future__ import annotations


class StereoTrackError(Exception):
    """Base exception for all stereotrack errors."""


class NoOverlapError(StereoTrackError):
    """Raised when two tracks share no frames."""

    def __init__(self, start: int, end: int, message: str | None = None):
        self.start = int(start)
        self.end = int(end)
        super().__init__(message or f"tracks do not overlap (start={self.start} > end={self.end})")


class SingularSystemError(StereoTrackError):
    """
    Raised when a ray intersection cannot be solved.

    Covers near-parallel ray pairs (2x2 closest-point system) and rays parallel
    to the reference plane. `frame` is the offending absolute frame and
    `iteration` the calibration iteration, when known.
    """

    def __init__(self, message: str, frame: int | None = None, iteration: int | None = None):
        self.detail = message
        self.frame = frame
        self.iteration = iteration
        where = []
        if iteration is not None:
            where.append(f"calibration iteration {iteration}")
        if frame is not None:
            where.append(f"frame {frame}")
        super().__init__(f"{', '.join(where)}: {message}" if where else message)


class DegenerateGradientError(StereoTrackError):
    """Raised when the finite-difference gradient has zero (or non-finite) norm."""

    def __init__(self, iteration: int, norm: float):
        self.iteration = int(iteration)
        self.norm = float(norm)
        super().__init__(f"degenerate gradient at iteration {self.iteration} (norm={self.norm!r})")


class ConfigValidationError(StereoTrackError, ValueError):
    pass


class RecordValidationError(StereoTrackError, ValueError):
    """Raised when a persisted record (camera system, track, match) is malformed."""


class ReferenceWindowError(StereoTrackError, ValueError):
    """Raised when the calibration reference window is too short to define a heading."""
