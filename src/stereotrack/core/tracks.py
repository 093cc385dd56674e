from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np

from stereotrack.errors import NoOverlapError, RecordValidationError

TRACKS_SCHEMA = "stereotrack.tracks.v0"

# Minimum confidence used when pruning noisy detections.
DEFAULT_MIN_CONFIDENCE = 0.2


@dataclass(frozen=True, eq=False)
class Track:
    """
    Detections of one subject in one camera.

    `plots` is a dense (horizon, 2) array of screen coordinates (p, q) indexed by
    absolute frame (100 ms resolution). Only rows in [start, end] are meaningful.
    """

    confidence: float
    start: int
    end: int
    plots: np.ndarray  # (H,2)

    def __post_init__(self) -> None:
        plots = np.array(self.plots, dtype=np.float64)
        if plots.ndim != 2 or plots.shape[1] != 2:
            raise RecordValidationError("track plots must be (H,2)")
        start, end = int(self.start), int(self.end)
        if start < 0 or start > end or end >= plots.shape[0]:
            raise RecordValidationError(
                f"track span [{start},{end}] must satisfy 0 <= start <= end < horizon ({plots.shape[0]})"
            )
        if not np.all(np.isfinite(plots[start : end + 1])):
            raise RecordValidationError("track plots must be finite inside [start,end]")
        plots.setflags(write=False)
        object.__setattr__(self, "plots", plots)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)
        object.__setattr__(self, "confidence", float(self.confidence))

    @property
    def horizon(self) -> int:
        return int(self.plots.shape[0])

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def coords(self, start: int | None = None, end: int | None = None) -> np.ndarray:
        """Screen coordinates for frames [start, end] (defaults to the track span)."""
        start = self.start if start is None else int(start)
        end = self.end if end is None else int(end)
        if start < self.start or end > self.end or start > end:
            raise ValueError(f"[{start},{end}] is outside track span [{self.start},{self.end}]")
        return self.plots[start : end + 1]

    def covers(self, frame: int) -> bool:
        return self.start <= frame <= self.end

    def path_length(self) -> float:
        """Screen-space polyline length over the track span."""
        pq = self.coords()
        if pq.shape[0] < 2:
            return 0.0
        return float(np.sum(np.linalg.norm(np.diff(pq, axis=0), axis=-1)))


@dataclass(frozen=True, eq=False)
class SyncedWindow:
    start: int
    end: int
    coords1: np.ndarray  # (size,2)
    coords2: np.ndarray  # (size,2)

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def endpoints(self) -> tuple[np.ndarray, np.ndarray]:
        """First and last coordinates of each camera, each shaped (2,2)."""
        e1 = self.coords1[[0, -1]]
        e2 = self.coords2[[0, -1]]
        return e1, e2


def overlap_window(track_a: Track, track_b: Track) -> tuple[int, int]:
    return max(track_a.start, track_b.start), min(track_a.end, track_b.end)


def union_window(track_a: Track, track_b: Track) -> tuple[int, int]:
    """Frame span seen by at least one of the two tracks."""
    return min(track_a.start, track_b.start), max(track_a.end, track_b.end)


def sync(track_a: Track, track_b: Track) -> SyncedWindow:
    """
    Align two tracks on their common frames.

    Raises NoOverlapError when the validity spans do not intersect.
    """
    start, end = overlap_window(track_a, track_b)
    if start > end:
        raise NoOverlapError(start, end)
    return SyncedWindow(
        start=start,
        end=end,
        coords1=track_a.coords(start, end),
        coords2=track_b.coords(start, end),
    )


def filter_tracks(tracks: Iterable[Track], min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> list[Track]:
    return [tr for tr in tracks if tr.confidence >= min_confidence]


def sort_by_length(tracks: Iterable[Track]) -> list[Track]:
    """Longest screen-space path first."""
    return sorted(tracks, key=lambda tr: tr.path_length(), reverse=True)


def parse_track(data: dict[str, Any]) -> Track:
    if not isinstance(data, dict):
        raise RecordValidationError("track record must be an object")
    for k in ("confidence", "start", "end", "plots"):
        if k not in data:
            raise RecordValidationError(f"track record missing key: {k}")
    conf = data["confidence"]
    if isinstance(conf, bool) or not isinstance(conf, (int, float)) or not math.isfinite(conf):
        raise RecordValidationError("track confidence must be a finite number")
    for k in ("start", "end"):
        if isinstance(data[k], bool) or not isinstance(data[k], int):
            raise RecordValidationError(f"track {k} must be an integer")
    try:
        plots = np.asarray(data["plots"], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise RecordValidationError("track plots must be a list of [p,q] pairs") from e
    return Track(confidence=float(conf), start=data["start"], end=data["end"], plots=plots)


def track_to_dict(track: Track) -> dict[str, Any]:
    plots = np.array(track.plots, dtype=np.float64)
    # Rows outside the span carry no information; store them as zeros.
    plots[: track.start] = 0.0
    plots[track.end + 1 :] = 0.0
    return {
        "confidence": track.confidence,
        "start": track.start,
        "end": track.end,
        "plots": plots.tolist(),
    }


def load_tracks(path: Path) -> list[Track]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict) or data.get("schema_version") != TRACKS_SCHEMA:
        raise RecordValidationError(f"{path}: schema_version must be {TRACKS_SCHEMA}")
    tracks = data.get("tracks")
    if not isinstance(tracks, list):
        raise RecordValidationError(f"{path}: tracks must be a list")
    return [parse_track(t) for t in tracks]


def save_tracks(path: Path, tracks: Sequence[Track]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"schema_version": TRACKS_SCHEMA, "tracks": [track_to_dict(t) for t in tracks]}
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path
