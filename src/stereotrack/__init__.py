from stereotrack import config
from stereotrack.api import load_camera_system, load_matches, save_camera_system, save_matches
from stereotrack.calib import calibrate
from stereotrack.core.camera import CameraParams, CameraSystem
from stereotrack.core.tracks import SyncedWindow, Track, sync, union_window
from stereotrack.match import MatchResult, associate, triangulate_match

__all__ = [
    "config",
    "CameraParams",
    "CameraSystem",
    "MatchResult",
    "SyncedWindow",
    "Track",
    "associate",
    "calibrate",
    "load_camera_system",
    "load_matches",
    "save_camera_system",
    "save_matches",
    "sync",
    "triangulate_match",
    "union_window",
]
