from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from stereotrack.api.model_io import load_camera_system, save_camera_system, save_matches
from stereotrack.calib.tune import calibrate
from stereotrack.config import load_config, validate_calibration_settings
from stereotrack.core.camera import CameraParams, CameraSystem
from stereotrack.core.tracks import filter_tracks, load_tracks, sync
from stereotrack.errors import ConfigValidationError, StereoTrackError
from stereotrack.match.associate import associate
from stereotrack.sim.synthetic import make_scene, write_synthetic

logger = logging.getLogger("stereotrack")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="stereotrack")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    gen = sub.add_parser("generate-synthetic", help="Write a synthetic two-camera scene (config + tracks + ground truth).")
    gen.add_argument("--out", type=Path, required=True)
    gen.add_argument("--subjects", type=int, default=3)
    gen.add_argument("--frames", type=int, default=50)
    gen.add_argument("--noise-std", type=float, default=0.0, help="Gaussian noise on screen coordinates.")
    gen.add_argument("--seed", type=int, default=0)

    cal = sub.add_parser("calibrate", help="Fit camera orientation against one reference track pair.")
    cal.add_argument("--config", type=Path, required=True)
    cal.add_argument("--tracks1", type=Path, required=True)
    cal.add_argument("--tracks2", type=Path, required=True)
    cal.add_argument("--ref", type=int, nargs=2, default=[0, 0], metavar=("I", "J"), help="Reference pair indices.")
    cal.add_argument("--ntrials", type=int, default=None, help="Override calibration.ntrials.")
    cal.add_argument("--deadline-s", type=float, default=None, help="Stop after this many seconds.")
    cal.add_argument("--out", type=Path, required=True)

    assoc = sub.add_parser("associate", help="Match and triangulate tracks with a calibrated camera system.")
    assoc.add_argument("--system", type=Path, required=True)
    assoc.add_argument("--tracks1", type=Path, required=True)
    assoc.add_argument("--tracks2", type=Path, required=True)
    assoc.add_argument("--config", type=Path, default=None, help="Read association settings from this config.")
    assoc.add_argument("--min-confidence", type=float, default=0.0)
    assoc.add_argument("--z0", type=float, default=None, help="Override the reference plane height.")
    assoc.add_argument("--out", type=Path, required=True)

    desc = sub.add_parser("describe", help="Print per-camera position, rotation and field of view.")
    desc.add_argument("system", type=Path)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return _run(args)
    except StereoTrackError as e:
        logger.error("%s failed: %s", args.cmd, e)
        return 1


def _run(args: argparse.Namespace) -> int:
    if args.cmd == "generate-synthetic":
        scene = make_scene(subjects=args.subjects, frames=args.frames, noise_std=args.noise_std, seed=args.seed)
        paths = write_synthetic(args.out, scene)
        for p in paths.values():
            print(f"Wrote {p}")
        return 0

    if args.cmd == "calibrate":
        config = load_config(args.config)
        settings = config.calibration
        if args.ntrials is not None:
            settings = validate_calibration_settings(replace(settings, ntrials=int(args.ntrials)))
        tracks1 = load_tracks(args.tracks1)
        tracks2 = load_tracks(args.tracks2)
        i, j = args.ref
        if not (0 <= i < len(tracks1) and 0 <= j < len(tracks2)):
            raise ConfigValidationError(f"--ref {i} {j} out of range ({len(tracks1)} x {len(tracks2)} tracks)")
        window = sync(tracks1[i], tracks2[j])
        system = CameraSystem(params=CameraParams.initial(config.initial), rig=config.rig, settings=settings)
        result = calibrate(system, window, settings, deadline_s=args.deadline_s)
        save_camera_system(args.out, result.system)
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "associate":
        system = load_camera_system(args.system)
        settings = load_config(args.config).association if args.config else None
        tracks1 = filter_tracks(load_tracks(args.tracks1), args.min_confidence)
        tracks2 = filter_tracks(load_tracks(args.tracks2), args.min_confidence)
        matches = associate(system, tracks1, tracks2, settings, z0=args.z0)
        save_matches(args.out, matches)
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "describe":
        system = load_camera_system(args.system)
        json.dump(system.describe(), sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
