from stereotrack.calib.tune import CalibrationResult, CalibrationSession, anchor_pans, calibrate, plane_disagreement

__all__ = [
    "CalibrationResult",
    "CalibrationSession",
    "anchor_pans",
    "calibrate",
    "plane_disagreement",
]
