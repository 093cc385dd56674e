from stereotrack.api.model_io import (
    camera_system_from_record,
    camera_system_to_record,
    load_camera_system,
    load_matches,
    save_camera_system,
    save_matches,
)

__all__ = [
    "camera_system_from_record",
    "camera_system_to_record",
    "load_camera_system",
    "load_matches",
    "save_camera_system",
    "save_matches",
]
