# Detection core
from .errors import DecodeError, DetectorFault
from .geometry import BoundingBox, union_all
from .motion import detect_motion, motion_mask
from .frames import Frame, FrameHistory, decode_frame, extract_jpeg
from .zoom import reliable_boxes, zoom_tier
from .detector import (
    Detector,
    DetectorPool,
    HaarFaceDetector,
    HttpDetector,
    create_detector,
    parse_object_info
)

__all__ = [
    # Errors
    "DecodeError",
    "DetectorFault",
    # Geometry
    "BoundingBox",
    "union_all",
    # Motion
    "detect_motion",
    "motion_mask",
    # Frames
    "Frame",
    "FrameHistory",
    "decode_frame",
    "extract_jpeg",
    # Zoom
    "reliable_boxes",
    "zoom_tier",
    # Detector
    "Detector",
    "DetectorPool",
    "HaarFaceDetector",
    "HttpDetector",
    "create_detector",
    "parse_object_info",
]
