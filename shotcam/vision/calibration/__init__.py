"""Chessboard auto-calibration.

Main Classes:
    AutoCalibrationManager: Session state and the active calibration
    ChessboardDetector: Inner-corner detection in single frames
    GeometrySolver: Board outline, rejection rules and homography
    FrameRectifier: Warps frames onto the arena rectangle

Usage Example:
    from shotcam.vision.calibration import AutoCalibrationManager

    manager = AutoCalibrationManager()
    corners = manager.find_pattern(frame)
    if corners is not None and manager.calibrate(corners, frame):
        arena = manager.undistort(next_frame)
"""

from .geometry import (
    GeometrySolver,
    estimate_board_quad,
    normalize_corner_order,
    order_quad_clockwise,
    outer_corners,
    target_rectangle,
)
from .manager import AutoCalibrationManager
from .pattern import ChessboardDetector
from .rectify import (
    CalibrationError,
    CalibrationStateError,
    FrameRectifier,
    FrameSizeMismatchError,
    map_point,
    unmap_point,
)

__all__ = [
    "AutoCalibrationManager",
    "ChessboardDetector",
    "GeometrySolver",
    "FrameRectifier",
    "CalibrationError",
    "CalibrationStateError",
    "FrameSizeMismatchError",
    "estimate_board_quad",
    "normalize_corner_order",
    "order_quad_clockwise",
    "outer_corners",
    "target_rectangle",
    "map_point",
    "unmap_point",
]
