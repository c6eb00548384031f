"""Frame rectification through a solved perspective calibration."""

import logging
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ..models import PerspectiveCalibration

logger = logging.getLogger(__name__)

# Fixed so rectified output is reproducible pixel for pixel
INTERPOLATION = cv2.INTER_LINEAR


class CalibrationError(Exception):
    """Base class for calibration precondition failures."""


class CalibrationStateError(CalibrationError):
    """Operation requires a calibration that has not been established."""


class FrameSizeMismatchError(CalibrationError):
    """Frame dimensions differ from the ones the calibration was solved for."""


class FrameRectifier:
    """Warp frames onto the calibrated arena rectangle."""

    def __init__(self, interpolation: int = INTERPOLATION) -> None:
        self.interpolation = interpolation

    def rectify(
        self,
        frame: NDArray[np.uint8],
        calibration: Optional[PerspectiveCalibration],
        crop: bool = True,
    ) -> NDArray[np.uint8]:
        """Rectify a frame.

        Args:
            frame: Frame with the same dimensions used for calibration
            calibration: Solved calibration
            crop: Crop the warped frame to the arena rectangle

        Returns:
            New rectified frame; the input is not modified

        Raises:
            CalibrationStateError: If no calibration is given
            FrameSizeMismatchError: If the frame size differs from the calibrated size
        """
        if calibration is None:
            raise CalibrationStateError("Cannot undistort a frame before calibration")

        height, width = frame.shape[:2]
        if (width, height) != calibration.frame_size:
            raise FrameSizeMismatchError(
                f"Frame is {width}x{height}, calibration was solved for "
                f"{calibration.frame_size[0]}x{calibration.frame_size[1]}"
            )

        warped = cv2.warpPerspective(
            frame,
            calibration.transform_matrix,
            (width, height),
            flags=self.interpolation,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )

        if not crop:
            return warped

        x, y, w, h = arena_rect(calibration)
        return warped[y : y + h, x : x + w].copy()


def arena_rect(calibration: PerspectiveCalibration) -> tuple[int, int, int, int]:
    """Integer arena rectangle, clipped to the frame."""
    width, height = calibration.frame_size
    x, y, w, h = calibration.target_rect.as_int_rect()
    x = min(max(x, 0), width - 1)
    y = min(max(y, 0), height - 1)
    w = max(1, min(w, width - x))
    h = max(1, min(h, height - y))
    return x, y, w, h


def map_point(
    point: tuple[float, float], calibration: PerspectiveCalibration
) -> tuple[float, float]:
    """Map a frame pixel to arena coordinates (relative to the arena origin)."""
    src = np.array([[point]], dtype=np.float32)
    mapped = cv2.perspectiveTransform(src, calibration.transform_matrix)[0, 0]
    x, y, _, _ = arena_rect(calibration)
    return float(mapped[0] - x), float(mapped[1] - y)


def unmap_point(
    point: tuple[float, float], calibration: PerspectiveCalibration
) -> tuple[float, float]:
    """Map arena coordinates (relative to the arena origin) back to a frame pixel."""
    x, y, _, _ = arena_rect(calibration)
    src = np.array([[(point[0] + x, point[1] + y)]], dtype=np.float32)
    mapped = cv2.perspectiveTransform(src, calibration.inverse_matrix)[0, 0]
    return float(mapped[0]), float(mapped[1])
