"""Chessboard calibration pattern detection."""

import logging
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ...config import config as config_manager

logger = logging.getLogger(__name__)


class ChessboardDetector:
    """Locate the inner-corner grid of a chessboard pattern in a frame.

    Detection is a pure function of the frame: the same frame always yields
    the same corners, and the frame is never modified. A missing, occluded or
    low-contrast pattern is an expected outcome and is reported as ``None``.
    """

    def __init__(
        self,
        pattern_size: Optional[tuple[int, int]] = None,
        subpix_window: Optional[int] = None,
        fast_check: Optional[bool] = None,
        max_iterations: Optional[int] = None,
        epsilon: Optional[float] = None,
    ) -> None:
        """Initialize the detector.

        Args:
            pattern_size: Inner corners as (columns, rows)
            subpix_window: Half-size of the corner refinement search window
            fast_check: Quickly reject frames that do not contain a pattern
            max_iterations: Corner refinement iteration limit
            epsilon: Corner refinement convergence threshold
        """
        if pattern_size is None:
            pattern_size = (
                config_manager.get("vision.calibration.pattern.columns", 9),
                config_manager.get("vision.calibration.pattern.rows", 6),
            )
        columns, rows = (int(v) for v in pattern_size)
        if columns < 3 or rows < 3:
            raise ValueError(f"Pattern needs at least 3x3 inner corners, got {pattern_size}")
        self.pattern_size = (columns, rows)

        if subpix_window is None:
            subpix_window = config_manager.get(
                "vision.calibration.pattern.subpix_window", 11
            )
        self.subpix_window = (int(subpix_window), int(subpix_window))

        if max_iterations is None:
            max_iterations = config_manager.get(
                "vision.calibration.pattern.subpix_max_iterations", 30
            )
        if epsilon is None:
            epsilon = config_manager.get("vision.calibration.pattern.subpix_epsilon", 0.1)
        self.criteria = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            int(max_iterations),
            float(epsilon),
        )

        if fast_check is None:
            fast_check = config_manager.get("vision.calibration.pattern.fast_check", True)
        self.flags = cv2.CALIB_CB_ADAPTIVE_THRESH | cv2.CALIB_CB_NORMALIZE_IMAGE
        if fast_check:
            self.flags |= cv2.CALIB_CB_FAST_CHECK

    @property
    def corner_count(self) -> int:
        return self.pattern_size[0] * self.pattern_size[1]

    def find(self, frame: NDArray[np.uint8]) -> Optional[NDArray[np.float32]]:
        """Find the chessboard corners in a frame.

        Args:
            frame: BGR or grayscale image

        Returns:
            (columns * rows, 2) array of sub-pixel corners in row-major grid
            order, or None when the pattern is not found
        """
        gray = _to_gray(frame)

        found, corners = cv2.findChessboardCorners(gray, self.pattern_size, None, self.flags)
        if not found or corners is None or len(corners) != self.corner_count:
            logger.debug("Chessboard pattern not found")
            return None

        # cornerSubPix refines in place; corners is our own array
        corners = cv2.cornerSubPix(
            gray, corners, self.subpix_window, (-1, -1), self.criteria
        )

        logger.debug(f"Found chessboard with {len(corners)} corners")
        return corners.reshape(-1, 2).astype(np.float32)


def _to_gray(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Grayscale copy of a frame, validating its layout."""
    if not isinstance(frame, np.ndarray) or frame.size == 0:
        raise ValueError("Frame must be a non-empty numpy array")
    if frame.dtype != np.uint8:
        raise ValueError(f"Frame must be uint8, got {frame.dtype}")

    if frame.ndim == 2:
        return frame.copy()
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 1:
        return frame[:, :, 0].copy()

    raise ValueError(f"Unsupported frame shape {frame.shape}")
