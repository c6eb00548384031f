"""Auto-calibration session manager."""

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from ..models import Bounds, CalibrationState, PerspectiveCalibration
from .geometry import GeometrySolver
from .pattern import ChessboardDetector
from .rectify import CalibrationStateError, FrameRectifier

logger = logging.getLogger(__name__)

CalibrationCallback = Callable[[Optional[Bounds]], None]


class AutoCalibrationManager:
    """Owns the calibration session and the active perspective calibration.

    Coordinates the chessboard detector, the geometry solver and the frame
    rectifier:
    - Pattern detection on single frames
    - Calibration from a detected pattern, all-or-nothing
    - Undistortion of subsequent frames
    - Saving and loading the solved transform

    The solved transform and bounds live in one immutable
    ``PerspectiveCalibration`` record that is swapped in whole when a
    calibration succeeds, so readers on other threads see either the old
    record or the new one and never a mix of the two.
    """

    def __init__(
        self,
        detector: Optional[ChessboardDetector] = None,
        solver: Optional[GeometrySolver] = None,
        rectifier: Optional[FrameRectifier] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            detector: Pattern detector (configured default if None)
            solver: Geometry solver, sharing the detector's pattern size if None
            rectifier: Frame rectifier (bilinear default if None)
        """
        self.detector = detector or ChessboardDetector()
        self.solver = solver or GeometrySolver(pattern_size=self.detector.pattern_size)
        self.rectifier = rectifier or FrameRectifier()

        if self.solver.pattern_size != self.detector.pattern_size:
            raise ValueError(
                f"Detector pattern {self.detector.pattern_size} does not match "
                f"solver pattern {self.solver.pattern_size}"
            )

        self._calibration: Optional[PerspectiveCalibration] = None
        self._state = CalibrationState.UNCALIBRATED
        self._state_lock = threading.Lock()
        self._calibrate_lock = threading.Lock()
        self._callback: Optional[CalibrationCallback] = None

    @property
    def state(self) -> CalibrationState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: CalibrationState) -> None:
        with self._state_lock:
            if self._state != state:
                logger.debug(f"Calibration state changed: {self._state} -> {state}")
                self._state = state

    def set_calibration_callback(self, callback: Optional[CalibrationCallback]) -> None:
        """Set callback fired with the bounds whenever process_frame calibrates."""
        self._callback = callback

    def is_calibrated(self) -> bool:
        return self._calibration is not None and self.state != CalibrationState.UNCALIBRATED

    def find_pattern(self, frame: NDArray[np.uint8]) -> Optional[NDArray[np.float32]]:
        """Find the calibration pattern in a frame (None when absent)."""
        return self.detector.find(frame)

    def calibrate(
        self, corners: NDArray[np.float32], frame: NDArray[np.uint8]
    ) -> Optional[Bounds]:
        """Calibrate from a detected pattern.

        On success the new calibration replaces the old one and the session
        becomes CALIBRATED. On failure the previous calibration and state are
        kept untouched.

        Args:
            corners: Corner set returned by find_pattern
            frame: Frame the corners were found in

        Returns:
            Calibration bounds, or None if the detection was unusable
        """
        with self._calibrate_lock:
            previous_state = self.state
            self._set_state(CalibrationState.CALIBRATING)

            try:
                calibration = self.solver.solve(corners, frame)
            except Exception:
                self._set_state(previous_state)
                raise

            if calibration is None:
                self._set_state(previous_state)
                return None

            self._calibration = calibration
            self._set_state(CalibrationState.CALIBRATED)

        logger.info(f"Calibration complete, bounds={calibration.bounds}")
        return calibration.bounds

    def process_frame(self, frame: NDArray[np.uint8]) -> Optional[Bounds]:
        """Detect the pattern and calibrate from it in one step.

        Fires the calibration callback whenever a pattern was found, with the
        new bounds or None if the detection was rejected.
        """
        corners = self.find_pattern(frame)
        if corners is None:
            return None

        bounds = self.calibrate(corners, frame)
        if self._callback:
            try:
                self._callback(bounds)
            except Exception as e:
                logger.error(f"Calibration callback error: {e}")
        return bounds

    def undistort(self, frame: NDArray[np.uint8], crop: bool = True) -> NDArray[np.uint8]:
        """Rectify a frame with the active calibration.

        Raises:
            CalibrationStateError: If no calibration has succeeded yet
            FrameSizeMismatchError: If the frame size differs from the calibrated one
        """
        calibration = self._calibration
        if calibration is None:
            raise CalibrationStateError("undistort called before a successful calibration")
        return self.rectifier.rectify(frame, calibration, crop=crop)

    def get_calibration(self) -> Optional[PerspectiveCalibration]:
        return self._calibration

    def get_transform(self) -> Optional[NDArray[np.float64]]:
        """Copy of the active 3x3 perspective transform."""
        calibration = self._calibration
        return None if calibration is None else calibration.transform_matrix.copy()

    def get_bounds(self) -> Optional[Bounds]:
        calibration = self._calibration
        return None if calibration is None else calibration.bounds

    def reset(self) -> None:
        """Forget the active calibration."""
        with self._calibrate_lock:
            self._calibration = None
            self._set_state(CalibrationState.UNCALIBRATED)
        logger.info("Calibration reset")

    def save_transform(self, filepath: str | Path) -> bool:
        """Save the active calibration as JSON.

        The transform is stored as 9 row-major floats together with the
        bounds and the frame size it applies to.

        Returns:
            True if saved successfully
        """
        calibration = self._calibration
        if calibration is None:
            logger.error("No calibration to save")
            return False

        try:
            path = Path(filepath)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(calibration.to_dict(), f, indent=2)
            logger.info(f"Calibration saved to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save calibration: {e}")
            return False

    def load_transform(self, filepath: str | Path) -> bool:
        """Load a calibration saved by save_transform and make it active.

        Returns:
            True if loaded successfully
        """
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
            calibration = PerspectiveCalibration.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load calibration from {filepath}: {e}")
            return False

        with self._calibrate_lock:
            self._calibration = calibration
            self._set_state(CalibrationState.CALIBRATED)

        logger.info(f"Calibration loaded from {filepath}")
        return True
