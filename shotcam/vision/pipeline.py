"""Frame pipeline driving calibration and sector-gated shot detection.

Frames are pulled from a frame source on a dedicated worker thread. While
auto-calibration is requested each frame is offered to the calibration
manager; otherwise frames (undistorted once calibrated) are handed to the
shot detector together with the enabled sectors of the sector grid.

File-backed sessions signal completion exactly once through a condition
variable; live sessions run until stopped.
"""

import logging
import threading
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from ..config import config as config_manager
from ..config.schemas import ShotcamConfig
from .calibration import AutoCalibrationManager, ChessboardDetector, GeometrySolver
from .capture import FrameSource, create_frame_source
from .detection.sectors import SectorGrid, SectorGridAccessor, ShotDetector, enabled_sectors
from .models import Bounds, FrameInfo, PerspectiveCalibration, SectorFrame

logger = logging.getLogger(__name__)


class FramePipeline:
    """Pull frames from a source and route them through calibration or detection.

    Example:
        pipeline = FramePipeline(VideoFileSource("clip.mp4"), AutoCalibrationManager())
        pipeline.enable_auto_calibration(True)
        pipeline.process_source()
        pipeline.wait_for_completion()
        assert pipeline.camera_auto_calibrated
    """

    def __init__(
        self,
        source: FrameSource,
        calibration_manager: Optional[AutoCalibrationManager] = None,
        sector_grid: Optional[SectorGridAccessor] = None,
        shot_detector: Optional[ShotDetector] = None,
        on_calibration: Optional[Callable[[Optional[Bounds]], None]] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            source: Frame source (live camera or video file)
            calibration_manager: Calibration manager (a default one if None)
            sector_grid: Callable returning the rows x columns enabled matrix
            shot_detector: Detection hook; frames are dropped after calibration if None
            on_calibration: Called with the bounds, or None when a found pattern is rejected
            on_complete: Called once when a file-backed session completes
        """
        self._source = source
        self.calibration_manager = calibration_manager or AutoCalibrationManager()
        self._sector_grid = sector_grid
        self._shot_detector = shot_detector
        self._on_calibration = on_calibration
        self._on_complete = on_complete

        self._auto_calibration = threading.Event()
        if config_manager.get("vision.pipeline.auto_calibration", False):
            self._auto_calibration.set()

        self._stop_event = threading.Event()
        self._processing_condition = threading.Condition()
        self._processed = False
        self._thread: Optional[threading.Thread] = None

        self.camera_auto_calibrated = False
        self.error: Optional[BaseException] = None
        self.frames_processed = 0

    @property
    def processing_condition(self) -> threading.Condition:
        """Condition notified when a file-backed session completes."""
        return self._processing_condition

    @property
    def is_live(self) -> bool:
        return self._source.is_live

    def enable_auto_calibration(self, enabled: bool) -> None:
        """Request or cancel calibration on incoming frames."""
        if enabled:
            self._auto_calibration.set()
        else:
            self._auto_calibration.clear()
        logger.info(f"Auto-calibration {'enabled' if enabled else 'disabled'}")

    def is_auto_calibration_enabled(self) -> bool:
        return self._auto_calibration.is_set()

    def process_source(self) -> bool:
        """Start pulling frames on the worker thread.

        Returns:
            True if a new session was started, False if one is already running
        """
        if self._thread and self._thread.is_alive():
            logger.warning("Frame pipeline already running")
            return False

        self._stop_event.clear()
        with self._processing_condition:
            self._processed = False
        self.camera_auto_calibrated = False
        self.error = None
        self.frames_processed = 0

        self._thread = threading.Thread(
            target=self._run, name="FramePipeline", daemon=True
        )
        self._thread.start()
        logger.info(f"Frame pipeline started ({'live' if self.is_live else 'file'} source)")
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop pulling frames before the next read and wait for the worker."""
        self._stop_event.set()

        if timeout is None:
            timeout = config_manager.get("vision.pipeline.stop_timeout", 5.0)

        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Frame pipeline worker did not stop gracefully")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_processing_complete(self) -> bool:
        with self._processing_condition:
            return self._processed

    def wait_for_completion(
        self, timeout: Optional[float] = None, raise_on_error: bool = False
    ) -> bool:
        """Block until the session completes.

        Args:
            timeout: Seconds to wait (configured default, or forever, if None)
            raise_on_error: Re-raise the fault that terminated the session

        Returns:
            True if the session completed within the timeout
        """
        if timeout is None:
            timeout = config_manager.get("vision.pipeline.completion_timeout", None)

        with self._processing_condition:
            completed = self._processing_condition.wait_for(
                lambda: self._processed, timeout=timeout
            )

        if completed and raise_on_error and self.error is not None:
            raise self.error
        return completed

    def _run(self) -> None:
        """Worker loop."""
        try:
            self._source.open()
            while not self._stop_event.is_set():
                result = self._source.read()
                if result is None:
                    logger.info(f"Source exhausted after {self.frames_processed} frames")
                    break

                frame, frame_info = result
                self._process_frame(frame, frame_info)
                self.frames_processed += 1
        except Exception as e:
            logger.error(f"Frame pipeline terminated: {e}", exc_info=True)
            self.error = e
        finally:
            self._source.close()

        if not self.is_live or self.error is not None:
            self._mark_complete()

    def _process_frame(self, frame: NDArray[np.uint8], frame_info: FrameInfo) -> None:
        if self._auto_calibration.is_set():
            self._calibrate(frame)
            return

        # Single read; a concurrent reset applies from the next frame
        calibration = self.calibration_manager.get_calibration()
        if calibration is not None:
            frame = self.calibration_manager.rectifier.rectify(frame, calibration)

        self._detect(frame, frame_info, calibration)

    def _calibrate(self, frame: NDArray[np.uint8]) -> None:
        corners = self.calibration_manager.find_pattern(frame)
        if corners is None:
            return

        bounds = self.calibration_manager.calibrate(corners, frame)
        if bounds is None:
            logger.debug("Pattern rejected, auto-calibration continues")
        else:
            self.camera_auto_calibrated = True
            self._auto_calibration.clear()
            logger.info(f"Auto-calibration succeeded, arena bounds={bounds}")

        if self._on_calibration:
            try:
                self._on_calibration(bounds)
            except Exception as e:
                logger.error(f"Calibration callback error: {e}")

    def _detect(
        self,
        frame: NDArray[np.uint8],
        frame_info: FrameInfo,
        calibration: Optional[PerspectiveCalibration],
    ) -> None:
        if self._shot_detector is None or self._sector_grid is None:
            return

        mask = np.array(self._sector_grid(), dtype=bool)
        sectors = enabled_sectors(frame.shape, mask)
        if not sectors:
            return

        self._shot_detector.process_frame(
            SectorFrame(
                frame=frame,
                frame_info=frame_info,
                sector_mask=mask,
                sectors=sectors,
                calibrated=calibration is not None,
                arena_bounds=None if calibration is None else calibration.bounds,
            )
        )

    def _mark_complete(self) -> None:
        """Flag the session complete, at most once, and wake every waiter.

        The completion callback runs before waiters are released.
        """
        with self._processing_condition:
            if self._processed:
                return
            self._processed = True
            logger.info("Frame processing complete")

            if self._on_complete:
                try:
                    self._on_complete()
                except Exception as e:
                    logger.error(f"Completion callback error: {e}")

            self._processing_condition.notify_all()


def create_pipeline(
    settings: Optional[ShotcamConfig] = None,
    shot_detector: Optional[ShotDetector] = None,
    sector_grid: Optional[SectorGrid] = None,
) -> FramePipeline:
    """Build a pipeline from validated settings.

    Args:
        settings: Validated configuration (loaded from the config file if None)
        shot_detector: Detection hook
        sector_grid: Application sector grid (sized from settings if None)
    """
    if settings is None:
        settings = config_manager.settings()

    vision = settings.vision
    pattern = vision.calibration.pattern
    detector = ChessboardDetector(
        pattern_size=(pattern.columns, pattern.rows),
        subpix_window=pattern.subpix_window,
        fast_check=pattern.fast_check,
        max_iterations=pattern.subpix_max_iterations,
        epsilon=pattern.subpix_epsilon,
    )
    solver = GeometrySolver(
        pattern_size=detector.pattern_size,
        min_area_ratio=vision.calibration.geometry.min_area_ratio,
        singular_epsilon=vision.calibration.geometry.singular_epsilon,
    )

    if sector_grid is None:
        sector_grid = SectorGrid(
            rows=vision.detection.sectors.rows, columns=vision.detection.sectors.columns
        )

    pipeline = FramePipeline(
        source=create_frame_source(vision.camera),
        calibration_manager=AutoCalibrationManager(detector=detector, solver=solver),
        sector_grid=sector_grid,
        shot_detector=shot_detector,
    )
    pipeline.enable_auto_calibration(vision.pipeline.auto_calibration)
    return pipeline
