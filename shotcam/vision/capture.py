"""Frame sources for the frame pipeline.

Provides pull-style access to live cameras and recorded video files:
- Live camera capture with backend selection and device configuration
- Deterministic, in-order reading of video files to end of stream
- Status reporting for live devices
"""

import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ..config.schemas import CameraBackend, CameraSettings, VideoSourceType
from .models import FrameInfo

logger = logging.getLogger(__name__)

Frame = tuple[NDArray[np.uint8], FrameInfo]


class FrameSourceError(Exception):
    """Frame source could not be opened or failed to deliver a frame."""


class CameraStatus(Enum):
    """Camera connection status."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class FrameSource(ABC):
    """Pull-style frame supplier with a fixed resolution per session."""

    #: Live sources run until stopped; file sources end and signal completion
    is_live: bool = False

    def __init__(self) -> None:
        self._frame_size: Optional[tuple[int, int]] = None
        self._frames_read = 0

    @abstractmethod
    def open(self) -> None:
        """Open the source.

        Raises:
            FrameSourceError: If the source cannot be opened
        """

    @abstractmethod
    def _read_raw(self) -> Optional[NDArray[np.uint8]]:
        """Read the next raw frame, None at end of stream."""

    @abstractmethod
    def close(self) -> None:
        """Release the source."""

    @property
    def frame_size(self) -> Optional[tuple[int, int]]:
        """(width, height) of the frames delivered so far."""
        return self._frame_size

    def read(self) -> Optional[Frame]:
        """Read the next frame.

        Returns:
            Tuple of (frame, frame_info), or None at end of stream

        Raises:
            FrameSourceError: If reading fails or the resolution changes
        """
        frame = self._read_raw()
        if frame is None:
            return None

        size = (frame.shape[1], frame.shape[0])
        if self._frame_size is None:
            self._frame_size = size
        elif size != self._frame_size:
            raise FrameSourceError(
                f"Frame size changed from {self._frame_size} to {size} mid-session"
            )

        self._frames_read += 1
        frame_info = FrameInfo(
            frame_number=self._frames_read,
            timestamp=time.time(),
            size=size,
            channels=frame.shape[2] if frame.ndim > 2 else 1,
        )
        return frame, frame_info

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class VideoFileSource(FrameSource):
    """Recorded video file read frame by frame to end of stream."""

    is_live = False

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        if not self.path.exists():
            raise FrameSourceError(f"Video file not found: {self.path}")

        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            self._cap = None
            raise FrameSourceError(f"Failed to open video file {self.path}")

        self._frame_size = None
        self._frames_read = 0
        logger.info(
            f"Opened video file {self.path} "
            f"({int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))} frames)"
        )

    def _read_raw(self) -> Optional[NDArray[np.uint8]]:
        if self._cap is None:
            raise FrameSourceError("Video file source is not open")

        ret, frame = self._cap.read()
        if not ret or frame is None:
            logger.info(f"End of video file {self.path} after {self._frames_read} frames")
            return None
        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class CameraCapture(FrameSource):
    """Live camera device.

    A failed read is reported as a FrameSourceError; the source never
    substitutes a blank frame. The device may deliver a resolution other
    than the requested one; whatever arrives first is fixed for the session.
    """

    is_live = True

    _BACKENDS = {
        "auto": cv2.CAP_ANY,
        "v4l2": cv2.CAP_V4L2,
        "dshow": cv2.CAP_DSHOW,
        "gstreamer": cv2.CAP_GSTREAMER,
        "ffmpeg": cv2.CAP_FFMPEG,
    }

    def __init__(self, settings: Optional[CameraSettings] = None) -> None:
        """Initialize the camera source.

        Args:
            settings: Device, backend and capture properties (defaults if None)
        """
        super().__init__()
        self.settings = settings or CameraSettings()
        self._cap: Optional[cv2.VideoCapture] = None
        self._status = CameraStatus.DISCONNECTED
        self._on_status: Optional[Callable[[CameraStatus], None]] = None

    @property
    def device_id(self) -> int:
        return self.settings.device_id

    @property
    def api_preference(self) -> int:
        """OpenCV capture API for the configured backend name."""
        return self._BACKENDS[CameraBackend(self.settings.backend).value]

    @property
    def status(self) -> CameraStatus:
        return self._status

    def set_status_callback(self, callback: Optional[Callable[[CameraStatus], None]]) -> None:
        """Register a listener for connection status changes."""
        self._on_status = callback

    def _set_status(self, status: CameraStatus) -> None:
        if status == self._status:
            return

        previous, self._status = self._status, status
        logger.info(f"Camera {self.device_id} status: {previous.value} -> {status.value}")

        if self._on_status:
            try:
                self._on_status(status)
            except Exception as e:
                logger.error(f"Camera status listener failed: {e}")

    def _apply_properties(self) -> None:
        """Request the configured resolution, frame rate and buffering."""
        width, height = self.settings.resolution
        requested = {
            cv2.CAP_PROP_FRAME_WIDTH: width,
            cv2.CAP_PROP_FRAME_HEIGHT: height,
            cv2.CAP_PROP_FPS: self.settings.fps,
            cv2.CAP_PROP_BUFFERSIZE: self.settings.buffer_size,
        }
        for prop, value in requested.items():
            if not self._cap.set(prop, value):
                logger.debug(f"Camera {self.device_id} ignored property {prop}={value}")

        logger.info(
            f"Camera {self.device_id} delivering "
            f"{int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))}x"
            f"{int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))} @ "
            f"{self._cap.get(cv2.CAP_PROP_FPS)} FPS "
            f"(requested {width}x{height} @ {self.settings.fps})"
        )

    def open(self) -> None:
        self._set_status(CameraStatus.CONNECTING)
        logger.info(
            f"Opening camera {self.device_id} via {CameraBackend(self.settings.backend).value}"
        )

        cap = cv2.VideoCapture(self.device_id, self.api_preference)
        if not cap.isOpened():
            cap.release()
            self._set_status(CameraStatus.ERROR)
            raise FrameSourceError(f"Failed to open camera {self.device_id}")

        self._cap = cap
        self._apply_properties()
        self._frame_size = None
        self._frames_read = 0
        self._set_status(CameraStatus.CONNECTED)

    def _read_raw(self) -> Optional[NDArray[np.uint8]]:
        if self._cap is None:
            raise FrameSourceError(f"Camera {self.device_id} is not open")

        ok, frame = self._cap.read()
        if not ok or frame is None:
            self._set_status(CameraStatus.ERROR)
            raise FrameSourceError(f"Camera {self.device_id} returned no frame")
        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._set_status(CameraStatus.DISCONNECTED)


def create_frame_source(settings: CameraSettings) -> FrameSource:
    """Build the frame source described by the camera settings."""
    if settings.video_source_type == VideoSourceType.FILE.value:
        return VideoFileSource(settings.video_file_path)

    return CameraCapture(settings)
