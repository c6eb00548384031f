"""Vision module: auto-calibration, frame sources and the frame pipeline.

Main Classes:
    FramePipeline: Drives calibration and sector-gated detection on a worker thread
    AutoCalibrationManager: Calibration session and active perspective transform
    VideoFileSource / CameraCapture: Frame sources
    SectorGrid: Enabled/disabled detection sectors
"""

from .calibration import (
    AutoCalibrationManager,
    CalibrationError,
    CalibrationStateError,
    ChessboardDetector,
    FrameRectifier,
    FrameSizeMismatchError,
    GeometrySolver,
)
from .capture import (
    CameraCapture,
    CameraStatus,
    FrameSource,
    FrameSourceError,
    VideoFileSource,
    create_frame_source,
)
from .detection import SectorGrid, ShotDetector, enabled_sectors, partition
from .models import (
    Bounds,
    CalibrationState,
    FrameInfo,
    PerspectiveCalibration,
    Sector,
    SectorFrame,
)
from .pipeline import FramePipeline, create_pipeline

__all__ = [
    "FramePipeline",
    "create_pipeline",
    "AutoCalibrationManager",
    "ChessboardDetector",
    "GeometrySolver",
    "FrameRectifier",
    "CalibrationError",
    "CalibrationStateError",
    "FrameSizeMismatchError",
    "FrameSource",
    "FrameSourceError",
    "VideoFileSource",
    "CameraCapture",
    "CameraStatus",
    "create_frame_source",
    "SectorGrid",
    "ShotDetector",
    "enabled_sectors",
    "partition",
    "Bounds",
    "CalibrationState",
    "FrameInfo",
    "PerspectiveCalibration",
    "Sector",
    "SectorFrame",
]
