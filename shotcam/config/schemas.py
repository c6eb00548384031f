"""Pydantic configuration schemas for the calibration core.

This module defines the data models for system configuration, providing:
- Type-safe configuration validation
- Default values and constraints
- Field descriptions for documentation
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BaseConfig(BaseModel):
    """Base configuration class with common functionality."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        use_enum_values=True,
    )


# =============================================================================
# System Configuration
# =============================================================================


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingSettings(BaseConfig):
    """Logging configuration."""

    level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    config_path: Optional[Path] = Field(
        default=None, description="YAML dictConfig file (packaged default if unset)"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log file directory")
    env_key: str = Field(
        default="LOG_CFG", description="Environment variable overriding config_path"
    )
    max_bytes: int = Field(
        default=10 * 1024 * 1024, ge=1024, description="Rotating log file size"
    )
    backup_count: int = Field(default=5, ge=0, le=100, description="Rotated files kept")


class SystemConfig(BaseConfig):
    """System-wide settings."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    debug: bool = Field(default=False, description="Enable debug mode")


# =============================================================================
# Vision Configuration
# =============================================================================


class CameraBackend(str, Enum):
    """Supported camera backends."""

    AUTO = "auto"
    V4L2 = "v4l2"
    DSHOW = "dshow"
    GSTREAMER = "gstreamer"
    FFMPEG = "ffmpeg"


class VideoSourceType(str, Enum):
    """Frame source type."""

    CAMERA = "camera"
    FILE = "file"


class CameraSettings(BaseConfig):
    """Frame source settings."""

    device_id: int = Field(default=0, ge=0, le=10, description="Camera device index")
    backend: CameraBackend = Field(
        default=CameraBackend.AUTO, description="Camera backend to use"
    )
    resolution: tuple[int, int] = Field(
        default=(1280, 720), description="Camera resolution (width, height)"
    )
    fps: int = Field(default=30, ge=1, le=120, description="Frames per second")
    buffer_size: int = Field(
        default=1, ge=1, le=10, description="Camera frame buffer size"
    )
    video_source_type: VideoSourceType = Field(
        default=VideoSourceType.CAMERA, description="Video source type (camera or file)"
    )
    video_file_path: Optional[str] = Field(
        default=None, description="Path to video file when video_source_type='file'"
    )

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v):
        """Validate camera resolution."""
        if v[0] < 160 or v[1] < 120:
            raise ValueError("Minimum resolution is 160x120")
        if v[0] > 4096 or v[1] > 4096:
            raise ValueError("Maximum resolution is 4096x4096")
        return v

    @model_validator(mode="after")
    def validate_video_config(self):
        """A file source needs a file path."""
        if self.video_source_type == VideoSourceType.FILE and not self.video_file_path:
            raise ValueError("video_file_path is required when video_source_type='file'")
        return self


class PatternSettings(BaseConfig):
    """Chessboard pattern detection settings."""

    columns: int = Field(default=9, ge=3, le=30, description="Inner corners per row")
    rows: int = Field(default=6, ge=3, le=30, description="Inner corners per column")
    subpix_window: int = Field(
        default=11, ge=3, le=31, description="Corner refinement half-window size"
    )
    subpix_max_iterations: int = Field(default=30, ge=1, le=1000)
    subpix_epsilon: float = Field(default=0.1, gt=0.0, le=1.0)
    fast_check: bool = Field(
        default=True, description="Quick reject of frames without a pattern"
    )


class GeometrySettings(BaseConfig):
    """Perspective solver settings."""

    min_area_ratio: float = Field(
        default=0.02,
        gt=0.0,
        lt=1.0,
        description="Smallest board area accepted, as a fraction of the frame area",
    )
    singular_epsilon: float = Field(
        default=1e-9, gt=0.0, description="Determinant below which a transform is singular"
    )


class CalibrationSettings(BaseConfig):
    """Auto-calibration settings."""

    pattern: PatternSettings = Field(default_factory=PatternSettings)
    geometry: GeometrySettings = Field(default_factory=GeometrySettings)


class SectorSettings(BaseConfig):
    """Shot detection sector grid dimensions."""

    rows: int = Field(default=3, ge=1, le=32)
    columns: int = Field(default=3, ge=1, le=32)


class DetectionSettings(BaseConfig):
    """Shot detection gating settings."""

    sectors: SectorSettings = Field(default_factory=SectorSettings)


class PipelineSettings(BaseConfig):
    """Frame pipeline settings."""

    auto_calibration: bool = Field(
        default=False, description="Start with auto-calibration requested"
    )
    completion_timeout: Optional[float] = Field(
        default=None, gt=0.0, description="Default wait for file sources (seconds)"
    )
    stop_timeout: float = Field(
        default=5.0, gt=0.0, description="Worker join timeout on stop (seconds)"
    )


class VisionConfig(BaseConfig):
    """Complete vision configuration."""

    camera: CameraSettings = Field(default_factory=CameraSettings)
    calibration: CalibrationSettings = Field(default_factory=CalibrationSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


class ShotcamConfig(BaseConfig):
    """Root configuration document."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
