"""Vision module data models.

Provides the data structures shared by calibration and frame processing:
- Calibration bounds and the solved perspective calibration record
- Frame metadata produced by frame sources
- Sector cells and the per-frame payload handed to shot detection
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray


class CalibrationState(Enum):
    """Calibration session state."""

    UNCALIBRATED = "uncalibrated"
    CALIBRATING = "calibrating"
    CALIBRATED = "calibrated"


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned rectangle in frame coordinates."""

    min_x: float
    min_y: float
    width: float
    height: float

    @property
    def max_x(self) -> float:
        return self.min_x + self.width

    @property
    def max_y(self) -> float:
        return self.min_y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, x: float, y: float) -> bool:
        """Check whether a point lies inside the rectangle (edges included)."""
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def as_int_rect(self) -> tuple[int, int, int, int]:
        """Round to an integer (x, y, width, height) pixel rectangle."""
        x = int(round(self.min_x))
        y = int(round(self.min_y))
        return x, y, int(round(self.max_x)) - x, int(round(self.max_y)) - y

    @classmethod
    def from_points(cls, points: NDArray[np.float64]) -> "Bounds":
        """Bounding box of an (N, 2) array of points."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        min_xy = pts.min(axis=0)
        max_xy = pts.max(axis=0)
        return cls(
            min_x=float(min_xy[0]),
            min_y=float(min_xy[1]),
            width=float(max_xy[0] - min_xy[0]),
            height=float(max_xy[1] - min_xy[1]),
        )

    def to_dict(self) -> dict[str, float]:
        """Convert to serializable dictionary."""
        return {
            "min_x": self.min_x,
            "min_y": self.min_y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Bounds":
        """Create from dictionary."""
        return cls(
            min_x=float(data["min_x"]),
            min_y=float(data["min_y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True, eq=False)
class PerspectiveCalibration:
    """Solved camera-to-arena calibration.

    Immutable, arrays included (they are read-only copies); the calibration
    manager replaces the whole record when a new calibration succeeds.
    """

    transform_matrix: NDArray[np.float64]  # 3x3, frame -> arena
    inverse_matrix: NDArray[np.float64]  # 3x3, arena -> frame
    bounds: Bounds  # Board extent in frame coordinates
    source_quad: NDArray[np.float32]  # Extrapolated board corners, clockwise from top-left
    target_rect: Bounds  # Where the board lands after rectification
    frame_size: tuple[int, int]  # (width, height) the transform was solved for

    def __post_init__(self) -> None:
        for name in ("transform_matrix", "inverse_matrix", "source_quad"):
            array = np.array(getattr(self, name), copy=True)
            array.setflags(write=False)
            object.__setattr__(self, name, array)

    def transform_values(self) -> list[float]:
        """The 3x3 transform as 9 row-major floats."""
        return [float(v) for v in self.transform_matrix.reshape(-1)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to serializable dictionary."""
        return {
            "transform": self.transform_values(),
            "bounds": self.bounds.to_dict(),
            "source_quad": self.source_quad.tolist(),
            "target_rect": self.target_rect.to_dict(),
            "frame_size": list(self.frame_size),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerspectiveCalibration":
        """Create from dictionary.

        Raises:
            ValueError: If the stored transform is malformed or singular
        """
        values = data["transform"]
        if len(values) != 9:
            raise ValueError(f"Expected 9 transform values, got {len(values)}")
        matrix = np.array(values, dtype=np.float64).reshape(3, 3)
        if abs(np.linalg.det(matrix)) < 1e-12:
            raise ValueError("Stored transform is singular")

        bounds = Bounds.from_dict(data["bounds"])
        target = data.get("target_rect")
        return cls(
            transform_matrix=matrix,
            inverse_matrix=np.linalg.inv(matrix),
            bounds=bounds,
            source_quad=np.array(
                data.get("source_quad", []), dtype=np.float32
            ).reshape(-1, 2),
            target_rect=Bounds.from_dict(target) if target else bounds,
            frame_size=(int(data["frame_size"][0]), int(data["frame_size"][1])),
        )


@dataclass
class FrameInfo:
    """Frame metadata."""

    frame_number: int
    timestamp: float
    size: tuple[int, int]  # (width, height)
    channels: int


@dataclass(frozen=True)
class Sector:
    """One cell of the shot detection sector grid, in frame pixels."""

    row: int
    column: int
    x: int
    y: int
    width: int
    height: int

    def slice_of(self, frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """View of the frame region covered by this sector."""
        return frame[self.y : self.y + self.height, self.x : self.x + self.width]


@dataclass
class SectorFrame:
    """A frame handed to shot detection together with its sector gating."""

    frame: NDArray[np.uint8]
    frame_info: FrameInfo
    sector_mask: NDArray[np.bool_]
    sectors: list[Sector] = field(default_factory=list)  # enabled sectors only
    calibrated: bool = False
    arena_bounds: Optional[Bounds] = None
