"""Sector grid gating for shot detection.

The arena is split into a coarse rows x columns grid. The surrounding
application enables or disables each cell; shot detection only looks at the
enabled ones.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from ...config import config as config_manager
from ..models import Sector, SectorFrame

logger = logging.getLogger(__name__)

SectorGridAccessor = Callable[[], NDArray[np.bool_]]


class SectorGrid:
    """Application-owned enabled/disabled matrix of detection sectors.

    Dimensions are fixed at construction. Instances can be passed to the
    frame pipeline directly; it only ever reads ``as_matrix()``.
    """

    def __init__(
        self, rows: Optional[int] = None, columns: Optional[int] = None, enabled: bool = True
    ) -> None:
        if rows is None:
            rows = config_manager.get("vision.detection.sectors.rows", 3)
        if columns is None:
            columns = config_manager.get("vision.detection.sectors.columns", 3)
        if rows < 1 or columns < 1:
            raise ValueError(f"Sector grid needs at least one cell, got {rows}x{columns}")

        self._cells = np.full((rows, columns), enabled, dtype=bool)
        self._lock = threading.Lock()

    @property
    def rows(self) -> int:
        return self._cells.shape[0]

    @property
    def columns(self) -> int:
        return self._cells.shape[1]

    def is_enabled(self, row: int, column: int) -> bool:
        with self._lock:
            return bool(self._cells[row, column])

    def set_enabled(self, row: int, column: int, enabled: bool) -> None:
        with self._lock:
            self._cells[row, column] = enabled

    def enable_all(self) -> None:
        with self._lock:
            self._cells[:, :] = True

    def disable_all(self) -> None:
        with self._lock:
            self._cells[:, :] = False

    def as_matrix(self) -> NDArray[np.bool_]:
        """Copy of the enabled matrix."""
        with self._lock:
            return self._cells.copy()

    def __call__(self) -> NDArray[np.bool_]:
        return self.as_matrix()


def partition(frame_shape: tuple[int, ...], rows: int, columns: int) -> list[Sector]:
    """Split a frame into rows x columns sectors.

    Cells cover the frame exactly; the last row and column absorb any
    remainder pixels.

    Args:
        frame_shape: numpy shape of the frame (height, width[, channels])
        rows: Number of sector rows
        columns: Number of sector columns

    Returns:
        Sectors in row-major order
    """
    height, width = frame_shape[:2]
    if rows < 1 or columns < 1:
        raise ValueError(f"Sector grid needs at least one cell, got {rows}x{columns}")
    if rows > height or columns > width:
        raise ValueError(f"Cannot split a {width}x{height} frame into {rows}x{columns} sectors")

    cell_w = width // columns
    cell_h = height // rows

    sectors = []
    for row in range(rows):
        y = row * cell_h
        h = height - y if row == rows - 1 else cell_h
        for column in range(columns):
            x = column * cell_w
            w = width - x if column == columns - 1 else cell_w
            sectors.append(Sector(row=row, column=column, x=x, y=y, width=w, height=h))
    return sectors


def enabled_sectors(
    frame_shape: tuple[int, ...], mask: NDArray[np.bool_]
) -> list[Sector]:
    """Sectors of the frame whose mask cell is enabled."""
    mask = np.asarray(mask, dtype=bool)
    if mask.ndim != 2 or mask.size == 0:
        raise ValueError(f"Sector mask must be a non-empty 2D matrix, got shape {mask.shape}")

    rows, columns = mask.shape
    return [s for s in partition(frame_shape, rows, columns) if mask[s.row, s.column]]


class ShotDetector(ABC):
    """Shot detection hook fed by the frame pipeline.

    Implementations receive one frame at a time, in source order, together
    with the enabled sectors they are allowed to inspect.
    """

    @abstractmethod
    def process_frame(self, sector_frame: SectorFrame) -> None:
        """Inspect the enabled sectors of a frame for shots."""
