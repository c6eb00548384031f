"""Perspective geometry for chessboard auto-calibration.

Turns a detected inner-corner grid into the full board quadrilateral, checks
that the board is usable, and solves the homography that maps camera pixels
onto the rectified arena rectangle.
"""

import logging
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray

from ...config import config as config_manager
from ..models import Bounds, PerspectiveCalibration

logger = logging.getLogger(__name__)


def normalize_corner_order(corners: NDArray[np.float32]) -> NDArray[np.float32]:
    """Put a corner set into a consistent orientation.

    When the pattern is seen upside-down the detector starts at the bottom
    right; reversing the sequence makes the first corner the top-left one
    again so that repeated sessions extract the board the same way.

    Args:
        corners: (N, 2) corner array in detector order

    Returns:
        New (N, 2) array; the input is not modified
    """
    pts = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
    first, last = pts[0], pts[-1]
    if first[0] > last[0] and first[1] > last[1]:
        logger.debug("Pattern detected upside-down, reversing corner order")
        return pts[::-1].copy()
    return pts.copy()


def outer_corners(
    corners: NDArray[np.float32], pattern_size: tuple[int, int]
) -> NDArray[np.float32]:
    """The four extreme inner corners of the grid.

    Returns:
        (4, 2) array ordered first-row-start, first-row-end, last-row-end,
        last-row-start
    """
    columns, rows = pattern_size
    grid = np.asarray(corners, dtype=np.float32).reshape(rows, columns, 2)
    return np.array(
        [grid[0, 0], grid[0, -1], grid[-1, -1], grid[-1, 0]], dtype=np.float32
    )


def estimate_board_quad(
    corners: NDArray[np.float32], pattern_size: tuple[int, int]
) -> NDArray[np.float32]:
    """Estimate the physical board outline from its inner corners.

    The inner-corner grid stops one square short of the board on every edge.
    A homography fitted to the four outer inner corners maps grid units to
    pixels, so projecting the grid positions one cell further out gives the
    board corners with the camera's perspective taken into account.

    Returns:
        (4, 2) board corners in the same order as ``outer_corners``
    """
    columns, rows = pattern_size
    last_col, last_row = columns - 1, rows - 1
    grid_units = np.array(
        [[0, 0], [last_col, 0], [last_col, last_row], [0, last_row]], dtype=np.float32
    )
    grid_to_frame = cv2.getPerspectiveTransform(
        grid_units, outer_corners(corners, pattern_size)
    )

    board_units = np.array(
        [[-1, -1], [columns, -1], [columns, rows], [-1, rows]], dtype=np.float32
    ).reshape(-1, 1, 2)
    return cv2.perspectiveTransform(board_units, grid_to_frame).reshape(-1, 2)


def order_quad_clockwise(quad: NDArray[np.float32]) -> NDArray[np.float32]:
    """Order a quadrilateral clockwise (on screen) starting at the top-left.

    Mirrored corner orderings are flipped and the start is rotated to the
    corner nearest the frame origin, so any traversal of the same board
    yields the same quad.
    """
    pts = np.asarray(quad, dtype=np.float32).reshape(4, 2)
    x, y = pts[:, 0], pts[:, 1]
    signed_area = float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))
    if signed_area < 0:
        pts = pts[[1, 0, 3, 2]]

    start = int(np.argmin(pts[:, 0] + pts[:, 1]))
    return np.roll(pts, -start, axis=0).copy()


def target_rectangle(quad: NDArray[np.float32]) -> Bounds:
    """Axis-aligned rectangle the board is rectified onto.

    Anchored at the board's bounding-box origin and sized by the mean
    lengths of opposite board edges, which keeps the board's aspect ratio.
    """
    tl, tr, br, bl = np.asarray(quad, dtype=np.float64).reshape(4, 2)
    width = (np.linalg.norm(tr - tl) + np.linalg.norm(br - bl)) / 2.0
    height = (np.linalg.norm(bl - tl) + np.linalg.norm(br - tr)) / 2.0
    origin = Bounds.from_points(quad)
    return Bounds(origin.min_x, origin.min_y, float(width), float(height))


class GeometrySolver:
    """Solve the camera-to-arena perspective transform from board corners.

    Detections that cannot produce a trustworthy transform (board cut off by
    the frame edge, implausibly small board, degenerate geometry) are
    rejected with ``None`` rather than an exception; callers retry on the
    next frame.
    """

    def __init__(
        self,
        pattern_size: Optional[tuple[int, int]] = None,
        min_area_ratio: Optional[float] = None,
        singular_epsilon: Optional[float] = None,
    ) -> None:
        """Initialize the solver.

        Args:
            pattern_size: Inner corners as (columns, rows)
            min_area_ratio: Smallest accepted board area as a fraction of the frame
            singular_epsilon: Determinant magnitude below which a transform is rejected
        """
        if pattern_size is None:
            pattern_size = (
                config_manager.get("vision.calibration.pattern.columns", 9),
                config_manager.get("vision.calibration.pattern.rows", 6),
            )
        self.pattern_size = (int(pattern_size[0]), int(pattern_size[1]))

        if min_area_ratio is None:
            min_area_ratio = config_manager.get(
                "vision.calibration.geometry.min_area_ratio", 0.02
            )
        self.min_area_ratio = float(min_area_ratio)

        if singular_epsilon is None:
            singular_epsilon = config_manager.get(
                "vision.calibration.geometry.singular_epsilon", 1e-9
            )
        self.singular_epsilon = float(singular_epsilon)

    def solve(
        self, corners: NDArray[np.float32], frame: NDArray[np.uint8]
    ) -> Optional[PerspectiveCalibration]:
        """Compute the perspective calibration for a detected pattern.

        Args:
            corners: (columns * rows, 2) corner set from the pattern detector
            frame: The frame the corners were detected in

        Returns:
            PerspectiveCalibration, or None if the detection is unusable

        Raises:
            ValueError: If the corner set does not match the pattern size
        """
        expected = self.pattern_size[0] * self.pattern_size[1]
        pts = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
        if len(pts) != expected:
            raise ValueError(
                f"Corner set has {len(pts)} points, pattern {self.pattern_size} needs {expected}"
            )

        height, width = frame.shape[:2]

        pts = normalize_corner_order(pts)
        quad = order_quad_clockwise(estimate_board_quad(pts, self.pattern_size))

        if not self._inside_frame(quad, width, height):
            logger.debug(f"Pattern cut off by frame edge: {quad.tolist()}")
            return None

        area_ratio = abs(cv2.contourArea(quad.reshape(-1, 1, 2))) / float(width * height)
        if area_ratio < self.min_area_ratio:
            logger.debug(
                f"Pattern too small: {area_ratio:.4f} of frame (min {self.min_area_ratio})"
            )
            return None

        if not cv2.isContourConvex(quad.reshape(-1, 1, 2)):
            logger.debug("Pattern quadrilateral is not convex")
            return None

        target = target_rectangle(quad)
        target_pts = np.array(
            [
                [target.min_x, target.min_y],
                [target.max_x, target.min_y],
                [target.max_x, target.max_y],
                [target.min_x, target.max_y],
            ],
            dtype=np.float32,
        )

        transform = cv2.getPerspectiveTransform(quad, target_pts).astype(np.float64)
        if abs(transform[2, 2]) < self.singular_epsilon:
            logger.debug("Degenerate perspective transform")
            return None
        transform = transform / transform[2, 2]

        if abs(np.linalg.det(transform)) < self.singular_epsilon:
            logger.debug("Perspective transform is singular")
            return None

        calibration = PerspectiveCalibration(
            transform_matrix=transform,
            inverse_matrix=np.linalg.inv(transform),
            bounds=Bounds.from_points(quad),
            source_quad=quad,
            target_rect=target,
            frame_size=(width, height),
        )

        logger.info(
            f"Solved perspective transform, bounds={calibration.bounds}, "
            f"residual={self._residual(quad, target_pts, transform):.4f}px"
        )
        return calibration

    @staticmethod
    def _inside_frame(quad: NDArray[np.float32], width: int, height: int) -> bool:
        """Check that every board corner lies on the frame."""
        xs, ys = quad[:, 0], quad[:, 1]
        return bool(
            np.all(xs >= 0) and np.all(ys >= 0)
            and np.all(xs <= width - 1) and np.all(ys <= height - 1)
        )

    @staticmethod
    def _residual(
        src_points: NDArray[np.float32],
        dst_points: NDArray[np.float32],
        transform: NDArray[np.float64],
    ) -> float:
        """RMS distance between transformed board corners and their targets."""
        transformed = cv2.perspectiveTransform(src_points.reshape(-1, 1, 2), transform)
        errors = np.linalg.norm(transformed.reshape(-1, 2) - dst_points, axis=1)
        return float(np.sqrt(np.mean(errors**2)))
