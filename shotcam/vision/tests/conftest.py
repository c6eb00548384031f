"""Shared fixtures for vision tests.

Chessboard frames are rendered synthetically so that the true board outline
is known exactly. With ``origin=(x, y)`` and ``square=s`` the board covers
pixels ``x .. x + (columns + 1) * s - 1``; in OpenCV's pixel-centre
convention its outline runs from ``x - 0.5`` to ``x + (columns + 1) * s - 0.5``.
"""

from typing import Optional

import cv2
import numpy as np
import pytest

from shotcam.vision.capture import FrameSource, FrameSourceError

PATTERN_SIZE = (9, 6)
FRAME_SIZE = (640, 480)


def _render_board(pattern_size, square, margin=0):
    """Board plane image: white margin around (columns+1) x (rows+1) squares."""
    columns, rows = pattern_size
    width = (columns + 1) * square + 2 * margin
    height = (rows + 1) * square + 2 * margin
    board = np.full((height, width), 255, dtype=np.uint8)
    for row in range(rows + 1):
        for col in range(columns + 1):
            if (row + col) % 2 == 0:
                y = margin + row * square
                x = margin + col * square
                board[y : y + square, x : x + square] = 0
    return board


@pytest.fixture()
def make_board_frame():
    """Factory for BGR frames containing an axis-aligned chessboard."""

    def factory(
        origin=(120, 100),
        square=40,
        frame_size=FRAME_SIZE,
        pattern_size=PATTERN_SIZE,
    ):
        width, height = frame_size
        frame = np.full((height, width), 255, dtype=np.uint8)
        board = _render_board(pattern_size, square)
        x, y = origin
        frame[y : y + board.shape[0], x : x + board.shape[1]] = board
        frame = cv2.GaussianBlur(frame, (3, 3), 0)
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)

    return factory


@pytest.fixture()
def make_warped_board_frame():
    """Factory for frames with a chessboard seen under perspective.

    Returns (frame, true_board_corners) where the corners are the board
    outline in frame coordinates, clockwise from the top-left.
    """

    def factory(
        board_corners=((150, 110), (500, 90), (520, 390), (130, 370)),
        square=40,
        frame_size=FRAME_SIZE,
        pattern_size=PATTERN_SIZE,
    ):
        columns, rows = pattern_size
        board = _render_board(pattern_size, square)
        bw, bh = (columns + 1) * square, (rows + 1) * square
        src = np.float32([[-0.5, -0.5], [bw - 0.5, -0.5], [bw - 0.5, bh - 0.5], [-0.5, bh - 0.5]])
        dst = np.float32(board_corners)
        homography = cv2.getPerspectiveTransform(src, dst)

        width, height = frame_size
        frame = cv2.warpPerspective(
            board,
            homography,
            (width, height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=255,
        )
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR), dst

    return factory


@pytest.fixture()
def blank_frame():
    width, height = FRAME_SIZE
    return np.full((height, width, 3), 255, dtype=np.uint8)


def grid_corners(origin, step, pattern_size=PATTERN_SIZE):
    """Ideal inner corners of an axis-aligned grid, row-major."""
    columns, rows = pattern_size
    xs = origin[0] + step[0] * np.arange(columns)
    ys = origin[1] + step[1] * np.arange(rows)
    grid = np.stack(np.meshgrid(xs, ys), axis=-1)
    return grid.reshape(-1, 2).astype(np.float32)


@pytest.fixture()
def make_grid_corners():
    """Factory for ideal corner sets (no image involved)."""
    return grid_corners


@pytest.fixture()
def make_projected_corners():
    """Factory projecting the ideal inner-corner grid through a board homography.

    The board outline (grid units -1 .. columns, -1 .. rows) lands on
    ``board_corners``; returns (corners, board_corners).
    """

    def factory(board_corners, pattern_size=PATTERN_SIZE):
        columns, rows = pattern_size
        units = np.float32([[-1, -1], [columns, -1], [columns, rows], [-1, rows]])
        homography = cv2.getPerspectiveTransform(units, np.float32(board_corners))
        grid = grid_corners((0, 0), (1, 1), pattern_size).reshape(-1, 1, 2)
        corners = cv2.perspectiveTransform(grid, homography).reshape(-1, 2)
        return corners.astype(np.float32), np.float32(board_corners)

    return factory


class ListFrameSource(FrameSource):
    """In-memory frame source for pipeline tests."""

    def __init__(self, frames, live=False, fail_at: Optional[int] = None):
        super().__init__()
        self._frames = list(frames)
        self._index = 0
        self._fail_at = fail_at
        self.is_live = live
        self.opened = False
        self.closed = False
        self.reads = 0

    def open(self):
        self.opened = True
        self._index = 0

    def _read_raw(self):
        self.reads += 1
        if self._fail_at is not None and self._index == self._fail_at:
            raise FrameSourceError(f"Simulated read failure at frame {self._index}")
        if self._index >= len(self._frames):
            if self.is_live:
                # Live sources keep delivering; repeat the last frame
                return self._frames[-1]
            return None
        frame = self._frames[self._index]
        self._index += 1
        return frame

    def close(self):
        self.closed = True


@pytest.fixture()
def list_source():
    return ListFrameSource
