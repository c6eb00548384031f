"""Tests for board extrapolation and perspective solving."""

import cv2
import numpy as np
import pytest

from shotcam.vision.calibration import (
    ChessboardDetector,
    GeometrySolver,
    estimate_board_quad,
    normalize_corner_order,
    order_quad_clockwise,
    outer_corners,
    target_rectangle,
)

PATTERN = (9, 6)


@pytest.fixture()
def solver():
    return GeometrySolver(pattern_size=PATTERN, min_area_ratio=0.02)


@pytest.fixture()
def frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)


def _transform_points(points, matrix):
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)
    return cv2.perspectiveTransform(pts, matrix).reshape(-1, 2)


class TestCornerHelpers:
    """Test the corner ordering and board extrapolation helpers."""

    def test_normalize_keeps_upright_order(self, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))

        normalized = normalize_corner_order(corners)

        assert np.array_equal(normalized, corners)
        assert normalized is not corners

    def test_normalize_reverses_upside_down_order(self, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))
        upside_down = corners[::-1].copy()

        normalized = normalize_corner_order(upside_down)

        assert np.array_equal(normalized, corners)
        # Input untouched
        assert np.array_equal(upside_down, corners[::-1])

    def test_outer_corners(self, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))

        outer = outer_corners(corners, PATTERN)

        assert outer.tolist() == [[160, 140], [480, 140], [480, 340], [160, 340]]

    def test_estimate_board_quad_axis_aligned(self, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))

        quad = estimate_board_quad(corners, PATTERN)

        expected = [[120, 100], [520, 100], [520, 380], [120, 380]]
        assert np.allclose(quad, expected, atol=1e-3)

    def test_estimate_board_quad_perspective(self, make_projected_corners):
        corners, board = make_projected_corners(
            ((150, 110), (500, 90), (520, 390), (130, 370))
        )

        quad = estimate_board_quad(corners, PATTERN)

        assert np.allclose(quad, board, atol=1e-2)

    def test_order_quad_clockwise(self):
        quad = np.float32([[100, 100], [400, 100], [400, 300], [100, 300]])

        # Counter-clockwise, starting elsewhere
        mirrored = quad[[2, 1, 0, 3]]
        rotated = np.roll(quad, 2, axis=0)

        assert np.array_equal(order_quad_clockwise(mirrored), quad)
        assert np.array_equal(order_quad_clockwise(rotated), quad)

    def test_target_rectangle_uses_mean_edge_lengths(self):
        quad = np.float32([[100, 100], [300, 100], [320, 200], [80, 200]])

        target = target_rectangle(quad)

        assert target.min_x == pytest.approx(80)
        assert target.min_y == pytest.approx(100)
        assert target.width == pytest.approx(220)
        assert target.height == pytest.approx(np.hypot(20, 100))


class TestGeometrySolver:
    """Test perspective solving and detection rejection."""

    def test_axis_aligned_board_gives_identity(self, solver, frame, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))

        calibration = solver.solve(corners, frame)

        assert calibration is not None
        assert np.allclose(calibration.transform_matrix, np.eye(3), atol=1e-6)
        assert calibration.transform_matrix[2, 2] == 1.0
        assert calibration.bounds.min_x == pytest.approx(120, abs=1e-3)
        assert calibration.bounds.min_y == pytest.approx(100, abs=1e-3)
        assert calibration.bounds.width == pytest.approx(400, abs=1e-3)
        assert calibration.bounds.height == pytest.approx(280, abs=1e-3)
        assert calibration.frame_size == (640, 480)

    def test_inverse_matrix(self, solver, frame, make_projected_corners):
        corners, _ = make_projected_corners(((150, 110), (500, 90), (520, 390), (130, 370)))

        calibration = solver.solve(corners, frame)

        product = calibration.transform_matrix @ calibration.inverse_matrix
        assert np.allclose(product, np.eye(3), atol=1e-9)

    def test_perspective_board_maps_onto_rectangle(
        self, solver, frame, make_projected_corners
    ):
        corners, board = make_projected_corners(
            ((150, 110), (500, 90), (520, 390), (130, 370))
        )

        calibration = solver.solve(corners, frame)

        assert calibration is not None
        mapped = _transform_points(board, calibration.transform_matrix)
        target = calibration.target_rect
        expected = [
            [target.min_x, target.min_y],
            [target.max_x, target.min_y],
            [target.max_x, target.max_y],
            [target.min_x, target.max_y],
        ]
        assert np.allclose(mapped, expected, atol=0.05)

        # Bounds are the extent of the board outline
        assert calibration.bounds.min_x == pytest.approx(130, abs=0.05)
        assert calibration.bounds.min_y == pytest.approx(90, abs=0.05)
        assert calibration.bounds.max_x == pytest.approx(520, abs=0.05)
        assert calibration.bounds.max_y == pytest.approx(390, abs=0.05)

    def test_inner_corners_become_a_regular_grid(
        self, solver, frame, make_projected_corners
    ):
        corners, _ = make_projected_corners(((150, 110), (500, 90), (520, 390), (130, 370)))

        calibration = solver.solve(corners, frame)

        grid = _transform_points(corners, calibration.transform_matrix).reshape(6, 9, 2)
        # Rows share a y coordinate and columns share an x coordinate
        assert np.ptp(grid[:, :, 1], axis=1).max() < 0.05
        assert np.ptp(grid[:, :, 0], axis=0).max() < 0.05

    def test_upside_down_detection_gives_same_result(
        self, solver, frame, make_projected_corners
    ):
        corners, _ = make_projected_corners(((150, 110), (500, 90), (520, 390), (130, 370)))

        upright = solver.solve(corners, frame)
        flipped = solver.solve(corners[::-1].copy(), frame)

        assert np.allclose(upright.transform_matrix, flipped.transform_matrix, atol=1e-6)
        assert upright.bounds.to_dict() == pytest.approx(flipped.bounds.to_dict())

    def test_mirrored_detection_gives_same_result(
        self, solver, frame, make_projected_corners
    ):
        corners, _ = make_projected_corners(((150, 110), (500, 90), (520, 390), (130, 370)))
        mirrored = corners.reshape(6, 9, 2)[:, ::-1].reshape(-1, 2).copy()

        upright = solver.solve(corners, frame)
        flipped = solver.solve(mirrored, frame)

        assert np.allclose(upright.transform_matrix, flipped.transform_matrix, atol=1e-3)

    def test_board_cut_off_by_frame_edge(self, solver, frame, make_grid_corners):
        # Inner corners all visible but the outer row of squares is not
        corners = make_grid_corners((20, 140), (40, 40))

        assert solver.solve(corners, frame) is None

    def test_board_past_bottom_right_edge(self, solver, frame, make_grid_corners):
        corners = make_grid_corners((300, 250), (40, 40))

        assert solver.solve(corners, frame) is None

    def test_small_board_rejected(self, solver, frame, make_grid_corners):
        corners = make_grid_corners((300, 200), (4, 4))

        assert solver.solve(corners, frame) is None

    def test_min_area_ratio_is_configurable(self, frame, make_grid_corners):
        corners = make_grid_corners((300, 200), (4, 4))
        lenient = GeometrySolver(pattern_size=PATTERN, min_area_ratio=0.0001)

        assert lenient.solve(corners, frame) is not None

    def test_collinear_corners_rejected(self, solver, frame):
        xs = np.linspace(150, 500, 54, dtype=np.float32)
        corners = np.stack([xs, np.full_like(xs, 240)], axis=1)

        assert solver.solve(corners, frame) is None

    def test_wrong_corner_count_raises(self, solver, frame, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))

        with pytest.raises(ValueError):
            solver.solve(corners[:-1], frame)

    def test_solve_does_not_modify_corners(self, solver, frame, make_grid_corners):
        corners = make_grid_corners((160, 140), (40, 40))[::-1].copy()
        original = corners.copy()

        solver.solve(corners, frame)

        assert np.array_equal(corners, original)


class TestDetectedBoards:
    """Test the solver on corners found in rendered frames."""

    @pytest.fixture()
    def detector(self):
        return ChessboardDetector(pattern_size=PATTERN)

    def test_axis_aligned_frame(self, solver, detector, make_board_frame):
        frame = make_board_frame()
        corners = detector.find(frame)

        calibration = solver.solve(corners, frame)

        assert calibration is not None
        assert np.allclose(calibration.transform_matrix, np.eye(3), atol=0.1)
        x, y, w, h = calibration.bounds.as_int_rect()
        assert x == pytest.approx(120, abs=1)
        assert y == pytest.approx(100, abs=1)
        assert w == pytest.approx(400, abs=1)
        assert h == pytest.approx(280, abs=1)

    def test_upside_down_frame_gives_same_bounds(self, solver, detector, make_board_frame):
        # Board centred so a 180 degree rotation leaves its outline in place
        frame = make_board_frame(origin=(120, 100))
        rotated = cv2.rotate(frame, cv2.ROTATE_180)

        upright = solver.solve(detector.find(frame), frame)
        flipped = solver.solve(detector.find(rotated), rotated)

        assert upright is not None and flipped is not None
        for key, value in upright.bounds.to_dict().items():
            assert flipped.bounds.to_dict()[key] == pytest.approx(value, abs=1)
        assert np.allclose(flipped.transform_matrix, np.eye(3), atol=0.1)

    def test_perspective_frame(self, solver, detector, make_warped_board_frame):
        frame, board = make_warped_board_frame()

        calibration = solver.solve(detector.find(frame), frame)

        assert calibration is not None
        assert calibration.bounds.min_x == pytest.approx(board[:, 0].min(), abs=2)
        assert calibration.bounds.min_y == pytest.approx(board[:, 1].min(), abs=2)
        assert calibration.bounds.max_x == pytest.approx(board[:, 0].max(), abs=2)
        assert calibration.bounds.max_y == pytest.approx(board[:, 1].max(), abs=2)
