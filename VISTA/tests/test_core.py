import unittest
from pathlib import Path
import json
import tempfile
import sys
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from VISTA.config import Config
from VISTA.src.core.affine import AffineParams, fit_residuals, solve_affine, solve_affine_9pt, solve_linear_system
from VISTA.src.core.elements import ElementKind, circle, grid_overlay, line, text
from VISTA.src.core.errors import (
    LoadError,
    NotCalibratedError,
    ShapeMismatchError,
    SingularMatrixError,
    SingularSystemError,
    run_with_status,
)
from VISTA.src.core.transform_chain import CoordinateTransformChain
from VISTA.src.core.types import Point2D, StatusCode
from VISTA.src.core.viewport import Viewport


def grid_points(n=3, step=1.0):
    return [Point2D(i * step, j * step) for j in range(n) for i in range(n)]


class TestConfig(unittest.TestCase):
    def test_save_load_roundtrip(self):
        cfg = Config()
        cfg.MM_PER_PIXEL_X = 0.0125
        cfg.CLICK_THRESHOLD_PX = 8
        cfg.LOCK_SCALE = False
        cfg.BOARD_CALIB_PATH = "/tmp/board.json"

        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.json"
            cfg.save(path)
            loaded = Config.load(path)

        self.assertAlmostEqual(loaded.MM_PER_PIXEL_X, 0.0125, places=6)
        self.assertEqual(loaded.CLICK_THRESHOLD_PX, 8)
        self.assertFalse(loaded.LOCK_SCALE)
        self.assertEqual(loaded.BOARD_CALIB_PATH, "/tmp/board.json")

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as td:
            loaded = Config.load(Path(td) / "nope.json")
        self.assertEqual(loaded, Config())

    def test_normalize_swaps_limits(self):
        cfg = Config(MIN_X_MM=10.0, MAX_X_MM=2.0, MAX_ZOOM=0.5)
        cfg.normalize()
        self.assertEqual((cfg.MIN_X_MM, cfg.MAX_X_MM), (2.0, 10.0))
        self.assertEqual(cfg.MAX_ZOOM, 1.0)


class TestAffineSolver(unittest.TestCase):
    def setUp(self):
        self.truth = AffineParams(1.01, -0.02, 3.0, 0.015, 0.99, -1.5)

    def test_exact_fit_recovers_coefficients(self):
        src = grid_points(3, 5.0)
        dst = [self.truth.apply(p) for p in src]
        fitted = solve_affine(src, dst)
        np.testing.assert_allclose(fitted.to_list(), self.truth.to_list(), atol=1e-9)
        self.assertLess(float(np.max(fit_residuals(fitted, src, dst))), 1e-9)

    def test_three_points_is_enough(self):
        src = [Point2D(0, 0), Point2D(1, 0), Point2D(0, 1)]
        dst = [self.truth.apply(p) for p in src]
        fitted = solve_affine(src, dst)
        np.testing.assert_allclose(fitted.to_list(), self.truth.to_list(), atol=1e-9)

    def test_too_few_points(self):
        with self.assertRaises(SingularSystemError):
            solve_affine([(0, 0), (1, 0)], [(0, 0), (1, 0)])

    def test_collinear_points_are_singular(self):
        src = [(0, 0), (1, 0), (2, 0)]
        with self.assertRaises(SingularSystemError):
            solve_affine(src, src)

    def test_collinear_points_off_axis(self):
        cases = [
            [(100.0 + 0.1 * i, 50.0 + 0.3 * i) for i in range(5)],
            [(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)],
            [(12.5 + i, 40.0 - 2.0 * i) for i in range(9)],
        ]
        for src in cases:
            with self.subTest(src=src[:2]):
                with self.assertRaises(SingularSystemError):
                    solve_affine(src, src)

    def test_coincident_points(self):
        src = [(3.0, 4.0)] * 4
        with self.assertRaises(SingularSystemError):
            solve_affine(src, src)

    def test_small_offset_grid_still_fits(self):
        src = [(p.x + 10.0, p.y + 5.0) for p in grid_points(3, 0.5)]
        dst = [self.truth.apply(p) for p in src]
        fitted = solve_affine(src, dst)
        np.testing.assert_allclose(fitted.to_list(), self.truth.to_list(), atol=1e-7)

    def test_length_mismatch(self):
        with self.assertRaises(ShapeMismatchError):
            solve_affine(grid_points(2), grid_points(3))

    def test_nine_point_variant(self):
        src = grid_points(3)
        dst = [self.truth.apply(p) for p in src]
        m = solve_affine_9pt(src, dst)
        self.assertEqual(m.shape, (3, 3))
        np.testing.assert_allclose(m[2], [0.0, 0.0, 1.0])
        with self.assertRaises(ShapeMismatchError):
            solve_affine_9pt(src[:8], dst[:8])

    def test_linear_system_pivoting(self):
        # Zero on the first diagonal forces a row swap.
        a = np.array([[0.0, 2.0], [3.0, 1.0]])
        b = np.array([4.0, 5.0])
        np.testing.assert_allclose(solve_linear_system(a, b), np.linalg.solve(a, b))

    def test_inverse_roundtrip(self):
        p = Point2D(12.5, -7.25)
        back = self.truth.apply_inverse(self.truth.apply(p))
        self.assertAlmostEqual(back.x, p.x, places=9)
        self.assertAlmostEqual(back.y, p.y, places=9)

    def test_singular_inverse(self):
        params = AffineParams(1.0, 2.0, 0.0, 2.0, 4.0, 0.0)
        with self.assertRaises(SingularMatrixError):
            params.inverse

    def test_unit_scale_keeps_other_terms(self):
        locked = self.truth.with_unit_scale()
        self.assertEqual((locked.a, locked.e), (1.0, 1.0))
        self.assertEqual((locked.b, locked.c, locked.d, locked.f), (-0.02, 3.0, 0.015, -1.5))
        self.assertEqual(self.truth.a, 1.01)

    def test_from_matrix(self):
        m = self.truth.as_matrix()
        self.assertEqual(AffineParams.from_matrix(m), self.truth)
        self.assertEqual(AffineParams.from_matrix(self.truth.to_list()), self.truth)
        with self.assertRaises(ShapeMismatchError):
            AffineParams.from_matrix([1.0, 2.0, 3.0])


class TestTransformChain(unittest.TestCase):
    def setUp(self):
        self.chain = CoordinateTransformChain()
        self.chain.set_simple_calibration((0.1, 0.1), 1024, 768)

    def test_not_calibrated(self):
        chain = CoordinateTransformChain()
        self.assertFalse(chain.is_calibrated)
        with self.assertRaises(NotCalibratedError):
            chain.transform_for_display([(0, 0)])
        with self.assertRaises(NotCalibratedError):
            chain.inverse_transform((0, 0))

    def test_simple_calibration_maps_center(self):
        c = self.chain.to_pixel((0, 0))
        self.assertAlmostEqual(c.x, 512.0, places=6)
        self.assertAlmostEqual(c.y, 384.0, places=6)
        right = self.chain.to_pixel((1, 0))
        up = self.chain.to_pixel((0, 1))
        self.assertAlmostEqual(right.x, 522.0, places=6)
        self.assertAlmostEqual(up.y, 374.0, places=6)

    def test_line_width_scale(self):
        self.assertAlmostEqual(self.chain.line_width_scale, 10.0, places=6)

    def test_zero_pitch_rejected(self):
        before = self.chain.matrix
        with self.assertRaises(SingularMatrixError):
            self.chain.set_simple_calibration((0.0, 0.1), 100, 100)
        np.testing.assert_array_equal(self.chain.matrix, before)

    def test_display_transform_matches_matrix(self):
        m = self.chain.matrix
        for p in [(0.0, 0.0), (1.5, -2.0), (-3.0, 4.0)]:
            out = next(self.chain.transform_for_display([p]))
            expected = m @ np.array([p[0], p[1], 1.0])
            self.assertAlmostEqual(out.x, expected[0], places=9)
            self.assertAlmostEqual(out.y, expected[1], places=9)

    def test_zoom_pan_reference(self):
        pts = list(self.chain.transform_for_display([(11.0, 21.0)], reference=(10.0, 20.0), zoom=2.0, pan=(5.0, -5.0)))
        self.assertAlmostEqual(pts[0].x, (512.0 + 10.0) * 2.0 + 5.0, places=6)
        self.assertAlmostEqual(pts[0].y, (384.0 - 10.0) * 2.0 - 5.0, places=6)

    def test_transform_is_lazy(self):
        consumed = []

        def source():
            for p in [(0, 0), (1, 1)]:
                consumed.append(p)
                yield p

        gen = self.chain.transform_for_display(source())
        self.assertEqual(consumed, [])
        list(gen)
        self.assertEqual(len(consumed), 2)

    def test_inverse_transform_adds_reference(self):
        m = self.chain.inverse_transform((512.0, 384.0), reference=(3.0, 4.0))
        self.assertAlmostEqual(m.x, 3.0, places=9)
        self.assertAlmostEqual(m.y, 4.0, places=9)
        m = self.chain.inverse_transform((522.0, 374.0))
        self.assertAlmostEqual(m.x, 1.0, places=9)
        self.assertAlmostEqual(m.y, 1.0, places=9)

    def test_pix_to_mm_is_inverted(self):
        mm_to_pix = AffineParams(10.0, 0.5, 100.0, -0.5, -10.0, 200.0)
        pix_to_mm = AffineParams(*mm_to_pix.inverse)
        chain = CoordinateTransformChain()
        chain.set_calibration_pix_to_mm(pix_to_mm.as_matrix())
        np.testing.assert_allclose(chain.matrix, mm_to_pix.as_matrix(), atol=1e-9)

    def test_singular_matrix_keeps_previous(self):
        before = self.chain.matrix
        with self.assertRaises(SingularMatrixError):
            self.chain.set_calibration_mm_to_pix([1, 2, 0, 2, 4, 0, 0, 0, 1])
        np.testing.assert_array_equal(self.chain.matrix, before)

    def test_wrong_matrix_size(self):
        with self.assertRaises(ShapeMismatchError):
            self.chain.set_calibration_mm_to_pix([1, 0, 0, 0, 1, 0])

    def test_bottom_row_ignored(self):
        self.chain.set_calibration_mm_to_pix([2, 0, 1, 0, 2, 1, 7, 7, 7])
        np.testing.assert_allclose(self.chain.matrix[2], [0, 0, 1])

    def test_visibility(self):
        bounds = (100, 100)
        self.assertTrue(CoordinateTransformChain.is_visible([(50, 50)], bounds, ElementKind.DOT))
        self.assertFalse(CoordinateTransformChain.is_visible([(-5, 50), (150, 50)], bounds, ElementKind.RECT))
        self.assertTrue(CoordinateTransformChain.is_visible([(-5, 50), (150, 50)], bounds, ElementKind.LINE))
        self.assertTrue(CoordinateTransformChain.is_visible([(500, 500)], bounds, ElementKind.TEXT))

    def test_project_culls_offscreen(self):
        bounds = (1024, 768)
        self.assertEqual(len(self.chain.project(circle(0, 0, 1), (0, 0), 1.0, (0, 0), bounds)), 2)
        self.assertEqual(self.chain.project(circle(500, 500, 1), (0, 0), 1.0, (0, 0), bounds), [])
        self.assertEqual(len(self.chain.project(line(500, 0, -500, 0), (0, 0), 1.0, (0, 0), bounds)), 2)
        self.assertEqual(len(self.chain.project(text(900, 900, "far"), (0, 0), 1.0, (0, 0), bounds)), 1)

    def test_file_roundtrip(self):
        with tempfile.TemporaryDirectory() as td:
            path = self.chain.save(Path(td) / "camera.json")
            chain = CoordinateTransformChain()
            chain.set_calibration_from_file(path)
        np.testing.assert_allclose(chain.matrix, self.chain.matrix)

    def test_file_pixel_to_mm_key(self):
        pix_to_mm = AffineParams(0.1, 0.0, -51.2, 0.0, -0.1, 38.4)
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "camera.json"
            path.write_text(json.dumps({"pixel_to_mm": [float(v) for v in pix_to_mm.as_matrix().ravel()]}))
            chain = CoordinateTransformChain()
            chain.set_calibration_from_file(path)
        np.testing.assert_allclose(chain.matrix, self.chain.matrix, atol=1e-9)

    def test_file_errors(self):
        with tempfile.TemporaryDirectory() as td:
            bad = Path(td) / "bad.json"
            bad.write_text("{not json")
            empty = Path(td) / "empty.json"
            empty.write_text("{}")
            with self.assertRaises(LoadError):
                self.chain.set_calibration_from_file(bad)
            with self.assertRaises(LoadError):
                self.chain.set_calibration_from_file(empty)
            with self.assertRaises(LoadError):
                self.chain.set_calibration_from_file(Path(td) / "missing.json")
        self.assertTrue(self.chain.is_calibrated)


class TestRunWithStatus(unittest.TestCase):
    def test_ok(self):
        status, result = run_with_status(lambda x: x * 2, 21)
        self.assertEqual(status, StatusCode.OK)
        self.assertEqual(result, 42)

    def test_calibration_error_maps_to_code(self):
        chain = CoordinateTransformChain()
        status, result = run_with_status(chain.inverse_transform, (0, 0))
        self.assertEqual(status, StatusCode.NOT_CALIBRATED)
        self.assertLess(int(status), 0)
        self.assertIsNone(result)

    def test_other_errors_propagate(self):
        def boom():
            raise ValueError("unrelated")

        with self.assertRaises(ValueError):
            run_with_status(boom)


class TestViewport(unittest.TestCase):
    def setUp(self):
        self.vp = Viewport(zoom_step=0.3, max_zoom=10.0, click_threshold=5.0)
        self.vp.fit((100, 50), (200, 200))

    def test_fit_sets_default_zoom(self):
        self.assertAlmostEqual(self.vp.default_zoom, 2.0)
        self.assertAlmostEqual(self.vp.zoom, 2.0)
        self.assertEqual(self.vp.pan, Point2D(0.0, 0.0))

    def test_zoom_keeps_cursor_pixel(self):
        cursor = (60.0, 40.0)
        before = self.vp.screen_to_image(cursor)
        self.assertTrue(self.vp.zoom_at(cursor, +1))
        self.assertAlmostEqual(self.vp.zoom, 2.6)
        after = self.vp.screen_to_image(cursor)
        self.assertAlmostEqual(before.x, after.x, places=9)
        self.assertAlmostEqual(before.y, after.y, places=9)

    def test_zoom_out_to_default_resets_pan(self):
        self.vp.zoom_at((60.0, 40.0), +1)
        self.vp.zoom_at((60.0, 40.0), -1)
        self.vp.zoom_at((60.0, 40.0), -1)
        self.assertAlmostEqual(self.vp.zoom, self.vp.default_zoom)
        self.assertEqual(self.vp.pan, Point2D(0.0, 0.0))

    def test_zoom_capped(self):
        for _ in range(50):
            self.vp.zoom_at((10.0, 10.0), +1)
        self.assertAlmostEqual(self.vp.zoom, 10.0)

    def test_zoom_outside_image_ignored(self):
        self.assertFalse(self.vp.zoom_at((150.0, 150.0), +1))
        self.assertAlmostEqual(self.vp.zoom, 2.0)

    def test_drag_is_limited(self):
        self.vp.drag(50.0, 500.0)
        self.assertEqual(self.vp.pan, Point2D(0.0, 100.0))

    def test_screen_to_image_clamps(self):
        p = self.vp.screen_to_image((500.0, -20.0))
        self.assertEqual(p, Point2D(100.0, 0.0))

    def test_click_threshold(self):
        self.assertTrue(self.vp.is_click((10, 10), (13, 13)))
        self.assertFalse(self.vp.is_click((10, 10), (20, 10)))


class TestElements(unittest.TestCase):
    def test_points_pairs(self):
        el = line(1, 2, 3, 4)
        self.assertEqual(list(el.points()), [Point2D(1.0, 2.0), Point2D(3.0, 4.0)])

    def test_grid_overlay(self):
        shots = {0: Point2D(0, 0), 1: Point2D(10, 0)}
        offsets = {0: Point2D(0, 0), 1: Point2D(0.01, -0.02)}
        els = grid_overlay(shots, offsets, gain=100.0)
        kinds = [e.kind for e in els]
        self.assertEqual(kinds, [ElementKind.DOT, ElementKind.DOT, ElementKind.ARROW])
        np.testing.assert_allclose(els[2].pts, [10.0, 0.0, 11.0, -2.0])


if __name__ == "__main__":
    unittest.main()
