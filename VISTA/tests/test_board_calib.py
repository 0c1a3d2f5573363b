import unittest
from pathlib import Path
import csv
import json
import tempfile
import sys
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PyQt5 import QtCore

from VISTA.config import Config
from VISTA.src.core.affine import AffineParams
from VISTA.src.core.board_calib import BoardCalibModel, parse_record
from VISTA.src.core.errors import LoadError, MissingGridDataError, NotCalibratedError, OutOfRangeError
from VISTA.src.core.motion import BoardMotionCorrector
from VISTA.src.core.report import residual_arrays, save_residual_report
from VISTA.src.core.types import Point2D
from VISTA.src.core.worker import StageWorker
from VISTA.src.drivers.hardware import MockStageSystem


def make_record(nx=2, ny=2, step=10.0, start=(0.0, 0.0), offsets=None):
    """Snake-case record for an nx x ny grid; offsets maps index -> (dx, dy)."""
    offsets = offsets or {}
    shots, vision = [], []
    for row in range(ny):
        for col in range(nx):
            i = col + row * nx
            shots.append([i, start[0] + col * step, start[1] + row * step])
            dx, dy = offsets.get(i, (0.0, 0.0))
            vision.append([i, dx, dy])
    end_x = start[0] + (nx - 1) * step
    end_y = start[1] + (ny - 1) * step
    return {
        "start_x": start[0],
        "start_y": start[1],
        "step_x": step,
        "step_y": step,
        "end_x": end_x,
        "end_y": end_y,
        "x_range": end_x - start[0],
        "y_range": end_y - start[1],
        "total_x_num": nx,
        "total_y_num": ny,
        "vision_results": vision,
        "shot_positions": shots,
    }


def to_legacy(record):
    legacy = {
        "m_dStartX": record["start_x"],
        "m_dStartY": record["start_y"],
        "m_dStepX": record["step_x"],
        "m_dStepY": record["step_y"],
        "m_dEndX": record["end_x"],
        "m_dEndY": record["end_y"],
        "m_dXRange": record["x_range"],
        "m_dYRange": record["y_range"],
        "m_iTotalXNum": record["total_x_num"],
        "m_iTotalYNum": record["total_y_num"],
        "m_MovType": 0,
    }
    for key, src in (("m_VisionResultMap", "vision_results"), ("m_IndexShotPosMap", "shot_positions")):
        legacy[key] = [{"Item1": i, "Item2": x, "Item3": y} for i, x, y in record[src]]
    return legacy


def distorted_record(params: AffineParams, n=3, step=5.0):
    """Grid whose observed positions are params applied to the nominal shots."""
    rec = make_record(n, n, step)
    vision = []
    for i, x, y in rec["shot_positions"]:
        ox, oy = params.apply((x, y))
        vision.append([i, ox - x, oy - y])
    rec["vision_results"] = vision
    return rec


class TestBoardLookup(unittest.TestCase):
    def setUp(self):
        self.model = BoardCalibModel()

    def test_not_loaded(self):
        self.assertFalse(self.model.is_loaded)
        with self.assertRaises(NotCalibratedError):
            self.model.mach_to_board_coord((0, 0))
        with self.assertRaises(NotCalibratedError):
            self.model.angle_normalization()

    def test_zero_offsets(self):
        self.model.load_record(make_record())
        self.assertEqual(self.model.mach_to_board_coord((5, 5)), Point2D(0.0, 0.0))

    def test_center_blends_corners(self):
        self.model.load_record(make_record(offsets={3: (2.0, 0.0)}))
        off = self.model.mach_to_board_coord((5, 5))
        self.assertAlmostEqual(off.x, 0.5)
        self.assertAlmostEqual(off.y, 0.0)

    def test_grid_nodes_return_own_offset(self):
        offsets = {0: (0.1, 0.2), 1: (0.3, 0.4), 2: (0.5, 0.6), 3: (2.0, 0.0)}
        self.model.load_record(make_record(offsets=offsets))
        cases = {(0, 0): 0, (10, 0): 1, (0, 10): 2, (10, 10): 3}
        for point, idx in cases.items():
            off = self.model.mach_to_board_coord(point)
            self.assertAlmostEqual(off.x, offsets[idx][0], msg=str(point))
            self.assertAlmostEqual(off.y, offsets[idx][1], msg=str(point))

    def test_outside_range_clamps_to_corner(self):
        offsets = {0: (0.1, 0.2), 3: (2.0, 0.0)}
        self.model.load_record(make_record(offsets=offsets))
        low = self.model.mach_to_board_coord((-5, -5))
        high = self.model.mach_to_board_coord((15, 15))
        self.assertAlmostEqual(low.x, 0.1)
        self.assertAlmostEqual(low.y, 0.2)
        self.assertAlmostEqual(high.x, 2.0)
        self.assertAlmostEqual(high.y, 0.0)

    def test_outside_one_axis_collapses_that_axis_only(self):
        offsets = {0: (0.1, 0.2), 1: (0.3, 0.4), 2: (0.5, 0.6), 3: (2.0, 0.0)}
        self.model.load_record(make_record(offsets=offsets))
        below = self.model.mach_to_board_coord((5, -5))
        self.assertAlmostEqual(below.x, 0.2)
        self.assertAlmostEqual(below.y, 0.3)
        left = self.model.mach_to_board_coord((-5, 5))
        self.assertAlmostEqual(left.x, 0.3)
        self.assertAlmostEqual(left.y, 0.4)

    def test_board_to_mach_subtracts_offset(self):
        self.model.load_record(make_record(offsets={i: (0.01, -0.02) for i in range(4)}))
        cmd = self.model.board_to_mach((5, 5))
        self.assertAlmostEqual(cmd.x, 4.99)
        self.assertAlmostEqual(cmd.y, 5.02)

    def test_missing_neighbour(self):
        self.model.load_record(make_record())
        self.model._vision.pop(3)
        with self.assertRaises(MissingGridDataError):
            self.model.mach_to_board_coord((5, 5))


class TestBoardLoading(unittest.TestCase):
    def test_legacy_and_snake_case_agree(self):
        rec = make_record(3, 2, offsets={4: (0.05, -0.01)})
        a = BoardCalibModel()
        b = BoardCalibModel()
        a.load_record(rec)
        b.load_record(to_legacy(rec))
        self.assertEqual(a.grid, b.grid)
        self.assertEqual(a.vision_offsets, b.vision_offsets)
        self.assertEqual(a.shot_positions, b.shot_positions)

    def test_later_duplicate_wins(self):
        rec = make_record()
        rec["vision_results"].append([1, 9.0, 9.0])
        _, vision, _ = parse_record(rec)
        self.assertEqual(vision[1], Point2D(9.0, 9.0))

    def test_rejects_holes(self):
        rec = make_record()
        rec["shot_positions"].pop()
        with self.assertRaises(LoadError):
            parse_record(rec)

    def test_rejects_bad_step(self):
        rec = make_record()
        rec["step_x"] = 0.0
        with self.assertRaises(LoadError):
            parse_record(rec)

    def test_rejects_inconsistent_range(self):
        rec = make_record()
        rec["x_range"] = 12.0
        with self.assertRaises(LoadError):
            parse_record(rec)

    def test_failed_load_keeps_previous_state(self):
        model = BoardCalibModel()
        model.load_record(make_record(offsets={0: (0.1, 0.1)}))
        before = model.vision_offsets
        with tempfile.TemporaryDirectory() as td:
            bad = Path(td) / "bad.json"
            bad.write_text("{broken")
            with self.assertRaises(LoadError):
                model.load(bad)
            with self.assertRaises(LoadError):
                model.load(Path(td) / "missing.json")
        rec = make_record()
        del rec["total_y_num"]
        with self.assertRaises(LoadError):
            model.load_record(rec)
        self.assertEqual(model.vision_offsets, before)

    def test_save_load_roundtrip(self):
        model = BoardCalibModel()
        model.load_record(to_legacy(make_record(3, 3, offsets={4: (0.02, 0.03)})))
        with tempfile.TemporaryDirectory() as td:
            path = model.save(Path(td) / "board.json")
            self.assertIn("vision_results", json.loads(path.read_text()))
            other = BoardCalibModel()
            other.load(path)
        self.assertEqual(other.grid, model.grid)
        self.assertEqual(other.vision_offsets, model.vision_offsets)
        self.assertEqual(other.source_path, path)


class TestAngleNormalization(unittest.TestCase):
    def test_pure_affine_leaves_no_residual(self):
        distortion = AffineParams(1.0005, 0.002, 0.03, -0.002, 0.9995, -0.01)
        model = BoardCalibModel()
        model.load_record(distorted_record(distortion))
        params = model.angle_normalization()
        inv = AffineParams(*distortion.inverse)
        np.testing.assert_allclose(params.to_list(), inv.to_list(), atol=1e-9)
        self.assertLess(model.residual_summary()["max_mm"], 1e-9)

    def test_lock_scale(self):
        distortion = AffineParams(1.001, 0.0, 0.0, 0.0, 1.001, 0.0)
        model = BoardCalibModel()
        model.load_record(distorted_record(distortion))
        params = model.angle_normalization(lock_scale=True)
        self.assertEqual((params.a, params.e), (1.0, 1.0))
        # With the scale pinned, the scale error stays in the residual.
        self.assertGreater(model.residual_summary()["max_mm"], 1e-4)

    def test_residual_replaces_offsets(self):
        rec = distorted_record(AffineParams(1.0, 0.0, 0.05, 0.0, 1.0, 0.0))
        rec["vision_results"][4][1] += 0.01
        model = BoardCalibModel()
        model.load_record(rec)
        model.angle_normalization()
        offsets = model.vision_offsets
        mags = {i: np.hypot(p.x, p.y) for i, p in offsets.items()}
        self.assertEqual(max(mags, key=mags.get), 4)


class TestMotionCorrector(unittest.TestCase):
    def setUp(self):
        self.config = Config()
        self.system = MockStageSystem(self.config, travel_speed_mm_s=0.0)
        self.model = BoardCalibModel()
        self.model.load_record(make_record(offsets={i: (0.01, 0.02) for i in range(4)}))
        self.corrector = BoardMotionCorrector(self.config, self.system, self.model)

    def test_inactive_passes_through(self):
        self.config.ENABLE_BOARD_CORRECTION = False
        self.assertEqual(self.corrector.corrected_target((5, 5)), Point2D(5.0, 5.0))

    def test_active_moves_to_corrected_command(self):
        self.config.ENABLE_BOARD_CORRECTION = True
        cmd = self.corrector.move_corrected((5, 5))
        self.assertAlmostEqual(cmd.x, 4.99)
        self.assertAlmostEqual(cmd.y, 4.98)
        self.assertAlmostEqual(self.system.current_position.x, 4.99)

    def test_default_stages_do_not_share_config(self):
        a = MockStageSystem(travel_speed_mm_s=0.0)
        b = MockStageSystem(travel_speed_mm_s=0.0)
        a.config.ENABLE_BOARD_CORRECTION = True
        self.assertIsNot(a.config, b.config)
        self.assertFalse(b.config.ENABLE_BOARD_CORRECTION)

    def test_out_of_range_does_not_move(self):
        self.config.ENABLE_BOARD_CORRECTION = True
        with self.assertRaises(OutOfRangeError):
            self.corrector.move_corrected((0, 0))
        self.assertEqual(self.system.current_position, Point2D(0.0, 0.0))


class TestStageWorker(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])

    def setUp(self):
        self.config = Config()
        self.config.ENABLE_BOARD_CORRECTION = True
        self.system = MockStageSystem(self.config, travel_speed_mm_s=0.0)
        model = BoardCalibModel()
        model.load_record(make_record(offsets={i: (0.01, 0.02) for i in range(4)}))
        self.worker = StageWorker(self.system, self.config, BoardMotionCorrector(self.config, self.system, model))
        self.published = []
        self.worker.position_changed.connect(lambda x, y: self.published.append((x, y)))

    def test_move_corrected_queues_command(self):
        cmd = self.worker.move_corrected(5, 5)
        name, (x, y) = self.worker.command_queue.get_nowait()
        self.assertEqual(name, "MOVE")
        self.assertAlmostEqual(x, cmd.x)
        self.assertAlmostEqual(y, 4.98)

    def test_rejected_move_queues_nothing(self):
        with self.assertRaises(OutOfRangeError):
            self.worker.move_corrected(0, 0)
        self.assertTrue(self.worker.command_queue.empty())

    def test_publish_respects_epsilon(self):
        self.assertTrue(self.worker.publish_position())
        self.system.move_to(0.001, 0.0)
        self.assertFalse(self.worker.publish_position())
        self.system.move_to(0.01, 0.0)
        self.assertTrue(self.worker.publish_position())
        self.assertEqual(len(self.published), 2)

    def test_handle_move_publishes(self):
        self.worker.move_to(1.0, 2.0)
        self.worker._drain_commands()
        self.assertEqual(self.published[-1], (1.0, 2.0))


class TestResidualReport(unittest.TestCase):
    def setUp(self):
        self.model = BoardCalibModel()
        self.model.load_record(make_record(3, 3, offsets={4: (0.003, -0.004)}))

    def test_arrays_in_index_order(self):
        idx, pos, off = residual_arrays(self.model)
        self.assertEqual(list(idx), list(range(9)))
        self.assertEqual(pos.shape, (9, 2))
        np.testing.assert_allclose(off[4], [0.003, -0.004])

    def test_report_files(self):
        with tempfile.TemporaryDirectory() as td:
            csv_path, png_path = save_residual_report(self.model, AffineParams.identity(), out_dir=Path(td))
            self.assertTrue(png_path.exists())
            with csv_path.open() as f:
                rows = list(csv.reader(f))
        self.assertEqual(rows[0][0], "Index")
        self.assertEqual(len(rows), 10)
        self.assertAlmostEqual(float(rows[5][5]), 0.005)


if __name__ == "__main__":
    unittest.main()
