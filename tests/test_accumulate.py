"""Tests for standgrid.accumulate: clip/torus stamping and sampling."""

import numpy as np
import pytest

from standgrid.accumulate import (
    EdgePolicy,
    apply_stamp,
    attenuate,
    footprint,
    height_weight,
    sample_stamp,
)
from standgrid.errors import ConfigurationError, PreconditionError
from standgrid.grid import Grid
from standgrid.stamp import Stamp, StampLibrary
from standgrid.types import StampSize


# ─── Helpers ──────────────────────────────────────────────────────────

def add(existing, values):
    return existing + values


def _ones(size=8, offset=3):
    return Stamp(size, offset, np.ones((size, size), dtype=np.float32))


def _random(size, offset, seed=1):
    rng = np.random.default_rng(seed)
    return Stamp(size, offset, rng.random((size, size), dtype=np.float32))


# ═══════════════════════════════════════════════════════════════════════
# CLIP
# ═══════════════════════════════════════════════════════════════════════

class TestClip:
    def test_corner_scenario(self):
        """Size 8, offset 3 at (2, 2): targets -1..6 clip to 0..6 on both axes."""
        grid = Grid(2.0, 10, 10)
        written = apply_stamp(grid, _ones(8, 3), (2, 2), add)
        arr = grid.as_array()
        assert written == 49
        assert np.count_nonzero(arr) == 49
        assert (arr[:7, :7] == 1.0).all()
        assert (arr[7:, :] == 0.0).all()
        assert (arr[:, 7:] == 0.0).all()

    def test_footprint_never_negative(self):
        grid = Grid(2.0, 10, 10)
        fp = footprint(grid, _ones(8, 3), (2, 2))
        assert fp.target_x.min() == 0
        assert fp.target_y.min() == 0
        assert fp.target_x.max() == 6
        np.testing.assert_array_equal(fp.stamp_x, np.arange(1, 8))

    @pytest.mark.parametrize("anchor", [(0, 0), (19, 0), (5, 19), (10, 10), (25, 25)])
    def test_sum_matches_visible_stamp(self, anchor):
        grid = Grid(2.0, 20, 20)
        stamp = _random(16, 7)
        written = apply_stamp(grid, stamp, anchor, add)
        k = np.arange(16)
        vis_x = (anchor[0] + k - 7 >= 0) & (anchor[0] + k - 7 < 20)
        vis_y = (anchor[1] + k - 7 >= 0) & (anchor[1] + k - 7 < 20)
        expected = stamp.values[np.ix_(vis_y, vis_x)]
        assert written == expected.size
        assert grid.data.sum() == pytest.approx(expected.sum(), rel=1e-5)

    def test_fully_outside(self):
        grid = Grid(2.0, 10, 10)
        assert apply_stamp(grid, _ones(4, 1), (50, 50), add) == 0
        assert grid.data.sum() == 0.0

    def test_interior_placement(self):
        grid = Grid(2.0, 20, 20)
        stamp = _random(8, 3)
        apply_stamp(grid, stamp, (10, 10), add)
        np.testing.assert_array_equal(grid.as_array()[7:15, 7:15], stamp.values)

    def test_unset_grid(self):
        with pytest.raises(PreconditionError):
            apply_stamp(Grid(), _ones(), (0, 0), add)


# ═══════════════════════════════════════════════════════════════════════
# TORUS
# ═══════════════════════════════════════════════════════════════════════

class TestTorus:
    @pytest.mark.parametrize("anchor", [(0, 0), (19, 19), (3, 17), (10, 10)])
    def test_complete_and_once_per_cell(self, anchor):
        grid = Grid(2.0, 20, 20)
        written = apply_stamp(grid, _ones(16, 7), anchor, add, EdgePolicy.TORUS)
        assert written == 256
        assert grid.data.sum() == 256.0
        assert grid.data.max() == 1.0

    def test_wraps_to_far_edge(self):
        grid = Grid(2.0, 20, 20)
        values = np.zeros((4, 4), dtype=np.float32)
        values[0, 0] = 1.0        # one cell south-west of the centre
        apply_stamp(grid, Stamp(4, 1, values), (0, 0), add, EdgePolicy.TORUS)
        assert grid[19, 19] == 1.0

    def test_preserves_random_mass(self):
        grid = Grid(2.0, 24, 24)
        stamp = _random(24, 11, seed=7)
        apply_stamp(grid, stamp, (2, 21), add, EdgePolicy.TORUS)
        assert grid.data.sum() == pytest.approx(float(stamp.values.sum()), rel=1e-5)

    def test_grid_smaller_than_stamp(self):
        grid = Grid(2.0, 10, 10)
        with pytest.raises(ConfigurationError):
            apply_stamp(grid, _ones(16, 7), (5, 5), add, EdgePolicy.TORUS)

    @pytest.mark.parametrize("anchor", [(0, 0), (49, 49), (25, 3)])
    def test_large_stamp_uses_logical_window(self, anchor):
        # internal 64 > 50 cells, logical 49 fits
        grid = Grid(2.0, 50, 50)
        written = apply_stamp(grid, _ones(64, 24), anchor, add, EdgePolicy.TORUS)
        assert written == 49 * 49
        assert grid.data.sum() == 49.0 * 49.0
        assert grid.data.max() == 1.0

    def test_logical_window_wider_than_grid(self):
        grid = Grid(2.0, 50, 50)
        with pytest.raises(ConfigurationError, match="63x63"):
            apply_stamp(grid, _ones(64, 31), (5, 5), add, EdgePolicy.TORUS)


# ═══════════════════════════════════════════════════════════════════════
# COMBINE FUNCTIONS AND SAMPLING
# ═══════════════════════════════════════════════════════════════════════

class TestAttenuate:
    def test_transmission(self):
        combine = attenuate(opacity=1.0)
        out = combine(np.ones(3), np.array([0.0, 0.5, 1.0]))
        np.testing.assert_allclose(out, [1.0, 0.5, 0.02])

    def test_opacity_scales(self):
        out = attenuate(opacity=0.5)(np.ones(1), np.array([0.5]))
        np.testing.assert_allclose(out, [0.75])

    def test_compounds_multiplicatively(self):
        grid = Grid(2.0, 10, 10)
        grid.initialize(1.0)
        values = np.zeros((4, 4), dtype=np.float32)
        values[:3, :3] = 0.5
        stamp = Stamp(4, 1, values)
        apply_stamp(grid, stamp, (5, 5), attenuate())
        apply_stamp(grid, stamp, (5, 5), attenuate())
        assert grid[5, 5] == pytest.approx(0.25)
        assert grid[7, 7] == 1.0


class TestSample:
    def test_weighted_sum(self):
        grid = Grid(2.0, 10, 10)
        grid.initialize(2.0)
        stamp = _random(4, 1)
        assert sample_stamp(grid, stamp, (5, 5)) == pytest.approx(
            2.0 * float(stamp.values.sum()), rel=1e-5)

    def test_clipped_sum(self):
        grid = Grid(2.0, 10, 10)
        grid.initialize(1.0)
        total = sample_stamp(grid, _ones(4, 1), (0, 0))
        assert total == pytest.approx(9.0)

    def test_transform_applied(self):
        grid = Grid(2.0, 10, 10)
        grid.initialize(1.0)
        doubled = sample_stamp(grid, _ones(4, 1), (5, 5),
                               transform=lambda fp, cells: cells * 2.0)
        assert doubled == pytest.approx(32.0)


class TestHeightWeight:
    def test_reaching_and_missing(self):
        w = height_weight(20.0, np.array([0.0, 5.0, 30.0]), np.array([10.0, 10.0, 10.0]))
        np.testing.assert_allclose(w, [1.0, 1.0, 0.0])

    def test_partial(self):
        w = height_weight(8.0, np.array([0.0]), np.array([16.0]))
        np.testing.assert_allclose(w, [0.5])

    def test_zero_dominant_height(self):
        w = height_weight(5.0, np.array([10.0]), np.array([0.0]))
        np.testing.assert_allclose(w, [1.0])


class TestFootprintDistances:
    def test_requires_table(self):
        grid = Grid(2.0, 10, 10)
        fp = footprint(grid, _ones(), (5, 5))
        with pytest.raises(PreconditionError):
            fp.stamp_distances(_ones())

    def test_distances(self):
        library = StampLibrary(cell_size=2.0)
        stamp = _ones(8, 3)
        library.add('piab', 0, stamp)
        library.finalize()
        fp = footprint(Grid(2.0, 20, 20), stamp, (10, 10))
        d = fp.stamp_distances(stamp)
        assert d.shape == (8, 8)
        assert d[3, 3] == 0.0
        assert d[7, 6] == pytest.approx(10.0)


class TestAllSizeClasses:
    @pytest.mark.parametrize("size", [int(s) for s in StampSize])
    def test_interior_write_count(self, size):
        grid = Grid(2.0, 140, 140)
        stamp = _ones(size, (size - 1) // 2)
        assert apply_stamp(grid, stamp, (70, 70), add) == size * size
