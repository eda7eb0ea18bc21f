"""Tests for standgrid.runner: windowed traversal and neighbours."""

import numpy as np
import pytest

from standgrid.errors import ConfigurationError
from standgrid.grid import Grid
from standgrid.runner import GridRunner
from standgrid.types import CellRect, Rect


@pytest.fixture
def grid():
    """10x10 grid of 10 m cells, value = linear index."""
    g = Grid(10.0, 10, 10)
    g.data[:] = np.arange(g.count, dtype=np.float32)
    return g


# ── traversal ─────────────────────────────────────────────────────────

class TestTraversal:
    def test_whole_grid(self, grid):
        values = [float(v) for v in GridRunner(grid)]
        assert values == list(range(100))

    def test_metric_window(self, grid):
        runner = GridRunner(grid, Rect(20.0, 30.0, 30.0, 20.0))
        assert runner.window == CellRect(2, 3, 3, 2)
        assert runner.first == 32
        assert runner.last == 44
        assert runner.line_stride == 7
        assert [float(v) for v in runner] == [32, 33, 34, 42, 43, 44]

    def test_cell_window(self, grid):
        runner = GridRunner(grid, CellRect(8, 0, 2, 3))
        assert [float(v) for v in runner] == [8, 9, 18, 19, 28, 29]

    def test_advance_sentinel_is_sticky(self, grid):
        runner = GridRunner(grid, CellRect(0, 0, 2, 1))
        assert runner.advance()
        assert runner.advance()
        assert not runner.advance()
        assert not runner.advance()

    def test_reset_repeats(self, grid):
        runner = GridRunner(grid, CellRect(1, 1, 3, 3))
        first_pass = [float(v) for v in runner]
        runner.reset()
        second_pass = []
        while runner.advance():
            second_pass.append(float(runner.current))
        assert first_pass == second_pass

    def test_current_index_and_coordinate(self, grid):
        runner = GridRunner(grid, CellRect(4, 6, 1, 1))
        assert runner.advance()
        assert runner.current_index() == (4, 6)
        assert runner.current_coordinate() == (45.0, 65.0)

    def test_write_through_current(self, grid):
        runner = GridRunner(grid, CellRect(0, 0, 3, 3))
        while runner.advance():
            runner.current = -1.0
        assert (grid.as_array()[:3, :3] == -1.0).all()
        assert grid[3, 0] == 3.0

    def test_window_outside_grid(self, grid):
        with pytest.raises(ConfigurationError):
            GridRunner(grid, CellRect(8, 8, 5, 5))
        with pytest.raises(ConfigurationError):
            GridRunner(grid, Rect(-10.0, 0.0, 20.0, 20.0))

    def test_empty_window(self, grid):
        with pytest.raises(ConfigurationError):
            GridRunner(grid, CellRect(2, 2, 0, 3))


class TestSetPosition:
    def test_jump(self, grid):
        runner = GridRunner(grid, CellRect(2, 2, 5, 5))
        runner.set_position(3, 3)
        assert runner.is_valid()
        assert runner.current == 33.0
        assert runner.position == 33

    def test_off_grid_invalidates(self, grid):
        runner = GridRunner(grid)
        runner.set_position(-1, 0)
        assert not runner.is_valid()
        runner.set_position(0, 10)
        assert not runner.is_valid()


# ── neighbours ────────────────────────────────────────────────────────

class TestNeighbours:
    def test_neighbors4_interior(self, grid):
        runner = GridRunner(grid)
        runner.set_position(5, 5)
        assert tuple(float(v) for v in runner.neighbors4()) == (65, 56, 54, 45)

    def test_neighbors8_interior(self, grid):
        runner = GridRunner(grid)
        runner.set_position(5, 5)
        assert tuple(float(v) for v in runner.neighbors8()) == (
            65, 56, 54, 45, 66, 64, 46, 44)

    def test_corner_uses_sentinel(self, grid):
        runner = GridRunner(grid)
        runner.set_position(0, 0)
        north, east, west, south = runner.neighbors4()
        assert (north, east) == (10.0, 1.0)
        assert west is None and south is None
        n8 = runner.neighbors8(empty=-1)
        assert n8[4] == 11.0          # north-east
        assert n8[5:] == (-1, -1, -1)

    def test_east_edge_does_not_wrap(self, grid):
        runner = GridRunner(grid)
        runner.set_position(9, 4)
        _, east, west, _ = runner.neighbors4()
        assert east is None
        assert west == 48.0

    def test_neighbours_outside_window_are_returned(self, grid):
        runner = GridRunner(grid, CellRect(3, 3, 1, 1))
        assert runner.advance()
        north, east, west, south = runner.neighbors4()
        assert (north, east, west, south) == (43.0, 34.0, 32.0, 23.0)
