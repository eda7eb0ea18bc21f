"""Windowed row-major traversal of a Grid.

GridRunner walks the cells of a rectangular window from the south-west
corner, east along each row, then one row north. Internally it steps a
linear index and skips ``line_stride`` cells at the end of each window
row, so no (x, y) arithmetic is needed in the hot loop.

Typical use:

    runner = GridRunner(light_grid, unit.extent)
    while runner.advance():
        total += runner.current

or simply ``for value in GridRunner(grid, rect): ...``.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional, Tuple, Union

from standgrid.errors import ConfigurationError
from standgrid.grid import Grid
from standgrid.types import CellRect, Rect


class GridRunner:
    """Cursor over a rectangular window of a grid.

    Neighbour lookups are bounded by the grid, not by the window: a
    neighbour outside the window is returned as long as it exists.
    """

    def __init__(self, grid: Grid, window: Optional[Union[Rect, CellRect]] = None):
        if window is None:
            cells = grid.cell_extent()
        elif isinstance(window, Rect):
            cells = self.window_cells(grid, window)
        else:
            cells = window
        self._setup(grid, cells)

    @staticmethod
    def window_cells(grid: Grid, rect: Rect) -> CellRect:
        """Cells of ``grid`` covered by the metric rectangle ``rect``.

        The north and east edges are exclusive: a rectangle aligned with
        cell boundaries covers exactly the cells inside it.
        """
        x0, y0 = grid.index_at(rect.left, rect.bottom)
        x1, y1 = grid.index_at(rect.right, rect.top)
        return CellRect(x0, y0, x1 - x0, y1 - y0)

    def _setup(self, grid: Grid, cells: CellRect) -> None:
        if (cells.is_empty() or cells.x < 0 or cells.y < 0
                or cells.right > grid.size_x or cells.top > grid.size_y):
            raise ConfigurationError(
                f"window {cells} is empty or extends beyond the "
                f"{grid.size_x}x{grid.size_y} grid"
            )
        self.grid = grid
        self.window = cells
        self.first = grid.index(cells.x, cells.y)
        self.last = grid.index(cells.right - 1, cells.top - 1)
        self.columns = cells.width
        self.line_stride = grid.size_x - cells.width
        self.reset()

    # ── traversal ─────────────────────────────────────────────────────

    def reset(self) -> None:
        """Re-prime the cursor to one before the first window cell."""
        self._current = self.first - 1
        self.current_column = -1

    def advance(self) -> bool:
        """Move to the next window cell. Returns False once finished."""
        if self._current > self.last:
            return False
        self._current += 1
        self.current_column += 1
        if self.current_column >= self.columns:
            self._current += self.line_stride
            self.current_column = 0
        return self._current <= self.last

    def __iter__(self) -> Iterator[Any]:
        self.reset()
        while self.advance():
            yield self.grid.data[self._current]

    def set_position(self, ix: int, iy: int) -> None:
        """Jump to grid cell (ix, iy); invalidates the cursor if off-grid."""
        if self.grid.is_index_valid(ix, iy):
            self._current = self.grid.index(ix, iy)
            self.current_column = ix - self.window.x
        else:
            self._current = -1

    def is_valid(self) -> bool:
        return self.first <= self._current <= self.last

    # ── current cell ──────────────────────────────────────────────────

    @property
    def position(self) -> int:
        """Linear grid index of the current cell."""
        return self._current

    @property
    def current(self):
        return self.grid.data[self._current]

    @current.setter
    def current(self, value) -> None:
        self.grid.data[self._current] = value

    def current_index(self) -> Tuple[int, int]:
        return self.grid.index_of(self._current)

    def current_coordinate(self) -> Tuple[float, float]:
        """Metric centre of the current cell."""
        return self.grid.cell_center_point(self._current)

    # ── neighbourhood ─────────────────────────────────────────────────

    def neighbors4(self, empty=None) -> Tuple[Any, Any, Any, Any]:
        """(north, east, west, south); ``empty`` for cells off the grid."""
        data = self.grid.data
        size_x = self.grid.size_x
        i = self._current
        x = i % size_x
        north = data[i + size_x] if i + size_x < self.grid.count else empty
        south = data[i - size_x] if i - size_x >= 0 else empty
        east = data[i + 1] if x + 1 < size_x else empty
        west = data[i - 1] if x > 0 else empty
        return north, east, west, south

    def neighbors8(self, empty=None) -> Tuple[Any, ...]:
        """(N, E, W, S, NE, NW, SE, SW); ``empty`` for cells off the grid."""
        north, east, west, south = self.neighbors4(empty)
        data = self.grid.data
        size_x = self.grid.size_x
        i = self._current
        x = i % size_x
        has_north = i + size_x < self.grid.count
        has_south = i - size_x >= 0
        has_east = x + 1 < size_x
        has_west = x > 0
        north_east = data[i + size_x + 1] if has_north and has_east else empty
        north_west = data[i + size_x - 1] if has_north and has_west else empty
        south_east = data[i - size_x + 1] if has_south and has_east else empty
        south_west = data[i - size_x - 1] if has_south and has_west else empty
        return (north, east, west, south,
                north_east, north_west, south_east, south_west)
