"""Addressable 2D grid with metric and index coordinates.

Orientation follows map convention: the origin is the south-west corner,
higher x is east, higher y is north.

              N
      (0,2) (1,2) (2,2)
    W (0,1) (1,1) (2,1)  E
      (0,0) (1,0) (2,0)
              S

Storage is one contiguous numpy array in row-major order, so
``index(x, y) = y * size_x + x``. Any numpy dtype works, including
structured dtypes (see types.HEIGHT_CELL_DTYPE).

Grids with the same origin and cell sizes that differ by a factor of
2, 5 or 10 correspond by index arithmetic alone (alias2/alias5/alias10),
e.g. the 2 m light grid and the 10 m height grid.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple, Union

import numpy as np

from standgrid.errors import ConfigurationError, PreconditionError
from standgrid.types import ALIAS_FACTORS, CellRect, Rect, ceil_div


class Grid:
    """Dense 2D array with metric <-> index mapping.

    Linear-index access (``grid[i]``) is unchecked; validate with
    ``is_index_valid`` when the index may be out of range.
    """

    def __init__(
        self,
        cell_size: Optional[float] = None,
        size_x: int = 0,
        size_y: int = 0,
        dtype=np.float32,
        origin: Tuple[float, float] = (0.0, 0.0),
    ):
        self.dtype = np.dtype(dtype)
        self.origin = (float(origin[0]), float(origin[1]))
        self.cell_size = 0.0
        self.size_x = 0
        self.size_y = 0
        self.count = 0
        self._buffer: Optional[np.ndarray] = None
        self._data: Optional[np.ndarray] = None
        if cell_size is not None:
            self.setup(cell_size, size_x, size_y)

    @classmethod
    def from_extent(cls, extent: Rect, cell_size: float, dtype=np.float32) -> 'Grid':
        grid = cls(dtype=dtype)
        grid.setup_extent(extent, cell_size)
        return grid

    @classmethod
    def like(cls, other: 'Grid') -> 'Grid':
        """New grid with the same geometry, dtype and contents as ``other``."""
        grid = cls(other.cell_size, other.size_x, other.size_y,
                   dtype=other.dtype, origin=other.origin)
        grid.copy(other)
        return grid

    # ── setup ─────────────────────────────────────────────────────────

    def setup(self, cell_size: float, size_x: int, size_y: int,
              origin: Optional[Tuple[float, float]] = None) -> None:
        """(Re)dimension the grid.

        The existing allocation is reused when the new cell count fits
        and the cell size is unchanged; contents are then left as they
        were. Otherwise fresh zeroed storage is allocated.

        Raises:
            ConfigurationError: cell_size <= 0, negative sizes or an
                empty grid.
        """
        if cell_size <= 0:
            raise ConfigurationError(f"cell size must be positive, got {cell_size}")
        if size_x < 0 or size_y < 0:
            raise ConfigurationError(
                f"grid dimensions must be non-negative, got {size_x}x{size_y}"
            )
        count = int(size_x) * int(size_y)
        if count == 0:
            raise ConfigurationError(f"grid of {size_x}x{size_y} cells is empty")

        reuse = (
            self._buffer is not None
            and count <= len(self._buffer)
            and cell_size == self.cell_size
        )
        if not reuse:
            self._buffer = np.zeros(count, dtype=self.dtype)

        if origin is not None:
            self.origin = (float(origin[0]), float(origin[1]))
        self.cell_size = float(cell_size)
        self.size_x = int(size_x)
        self.size_y = int(size_y)
        self.count = count
        self._data = self._buffer[:count]

    def setup_extent(self, extent: Rect, cell_size: float) -> None:
        """Dimension the grid to cover ``extent``.

        Partial trailing cells are included in full, so the grid's metric
        extent may exceed the requested rectangle to the north and east.
        """
        if cell_size <= 0:
            raise ConfigurationError(f"cell size must be positive, got {cell_size}")
        if extent.is_empty():
            raise ConfigurationError(f"extent {extent} is empty")
        self.setup(cell_size,
                   ceil_div(extent.width, cell_size),
                   ceil_div(extent.height, cell_size),
                   origin=(extent.x, extent.y))

    def clear(self) -> None:
        """Release the storage. The grid must be set up again before use."""
        self._buffer = None
        self._data = None
        self.size_x = 0
        self.size_y = 0
        self.count = 0

    def is_empty(self) -> bool:
        return self._data is None

    # ── bulk operations ───────────────────────────────────────────────

    def initialize(self, value) -> None:
        """Set every cell to ``value`` (a tuple for structured dtypes)."""
        self._require_data()
        self._data[:] = value

    def copy(self, source: 'Grid') -> None:
        """Copy the contents of ``source`` into this grid.

        Raises:
            ConfigurationError: if the cell counts differ.
        """
        self._require_data()
        if source.count != self.count:
            raise ConfigurationError(
                f"cannot copy a grid of {source.count} cells into one of {self.count}"
            )
        np.copyto(self._data, source.data)

    @property
    def data(self) -> np.ndarray:
        """Flat backing array of length ``count``."""
        return self._data

    def as_array(self) -> np.ndarray:
        """2D view with shape (size_y, size_x); row 0 is the southern row."""
        self._require_data()
        return self._data.reshape(self.size_y, self.size_x)

    # ── element access ────────────────────────────────────────────────

    def __getitem__(self, key: Union[int, Tuple[int, int]]):
        if isinstance(key, tuple):
            ix, iy = key
            return self._data[iy * self.size_x + ix]
        return self._data[key]

    def __setitem__(self, key: Union[int, Tuple[int, int]], value) -> None:
        if isinstance(key, tuple):
            ix, iy = key
            self._data[iy * self.size_x + ix] = value
        else:
            self._data[key] = value

    def __len__(self) -> int:
        return self.count

    def value_at_index(self, ix: int, iy: int):
        return self._data[iy * self.size_x + ix]

    def value_at(self, x: float, y: float):
        """Value of the cell containing the metric point (x, y)."""
        ix, iy = self.index_at(x, y)
        return self._data[iy * self.size_x + ix]

    def set_value_at(self, x: float, y: float, value) -> None:
        ix, iy = self.index_at(x, y)
        self._data[iy * self.size_x + ix] = value

    # ── coordinate mapping ────────────────────────────────────────────

    @property
    def extent(self) -> Rect:
        """Metric rectangle covered by the grid."""
        return Rect(self.origin[0], self.origin[1],
                    self.size_x * self.cell_size, self.size_y * self.cell_size)

    def cell_extent(self) -> CellRect:
        return CellRect(0, 0, self.size_x, self.size_y)

    def index(self, ix: int, iy: int) -> int:
        """Linear index of cell (ix, iy)."""
        return iy * self.size_x + ix

    def index_of(self, index: int) -> Tuple[int, int]:
        """(x, y) of linear index ``index``."""
        return index % self.size_x, index // self.size_x

    def index_at(self, x: float, y: float) -> Tuple[int, int]:
        """(x, y) indices of the cell containing the metric point."""
        return (int(math.floor((x - self.origin[0]) / self.cell_size)),
                int(math.floor((y - self.origin[1]) / self.cell_size)))

    def is_index_valid(self, ix: int, iy: int) -> bool:
        return 0 <= ix < self.size_x and 0 <= iy < self.size_y

    def coord_valid(self, x: float, y: float) -> bool:
        """True if the metric point lies inside the grid (half-open)."""
        return self.extent.contains(x, y)

    def clamp_index(self, ix: int, iy: int) -> Tuple[int, int]:
        """Force (ix, iy) onto the nearest valid cell."""
        return (max(min(ix, self.size_x - 1), 0),
                max(min(iy, self.size_y - 1), 0))

    def cell_center_point(self, ix: int, iy: Optional[int] = None) -> Tuple[float, float]:
        """Metric centre of a cell given as (ix, iy) or as a linear index."""
        if iy is None:
            ix, iy = self.index_of(ix)
        return (self.origin[0] + (ix + 0.5) * self.cell_size,
                self.origin[1] + (iy + 0.5) * self.cell_size)

    def cell_rect(self, ix: int, iy: int) -> Rect:
        """Metric rectangle of cell (ix, iy)."""
        return Rect(self.origin[0] + ix * self.cell_size,
                    self.origin[1] + iy * self.cell_size,
                    self.cell_size, self.cell_size)

    def center_to_center_distance(self, p1: Tuple[int, int],
                                  p2: Tuple[int, int]) -> float:
        """Metric distance between the centres of two cells."""
        x1, y1 = self.cell_center_point(*p1)
        x2, y2 = self.cell_center_point(*p2)
        return math.hypot(x1 - x2, y1 - y2)

    # ── multi-resolution aliasing ─────────────────────────────────────

    def alias(self, index, factor: int):
        """Linear index on the coarse grid ``factor`` times coarser.

        Works elementwise on integer numpy arrays. No compatibility
        checks; see check_alias().
        """
        return ((index // self.size_x) // factor) * (self.size_x // factor) \
            + (index % self.size_x) // factor

    def alias2(self, index):
        return self.alias(index, 2)

    def alias5(self, index):
        return self.alias(index, 5)

    def alias10(self, index):
        return self.alias(index, 10)

    def check_alias(self, coarse: 'Grid', factor: int) -> None:
        """Verify that ``coarse`` is aligned with this grid at ``factor``.

        Raises:
            PreconditionError: unsupported factor, different origin, cell
                size not factor times larger, or dimensions that do not
                divide evenly.
        """
        if factor not in ALIAS_FACTORS:
            raise PreconditionError(
                f"alias factor must be one of {ALIAS_FACTORS}, got {factor}"
            )
        if self.size_x % factor != 0:
            raise PreconditionError(
                f"grid width {self.size_x} is not divisible by {factor}"
            )
        if not (math.isclose(coarse.origin[0], self.origin[0])
                and math.isclose(coarse.origin[1], self.origin[1])):
            raise PreconditionError(
                f"grids do not share an origin: {self.origin} vs {coarse.origin}"
            )
        if not math.isclose(coarse.cell_size, self.cell_size * factor):
            raise PreconditionError(
                f"coarse cell size {coarse.cell_size} != {factor} x {self.cell_size}"
            )
        if (coarse.size_x != self.size_x // factor
                or coarse.size_y < -(-self.size_y // factor)):
            raise PreconditionError(
                f"coarse grid {coarse.size_x}x{coarse.size_y} does not cover "
                f"{self.size_x}x{self.size_y} at factor {factor}"
            )

    # ── internals ─────────────────────────────────────────────────────

    def _require_data(self) -> None:
        if self._data is None:
            raise PreconditionError("grid has not been set up")

    def __repr__(self) -> str:
        return (f"Grid({self.size_x}x{self.size_y}, cell_size={self.cell_size}, "
                f"origin={self.origin}, dtype={self.dtype})")
