"""Core value types for standgrid.

This module is the single source of truth for:
  - Rect / CellRect: metric and index rectangles
  - StampSize: the ladder of internal stamp sizes
  - HEIGHT_CELL_DTYPE: structured dtype for dominant-height grid cells
  - Light / height grid resolution constants

Coordinate system: origin at the south-west corner, x increasing east,
y increasing north. A rectangle's ``y`` is its southern edge.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Tuple

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# RECTANGLES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Rect:
    """Metric rectangle (m). (x, y) is the south-west corner."""
    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y

    @property
    def top(self) -> float:
        return self.y + self.height

    def is_empty(self) -> bool:
        return self.width <= 0.0 or self.height <= 0.0

    def contains(self, x: float, y: float) -> bool:
        """Half-open containment: [left, right) x [bottom, top)."""
        return self.left <= x < self.right and self.bottom <= y < self.top

    def center(self) -> Tuple[float, float]:
        return (self.x + 0.5 * self.width, self.y + 0.5 * self.height)


@dataclass(frozen=True)
class CellRect:
    """Index rectangle. Covers columns [x, x + width), rows [y, y + height)."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def top(self) -> int:
        return self.y + self.height

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def cells(self) -> Iterator[Tuple[int, int]]:
        """Yield (x, y) for every cell, row by row from the south."""
        for iy in range(self.y, self.top):
            for ix in range(self.x, self.right):
                yield ix, iy


# ═══════════════════════════════════════════════════════════════════════
# STAMP SIZE LADDER
# ═══════════════════════════════════════════════════════════════════════

class StampSize(IntEnum):
    """Internal (storage) sizes of a stamp, in light cells per side."""
    GRID_4 = 4
    GRID_8 = 8
    GRID_12 = 12
    GRID_16 = 16
    GRID_24 = 24
    GRID_32 = 32
    GRID_48 = 48
    GRID_64 = 64

    @classmethod
    def for_width(cls, width: int) -> "StampSize":
        """Smallest size class that holds a footprint of ``width`` cells.

        Widths beyond the largest class map to GRID_64; clipping the
        logical width itself is the caller's job (see MAX_STAMP_WIDTH).
        """
        for size in cls:
            if width <= size:
                return size
        return cls.GRID_64


# Largest odd logical width that fits the largest size class
MAX_STAMP_WIDTH = 63


# ═══════════════════════════════════════════════════════════════════════
# GRID RESOLUTIONS
# ═══════════════════════════════════════════════════════════════════════

LIGHT_CELL_SIZE = 2.0       # m, light influence field
HEIGHT_CELL_SIZE = 10.0     # m, dominant height field
LIGHT_PER_HEIGHT = int(HEIGHT_CELL_SIZE / LIGHT_CELL_SIZE)   # 5
RESOURCE_UNIT_SIZE = 100.0  # m, side of a resource unit

ALIAS_FACTORS = (2, 5, 10)


# ═══════════════════════════════════════════════════════════════════════
# HEIGHT_CELL_DTYPE: dominant height grid cell
# ═══════════════════════════════════════════════════════════════════════

HEIGHT_CELL_DTYPE = np.dtype([
    ('height',    np.float32),   # dominant tree height on the cell (m)
    ('count',     np.int32),     # number of trees on the cell
    ('valid',     np.bool_),     # False: cell is outside the project area
    ('outside',   np.bool_),     # forest outside the project area
    ('radiating', np.bool_),     # outside cell that radiates influence inward
])


def allocate_height_cells(n: int) -> np.ndarray:
    """Zeroed height cells, all marked valid."""
    cells = np.zeros(n, dtype=HEIGHT_CELL_DTYPE)
    cells['valid'] = True
    return cells


def ceil_div(extent: float, cell_size: float) -> int:
    """Number of cells needed to cover ``extent``, partial cells included."""
    n = extent / cell_size
    rounded = round(n)
    # Absorb float noise such as 100 / 0.1 = 1000.0000000000001
    if math.isclose(n, rounded, rel_tol=0.0, abs_tol=1e-9):
        return int(rounded)
    return int(math.ceil(n))
