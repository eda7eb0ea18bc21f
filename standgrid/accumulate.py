"""Accumulate stamps onto grids and read grids back through stamps.

Stamp cell (kx, ky) of a stamp anchored at grid cell (ax, ay) lands on

    (ax + kx - offset, ay + ky - offset)

for kx, ky in [0, size). Every target cell is visited exactly once, so
the combine function sees each cell's existing value once, as one
vectorised call over the whole footprint.

Edge policies:
    CLIP   stamp cells outside the grid are skipped
    TORUS  targets wrap modulo the grid size (periodic boundary); the grid
           must be at least as large as the logical stamp
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

import numpy as np

from standgrid.errors import ConfigurationError, PreconditionError
from standgrid.grid import Grid
from standgrid.stamp import Stamp

# Lowest light transmission a single tree can produce on a cell
MIN_TRANSMISSION = 0.02

Combine = Callable[[np.ndarray, np.ndarray], np.ndarray]


class EdgePolicy(Enum):
    CLIP = "clip"
    TORUS = "torus"


@dataclass
class Footprint:
    """Cells of a grid covered by one anchored stamp.

    ``stamp_x``/``stamp_y`` are the stamp columns/rows that land on the
    grid; ``target_x``/``target_y`` the grid columns/rows they land on.
    Together they describe a dense (len(stamp_y), len(stamp_x)) block.
    """
    stamp_x: np.ndarray
    stamp_y: np.ndarray
    target_x: np.ndarray
    target_y: np.ndarray
    size_x: int

    @property
    def shape(self) -> Tuple[int, int]:
        return (len(self.stamp_y), len(self.stamp_x))

    @property
    def cell_count(self) -> int:
        return len(self.stamp_x) * len(self.stamp_y)

    def is_empty(self) -> bool:
        return self.cell_count == 0

    def target_indices(self) -> np.ndarray:
        """Linear grid indices, shape ``self.shape``."""
        return self.target_y[:, np.newaxis] * self.size_x + self.target_x[np.newaxis, :]

    def stamp_values(self, stamp: Stamp) -> np.ndarray:
        return stamp.values[np.ix_(self.stamp_y, self.stamp_x)]

    def stamp_distances(self, stamp: Stamp) -> np.ndarray:
        """Distance of each covered stamp cell from the stamp centre (m)."""
        if stamp.distances is None:
            raise PreconditionError(
                "distance table not initialised; call StampLibrary.finalize() first"
            )
        dy = np.abs(self.stamp_y - stamp.offset)
        dx = np.abs(self.stamp_x - stamp.offset)
        return stamp.distances.values[np.ix_(dy, dx)]


def _axis(anchor: int, offset: int, size: int, extent: int,
          policy: EdgePolicy) -> Tuple[np.ndarray, np.ndarray]:
    k = np.arange(size)
    target = anchor + k - offset
    if policy is EdgePolicy.TORUS:
        return k, target % extent
    inside = (target >= 0) & (target < extent)
    return k[inside], target[inside]


def footprint(grid: Grid, stamp: Stamp, anchor: Tuple[int, int],
              policy: EdgePolicy = EdgePolicy.CLIP) -> Footprint:
    """Resolve the grid cells covered by ``stamp`` anchored at ``anchor``.

    Under TORUS a grid narrower than the internal size but at least as wide
    as the logical size covers only the logical window; the padding would
    wrap onto cells the window already covers.

    Raises:
        PreconditionError: grid not set up.
        ConfigurationError: TORUS on a grid smaller than the logical stamp.
    """
    if grid.is_empty():
        raise PreconditionError("grid has not been set up")
    size = int(stamp.size)
    if policy is EdgePolicy.TORUS and (grid.size_x < size or grid.size_y < size):
        size = stamp.logical_size
        if grid.size_x < size or grid.size_y < size:
            raise ConfigurationError(
                f"torus accumulation needs a grid of at least {size}x{size} cells, "
                f"got {grid.size_x}x{grid.size_y}"
            )
    ax, ay = anchor
    stamp_x, target_x = _axis(ax, stamp.offset, size, grid.size_x, policy)
    stamp_y, target_y = _axis(ay, stamp.offset, size, grid.size_y, policy)
    return Footprint(stamp_x, stamp_y, target_x, target_y, grid.size_x)


def apply_footprint(grid: Grid, fp: Footprint, values: np.ndarray,
                    combine: Combine) -> int:
    """Write ``combine(existing, values)`` into the footprint's cells.

    Returns the number of cells written.
    """
    if fp.is_empty():
        return 0
    idx = fp.target_indices()
    data = grid.data
    data[idx] = combine(data[idx], values)
    return fp.cell_count


def apply_stamp(grid: Grid, stamp: Stamp, anchor: Tuple[int, int],
                combine: Combine, policy: EdgePolicy = EdgePolicy.CLIP) -> int:
    """Accumulate ``stamp`` onto ``grid`` centred on cell ``anchor``.

    Args:
        grid: Target grid.
        stamp: Stamp to apply.
        anchor: (x, y) grid cell of the stamp centre.
        combine: ``combine(existing, stamp_values) -> new`` on arrays.
        policy: Edge handling.

    Returns:
        Number of grid cells written.
    """
    fp = footprint(grid, stamp, anchor, policy)
    return apply_footprint(grid, fp, fp.stamp_values(stamp), combine)


def sample_stamp(grid: Grid, stamp: Stamp, anchor: Tuple[int, int],
                 policy: EdgePolicy = EdgePolicy.CLIP,
                 transform: Optional[Callable[[Footprint, np.ndarray], np.ndarray]] = None
                 ) -> float:
    """Weighted sum of grid values under ``stamp``.

    ``transform(fp, grid_values)``, if given, maps the covered grid values
    before weighting (e.g. to remove the focal tree's own shading).
    """
    fp = footprint(grid, stamp, anchor, policy)
    if fp.is_empty():
        return 0.0
    cells = grid.data[fp.target_indices()].astype(np.float64)
    if transform is not None:
        cells = transform(fp, cells)
    return float(np.sum(cells * fp.stamp_values(stamp)))


def attenuate(opacity: float = 1.0, floor: float = MIN_TRANSMISSION) -> Combine:
    """Multiplicative Beer-Lambert combine.

    ``existing * max(1 - opacity * value, floor)``. A stamp value of zero
    leaves the cell unchanged.
    """
    def combine(existing: np.ndarray, values: np.ndarray) -> np.ndarray:
        return existing * np.maximum(1.0 - opacity * values, floor)
    return combine


def height_weight(tree_height: float, distances: np.ndarray,
                  dominant: np.ndarray) -> np.ndarray:
    """Fraction of the local dominant height reached by the tree's crown.

    The crown is modelled as a 45 degree cone: at distance d from the stem
    it reaches ``max(tree_height - d, 0)``. The result is 1 where that
    height reaches the dominant height, else the ratio of the two.
    """
    z = np.maximum(tree_height - distances, 0.0)
    dominant = np.asarray(dominant, dtype=np.float64)
    weight = np.ones(np.broadcast(z, dominant).shape, dtype=np.float64)
    below = z < dominant
    np.divide(z, dominant, out=weight, where=below)
    return weight
