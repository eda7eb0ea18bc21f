"""Landscape: light grid, dominant height grid and resource units.

Wires the spatial substrate together the way a stand simulation uses it:

  1. update_height_field()      trees → dominant height per 10 m cell
  2. apply_light_patterns(lib)  every tree's stamp → light grid, in groups
                                of units spaced wider than any stamp
  3. read_light_field(lib)      reader stamps → light resource index per tree

Core classes:
  - TreePlacement: a tree's position, height and stamp key
  - ResourceUnit: a square work unit (default 1 ha) holding its trees
  - Landscape: grids + units + scheduler

The light grid starts each pass at 1.0 (full light); each tree multiplies
the cells under its stamp by its Beer-Lambert transmission, weighted by
how far its crown reaches into the local dominant height.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np

from standgrid.accumulate import (
    MIN_TRANSMISSION,
    EdgePolicy,
    apply_footprint,
    attenuate,
    footprint,
    height_weight,
    sample_stamp,
)
from standgrid.config import SimulationConfig, WorldSection
from standgrid.errors import ConfigurationError, PreconditionError
from standgrid.grid import Grid
from standgrid.perf import PhaseTimer
from standgrid.runner import GridRunner
from standgrid.scheduler import PartitionedScheduler
from standgrid.stamp import Stamp, StampLibrary
from standgrid.types import HEIGHT_CELL_DTYPE, Rect, allocate_height_cells, ceil_div

logger = logging.getLogger(__name__)

# Light read from outside the project area counts this much
OUTSIDE_LIGHT_FACTOR = 0.1


# ═══════════════════════════════════════════════════════════════════════
# TREES AND RESOURCE UNITS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class TreePlacement:
    """One tree as seen by the light model."""
    x: float                      # m
    y: float                      # m
    height: float                 # m
    species: str
    size_class: int
    opacity: float = 1.0
    light_cell: Tuple[int, int] = (0, 0)
    light_resource_index: float = 0.0


@dataclass
class ResourceUnit:
    """Square work unit. (grid_x, grid_y) is its position in the unit lattice."""
    index: int
    grid_x: int
    grid_y: int
    extent: Rect
    trees: List[TreePlacement] = field(default_factory=list)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.grid_x, self.grid_y)


# ═══════════════════════════════════════════════════════════════════════
# LANDSCAPE
# ═══════════════════════════════════════════════════════════════════════

class Landscape:
    """Light and height grids over a rectangular project area."""

    def __init__(self, world: WorldSection,
                 scheduler: Optional[PartitionedScheduler] = None):
        self.world = world
        self.scheduler = scheduler if scheduler is not None else PartitionedScheduler()
        self.height_factor = world.height_factor
        self.policy = EdgePolicy.TORUS if world.torus else EdgePolicy.CLIP

        project = world.rect
        b = world.buffer
        buffered = Rect(project.x - b, project.y - b,
                        project.width + 2 * b, project.height + 2 * b)
        self.project_area = project

        self.light_grid = Grid.from_extent(buffered, world.light_cell_size)
        self.light_grid.initialize(1.0)
        self.height_grid = Grid.from_extent(buffered, world.height_cell_size,
                                            dtype=HEIGHT_CELL_DTYPE)
        self.height_grid.data[:] = allocate_height_cells(self.height_grid.count)
        self.light_grid.check_alias(self.height_grid, self.height_factor)

        self.units = self._build_units(project, world.resource_unit_size)
        self.scheduler.configure(self.units, position_of=lambda ru: ru.position)

        if b > 0:
            self._mark_buffer()
        logger.info("landscape %s: light grid %dx%d, height grid %dx%d, %d units",
                    project, self.light_grid.size_x, self.light_grid.size_y,
                    self.height_grid.size_x, self.height_grid.size_y, len(self.units))

    @classmethod
    def from_config(cls, config: SimulationConfig) -> 'Landscape':
        t = config.threading
        scheduler = PartitionedScheduler(
            parallel=t.parallel,
            max_workers=t.max_workers,
            threshold=t.threshold,
            timer=PhaseTimer(enabled=t.timing),
        )
        return cls(config.world, scheduler)

    @staticmethod
    def _build_units(project: Rect, unit_size: float) -> List[ResourceUnit]:
        n_x = ceil_div(project.width, unit_size)
        n_y = ceil_div(project.height, unit_size)
        units = []
        for iy in range(n_y):
            for ix in range(n_x):
                extent = Rect(project.x + ix * unit_size, project.y + iy * unit_size,
                              unit_size, unit_size)
                units.append(ResourceUnit(len(units), ix, iy, extent))
        return units

    def _height_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        grid = self.height_grid
        ix = np.arange(grid.size_x)
        iy = np.arange(grid.size_y)
        cx = grid.origin[0] + (ix + 0.5) * grid.cell_size
        cy = grid.origin[1] + (iy + 0.5) * grid.cell_size
        return np.meshgrid(cx, cy)

    def _mark_buffer(self) -> None:
        cx, cy = self._height_centers()
        p = self.project_area
        outside = ~((cx >= p.left) & (cx < p.right) & (cy >= p.bottom) & (cy < p.top))
        cells = self.height_grid.as_array()
        cells['valid'][outside] = False
        cells['outside'][outside] = True
        self.mark_radiating()

    # ── trees ─────────────────────────────────────────────────────────

    def unit_at(self, x: float, y: float) -> ResourceUnit:
        """Resource unit containing the metric point (x, y)."""
        for unit in self.units:
            if unit.extent.contains(x, y):
                return unit
        raise ConfigurationError(f"point ({x}, {y}) is outside the project area")

    def add_tree(self, x: float, y: float, height: float, species: str,
                 size_class: int, opacity: float = 1.0) -> TreePlacement:
        """Place a tree. Raises ConfigurationError outside the project area."""
        if height <= 0:
            raise ConfigurationError(f"tree height must be positive, got {height}")
        unit = self.unit_at(x, y)
        tree = TreePlacement(x, y, height, species, size_class, opacity,
                             light_cell=self.light_grid.index_at(x, y))
        unit.trees.append(tree)
        return tree

    def trees(self) -> Iterator[TreePlacement]:
        for unit in self.units:
            yield from unit.trees

    @property
    def tree_count(self) -> int:
        return sum(len(unit.trees) for unit in self.units)

    # ── height field ──────────────────────────────────────────────────

    def update_height_field(self, library: Optional[StampLibrary] = None) -> None:
        """Recompute dominant heights and tree counts from the trees.

        With a library, a tree whose reader crown crosses the edge of its
        height cell also raises the neighbouring cell on that side.
        """
        cells = self.height_grid.data
        cells['height'] = 0.0
        cells['count'] = 0
        grid = self.height_grid
        f = self.height_factor
        heights = cells['height']
        for tree in self.trees():
            lx, ly = tree.light_cell
            hx, hy = lx // f, ly // f
            i = grid.index(hx, hy)
            cells['count'][i] += 1
            heights[i] = max(heights[i], tree.height)
            if library is None:
                continue
            reader = library.reader_of(library.stamp(tree.species, tree.size_class))
            if reader is None:
                continue
            r = reader.offset
            sx, sy = lx % f, ly % f
            spill = []
            if sx - r < 0:
                spill.append((hx - 1, hy))
            if sx + r >= f:
                spill.append((hx + 1, hy))
            if sy - r < 0:
                spill.append((hx, hy - 1))
            if sy + r >= f:
                spill.append((hx, hy + 1))
            for nx, ny in spill:
                if self.policy is EdgePolicy.TORUS:
                    nx, ny = nx % grid.size_x, ny % grid.size_y
                elif not grid.is_index_valid(nx, ny):
                    continue
                j = grid.index(nx, ny)
                heights[j] = max(heights[j], tree.height)

    def dominant_height(self, x: float, y: float) -> float:
        return float(self.height_grid.value_at(x, y)['height'])

    # ── light ─────────────────────────────────────────────────────────

    def _dominant_under(self, fp) -> np.ndarray:
        coarse = self.light_grid.alias(fp.target_indices(), self.height_factor)
        return self.height_grid.data['height'][coarse]

    def _apply_tree(self, tree: TreePlacement, stamp: Stamp) -> int:
        fp = footprint(self.light_grid, stamp, tree.light_cell, self.policy)
        weight = height_weight(tree.height, fp.stamp_distances(stamp),
                               self._dominant_under(fp))
        values = fp.stamp_values(stamp) * weight
        return apply_footprint(self.light_grid, fp, values, attenuate(tree.opacity))

    def _apply_unit(self, unit: ResourceUnit, library: StampLibrary) -> None:
        for tree in unit.trees:
            self._apply_tree(tree, library.stamp(tree.species, tree.size_class))

    def stamp_spacing(self, library: StampLibrary) -> int:
        """Smallest lattice step k at which units never share a light cell.

        A stamp anchored at column ax writes columns ax - offset through
        ax - offset + size - 1. Trees in units k steps apart are at least
        (k - 1) * unit_cells + 1 columns (or rows) apart.
        """
        writers = list(library)
        west = max((s.offset for s in writers), default=0)
        east = max((int(s.size) - 1 - s.offset for s in writers), default=0)
        unit_cells = ceil_div(self.world.resource_unit_size, self.world.light_cell_size)
        return 1 + max(1, ceil_div(west + east, unit_cells))

    def light_phases(self, library: StampLibrary) -> List[List[ResourceUnit]]:
        """Units grouped by (grid_x % k, grid_y % k), k = stamp_spacing()."""
        k = self.stamp_spacing(library)
        phases = []
        for cy in range(k):
            for cx in range(k):
                group = [u for u in self.units
                         if u.grid_x % k == cx and u.grid_y % k == cy]
                if group:
                    phases.append(group)
        return phases

    def apply_light_patterns(self, library: StampLibrary) -> None:
        """Reset the light grid to 1.0 and apply every tree's stamp.

        Units run through the scheduler one light_phases() group at a time;
        units within a group are far enough apart that their stamps never
        overlap.
        """
        if library.distances is None:
            raise PreconditionError("stamp library not finalized")
        self.light_grid.initialize(1.0)
        phases = self.light_phases(library)
        logger.debug("light pass: %d phases for %d units", len(phases), len(self.units))
        for n, units in enumerate(phases):
            self.scheduler.run_over(lambda unit: self._apply_unit(unit, library),
                                    units, phase=f"light.{n}")

    def read_light(self, tree: TreePlacement, library: StampLibrary) -> float:
        """Light resource index of ``tree`` from the current light grid.

        Weighted sum over the tree's reader stamp of the light grid with
        the tree's own shading divided out; cells outside the project area
        count OUTSIDE_LIGHT_FACTOR. Capped at 1.0 and stored on the tree.
        """
        writer = library.stamp(tree.species, tree.size_class)
        reader = library.reader_of(writer)
        if reader is None:
            raise PreconditionError(
                f"no reader stamp attached for {tree.species}/{tree.size_class}"
            )
        shift = writer.offset - reader.offset
        if shift < 0:
            raise ConfigurationError(
                f"reader offset {reader.offset} exceeds writer offset {writer.offset}"
            )

        def remove_own_shading(fp, light: np.ndarray) -> np.ndarray:
            wy = fp.stamp_y + shift
            wx = fp.stamp_x + shift
            in_y = wy < writer.size
            in_x = wx < writer.size
            own = np.zeros(fp.shape, dtype=np.float64)
            own[np.ix_(in_y, in_x)] = writer.values[np.ix_(wy[in_y], wx[in_x])]
            weight = height_weight(tree.height, fp.stamp_distances(reader),
                                   self._dominant_under(fp))
            own = np.maximum(1.0 - own * tree.opacity * weight, MIN_TRANSMISSION)
            value = light / own
            coarse = self.light_grid.alias(fp.target_indices(), self.height_factor)
            inside = self.height_grid.data['valid'][coarse]
            return np.where(inside, value, value * OUTSIDE_LIGHT_FACTOR)

        lri = sample_stamp(self.light_grid, reader, tree.light_cell, self.policy,
                           transform=remove_own_shading)
        tree.light_resource_index = min(lri, 1.0)
        return tree.light_resource_index

    def read_light_field(self, library: StampLibrary) -> None:
        """read_light() for every tree, unit by unit through the scheduler."""
        def read_unit(unit: ResourceUnit) -> None:
            for tree in unit.trees:
                self.read_light(tree, library)
        self.scheduler.run_over_units(read_unit)

    def mean_light(self, unit: ResourceUnit) -> float:
        """Mean light grid value over the unit's extent."""
        runner = GridRunner(self.light_grid, unit.extent)
        total = 0.0
        n = 0
        for value in runner:
            total += float(value)
            n += 1
        return total / n

    # ── project area ──────────────────────────────────────────────────

    def mark_outside(self, rect: Rect) -> int:
        """Flag height cells whose centre lies in ``rect`` as outside forest.

        Returns the number of cells newly marked.
        """
        cx, cy = self._height_centers()
        hit = (cx >= rect.left) & (cx < rect.right) & (cy >= rect.bottom) & (cy < rect.top)
        cells = self.height_grid.as_array()
        newly = hit & cells['valid']
        cells['valid'][hit] = False
        cells['outside'][hit] = True
        self.mark_radiating()
        return int(np.count_nonzero(newly))

    def mark_radiating(self) -> int:
        """Flag outside cells that touch a valid cell (8-neighbourhood).

        Returns the number of radiating cells.
        """
        grid = self.height_grid
        runner = GridRunner(grid)
        flags = []
        while runner.advance():
            cell = runner.current
            if cell['valid']:
                continue
            neighbours = runner.neighbors8()
            if any(n is not None and n['valid'] for n in neighbours):
                flags.append(runner.position)
        grid.data['radiating'] = False
        if flags:
            grid.data['radiating'][np.array(flags)] = True
        return len(flags)

    def valid_height_cells(self) -> int:
        return int(np.count_nonzero(self.height_grid.data['valid']))
