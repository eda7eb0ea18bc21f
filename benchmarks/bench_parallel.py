#!/usr/bin/env python3
"""Benchmark the partitioned light pass.

Stamps a 1 km x 1 km stand (100 resource units, ~20k trees) with
workers=1,2,4,8 and reports wall-clock times per pass.
"""

import os
import sys
import time

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from standgrid.config import default_config
from standgrid.landscape import Landscape
from standgrid.stamp import Stamp, StampLibrary


def make_library(n_classes=6, seed=7):
    """Cone-shaped writer stamps of growing width, each with a 3x3 reader."""
    library = StampLibrary(cell_size=2.0)
    for cls in range(n_classes):
        width = 5 + 4 * cls
        r = np.arange(width) - width // 2
        cone = np.clip(1.0 - np.hypot(r[None, :], r[:, None]) / (width / 2 + 0.5), 0.0, 1.0)
        stamp = Stamp.from_grid(cone.astype(np.float32), width)
        library.add('piab', cls, stamp, crown_radius=1.0 + cls)
        reader_values = np.zeros((4, 4), dtype=np.float32)
        reader_values[:3, :3] = 1.0 / 9.0
        library.add_reader(Stamp(4, 1, reader_values), crown_radius=1.0 + cls)
    return library.finalize()


def make_landscape(workers, trees_per_unit=200, seed=42):
    config = default_config()
    config.world.extent = [0.0, 0.0, 1000.0, 1000.0]
    config.threading.max_workers = workers
    config.threading.parallel = workers > 1
    config.threading.timing = True
    land = Landscape.from_config(config)

    rng = np.random.default_rng(seed)
    for unit in land.units:
        e = unit.extent
        xs = rng.uniform(e.left, e.right, trees_per_unit)
        ys = rng.uniform(e.bottom, e.top, trees_per_unit)
        hs = rng.uniform(5.0, 35.0, trees_per_unit)
        for x, y, h in zip(xs, ys, hs):
            land.add_tree(float(x), float(y), float(h), 'piab', int(h // 6))
    return land


def benchmark(workers_list=None, repeats=3):
    """Run the light pass across different worker counts."""
    if workers_list is None:
        workers_list = [1, 2, 4, 8]
    library = make_library()

    results = {}
    for w in workers_list:
        land = make_landscape(w)
        land.update_height_field(library)

        t0 = time.perf_counter()
        for _ in range(repeats):
            land.apply_light_patterns(library)
        elapsed = (time.perf_counter() - t0) / repeats
        land.scheduler.close()

        results[w] = {
            'elapsed': elapsed,
            'mean_light': float(land.light_grid.data.mean()),
        }
        print(f"  workers={w:2d}  time={elapsed:6.3f}s  "
              f"mean_light={results[w]['mean_light']:.4f}")
    return results


if __name__ == "__main__":
    print("Benchmark: 100 units, 200 trees/unit, light pass")
    print(f"{'='*60}")
    results = benchmark()

    print(f"\n{'='*60}")
    print("Summary:")
    serial_time = results[1]['elapsed']
    for w, r in results.items():
        speedup = serial_time / r['elapsed'] if r['elapsed'] > 0 else 0
        print(f"  workers={w:2d}: {r['elapsed']:6.3f}s  speedup={speedup:.2f}x")
