"""standgrid: spatial substrate for individual-tree forest stand models.

A small set of building blocks shared by the light, height and
regeneration subsystems of a stand simulator:
  - Grid: dense 2D array with metric <-> index mapping and cross-grid aliasing
  - GridRunner: windowed row-major traversal with neighbour lookups
  - Stamp / StampLibrary: precomputed light influence patterns per tree
  - apply_stamp / sample_stamp: clip or torus accumulation onto a grid
  - PartitionedScheduler: two-phase, lock-free parallel execution over
    resource units
"""

from standgrid.errors import (
    ConfigurationError,
    FormatError,
    PreconditionError,
    StandGridError,
    TaskFault,
)
from standgrid.grid import Grid
from standgrid.runner import GridRunner
from standgrid.stamp import DistanceTable, Stamp, StampLibrary
from standgrid.accumulate import EdgePolicy, apply_stamp, attenuate, footprint, sample_stamp
from standgrid.perf import PhaseTimer
from standgrid.scheduler import PartitionedScheduler

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DistanceTable",
    "EdgePolicy",
    "FormatError",
    "Grid",
    "GridRunner",
    "PartitionedScheduler",
    "PhaseTimer",
    "PreconditionError",
    "Stamp",
    "StampLibrary",
    "StandGridError",
    "TaskFault",
    "apply_stamp",
    "attenuate",
    "footprint",
    "sample_stamp",
]
