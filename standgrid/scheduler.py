"""Two-phase partitioned executor.

Work units (resource units) are split into two sets A and B such that no
two units in the same set are spatial neighbours. ``run_over_units`` runs
every unit of A concurrently, waits for all of them, then does the same
for B. Stamps of trees in one unit spill into neighbouring units, so this
ordering lets tasks write to the shared light grid without locks.

The scheduler trusts the partition; it does not check adjacency. With the
default checkerboard (parity of unit grid coordinates) only
edge-neighbours are separated; diagonal neighbours share a colour.

Tasks run on one lazily created ``ThreadPoolExecutor``. Small workloads
(``len(items) <= threshold``) run on the caller's thread. An exception in
any task aborts the phase: tasks that have not started are cancelled,
running tasks are awaited, and a TaskFault chained to the first failure
(in submission order) is raised.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from standgrid.errors import ConfigurationError, TaskFault
from standgrid.perf import PhaseTimer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 3


class PartitionedScheduler:
    """Runs operations over work units, entities and index ranges.

    Args:
        parallel: Allow multi-threaded execution.
        max_workers: Pool size; None lets ThreadPoolExecutor decide.
        threshold: Workloads with at most this many items run sequentially.
        timer: Optional PhaseTimer receiving per-phase timings.
    """

    def __init__(self, parallel: bool = True, max_workers: Optional[int] = None,
                 threshold: int = DEFAULT_THRESHOLD,
                 timer: Optional[PhaseTimer] = None):
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        if threshold < 0:
            raise ConfigurationError(f"threshold must be >= 0, got {threshold}")
        self.parallel = parallel
        self.max_workers = max_workers
        self.threshold = threshold
        self.timer = timer if timer is not None else PhaseTimer(enabled=False)
        self.units_a: List[Any] = []
        self.units_b: List[Any] = []
        self.entities: List[Any] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    # ── partitioning ──────────────────────────────────────────────────

    @staticmethod
    def partition_alternating(units: Sequence[T]) -> Tuple[List[T], List[T]]:
        """A = even list positions, B = odd list positions.

        Only safe when the list order already alternates spatially.
        """
        units = list(units)
        return units[0::2], units[1::2]

    @staticmethod
    def partition_checkerboard(
        units: Sequence[T], position_of: Callable[[T], Tuple[int, int]]
    ) -> Tuple[List[T], List[T]]:
        """A = units whose grid coordinates (ix, iy) have even ix + iy."""
        a: List[T] = []
        b: List[T] = []
        for unit in units:
            ix, iy = position_of(unit)
            (a if (ix + iy) % 2 == 0 else b).append(unit)
        return a, b

    def configure(self, units: Sequence[Any],
                  position_of: Optional[Callable[[Any], Tuple[int, int]]] = None) -> None:
        """Split ``units`` into the two phases.

        With ``position_of`` the checkerboard partition is used; without
        it units alternate by list position.
        """
        if position_of is not None:
            self.units_a, self.units_b = self.partition_checkerboard(units, position_of)
            mode = "checkerboard"
        else:
            self.units_a, self.units_b = self.partition_alternating(units)
            mode = "alternating"
        logger.debug("partitioned %d units (%s): A=%d, B=%d", len(units), mode,
                     len(self.units_a), len(self.units_b))

    def configure_entities(self, entities: Sequence[Any]) -> None:
        self.entities = list(entities)

    @property
    def unit_count(self) -> int:
        return len(self.units_a) + len(self.units_b)

    # ── execution ─────────────────────────────────────────────────────

    def is_parallel_for(self, n_items: int, force_single_threaded: bool = False) -> bool:
        return self.parallel and not force_single_threaded and n_items > self.threshold

    def run_over_units(self, op: Callable[[Any], Any],
                       force_single_threaded: bool = False) -> None:
        """Run ``op(unit)`` over A, then (after a barrier) over B."""
        parallel = self.is_parallel_for(self.unit_count, force_single_threaded)
        self._run_phase(op, self.units_a, "units.A", parallel)
        self._run_phase(op, self.units_b, "units.B", parallel)

    def run_over_entities(self, op: Callable[[Any], Any],
                          entities: Optional[Sequence[Any]] = None,
                          force_single_threaded: bool = False) -> None:
        """Run ``op(entity)`` over all entities in a single phase."""
        items = self.entities if entities is None else list(entities)
        parallel = self.is_parallel_for(len(items), force_single_threaded)
        self._run_phase(op, items, "entities", parallel)

    def run_over(self, op: Callable[[Any], Any], items: Sequence[Any],
                 phase: str = "items", force_single_threaded: bool = False) -> None:
        """Run ``op(item)`` over arbitrary items in a single named phase."""
        items = list(items)
        parallel = self.is_parallel_for(len(items), force_single_threaded)
        self._run_phase(op, items, phase, parallel)

    @staticmethod
    def chunks(begin: int, end: int, min_chunk: int,
               max_chunks: int) -> List[Tuple[int, int]]:
        """Split [begin, end) into contiguous (chunk_begin, chunk_end) pairs."""
        if min_chunk < 1 or max_chunks < 1:
            raise ConfigurationError(
                f"min_chunk and max_chunks must be >= 1, got {min_chunk}, {max_chunks}"
            )
        length = end - begin
        if length <= 0:
            return []
        chunk = max(min_chunk, length // max_chunks)
        return [(p, min(p + chunk, end)) for p in range(begin, end, chunk)]

    def run_over_range(self, op: Callable[[int, int], Any], begin: int, end: int,
                       min_chunk: int = 10000, max_chunks: int = 10,
                       force_single_threaded: bool = False) -> None:
        """Call ``op(chunk_begin, chunk_end)`` over chunks of [begin, end).

        Runs in parallel only when the range is longer than
        ``threshold * min_chunk``; otherwise ``op(begin, end)`` is called
        once on the caller's thread.
        """
        pieces = self.chunks(begin, end, min_chunk, max_chunks)
        parallel = (self.parallel and not force_single_threaded
                    and end - begin > min_chunk * self.threshold)
        if not parallel and pieces:
            pieces = [(begin, end)]
        self._run_phase(lambda piece: op(*piece), pieces, "range", parallel)

    # ── internals ─────────────────────────────────────────────────────

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers,
                                                thread_name_prefix="standgrid")
        return self._executor

    def _run_phase(self, op: Callable[[Any], Any], items: Sequence[Any],
                   phase: str, parallel: bool) -> None:
        if not items:
            return
        with self.timer.phase(phase, tasks=len(items)):
            if parallel:
                self._run_parallel(op, items, phase)
            else:
                for item in items:
                    try:
                        op(item)
                    except Exception as exc:
                        raise TaskFault(f"task failed in phase '{phase}': {exc!r}",
                                        item=item, phase=phase) from exc

    def _run_parallel(self, op: Callable[[Any], Any], items: Sequence[Any],
                      phase: str) -> None:
        pool = self._pool()
        futures: Dict[Future, Any] = {pool.submit(op, item): item for item in items}
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        if pending and any(f.exception() is not None for f in done):
            for f in pending:
                f.cancel()
            wait(pending)
        for f, item in futures.items():
            if f.cancelled():
                continue
            exc = f.exception()
            if exc is not None:
                logger.error("task failed in phase '%s' (item=%r): %r", phase, item, exc)
                raise TaskFault(f"task failed in phase '{phase}': {exc!r}",
                                item=item, phase=phase) from exc

    def close(self) -> None:
        """Shut down the worker pool. The scheduler may be reused afterwards."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> 'PartitionedScheduler':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
