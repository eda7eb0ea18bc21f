"""Phase timing for the partitioned scheduler.

A disabled timer costs one attribute check per phase. When enabled it
keeps wall-clock totals per named phase (``units.A``, ``units.B``,
``entities``, ``range`` or any caller-chosen name).

Usage:
    timer = PhaseTimer(enabled=True)
    scheduler = PartitionedScheduler(timer=timer)
    ...
    print(timer.report())
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator


@dataclass
class PhaseStats:
    total_time: float = 0.0
    runs: int = 0
    tasks: int = 0
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.runs if self.runs > 0 else 0.0


class PhaseTimer:
    """Accumulates elapsed time and task counts per phase."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, PhaseStats] = defaultdict(PhaseStats)
        self._lock = threading.Lock()

    @contextmanager
    def phase(self, name: str, tasks: int = 0) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, time.perf_counter() - t0, tasks)

    def record(self, name: str, elapsed: float, tasks: int = 0) -> None:
        if not self.enabled:
            return
        with self._lock:
            stats = self._stats[name]
            stats.total_time += elapsed
            stats.runs += 1
            stats.tasks += tasks
            stats.max_time = max(stats.max_time, elapsed)

    def stats(self) -> Dict[str, PhaseStats]:
        return dict(self._stats)

    def summary(self) -> dict:
        """Per-phase totals as plain values (YAML/JSON friendly)."""
        out = {}
        for name, s in sorted(self._stats.items()):
            out[name] = {
                'total_s': round(s.total_time, 4),
                'runs': s.runs,
                'tasks': s.tasks,
                'mean_ms': round(s.mean_time * 1000, 3),
            }
        return out

    def report(self, title: str = "Scheduler phases") -> str:
        total = sum(s.total_time for s in self._stats.values())
        rule = '-' * 56
        lines = [
            title,
            rule,
            f"{'Phase':<16} {'Runs':>6} {'Tasks':>8} {'Total (s)':>10} {'Mean (ms)':>10}",
            rule,
        ]
        for name, s in sorted(self._stats.items(), key=lambda kv: -kv[1].total_time):
            lines.append(f"{name:<16} {s.runs:>6} {s.tasks:>8} "
                         f"{s.total_time:>10.4f} {s.mean_time * 1000:>10.3f}")
        lines.append(rule)
        lines.append(f"{'TOTAL':<16} {'':>6} {'':>8} {total:>10.4f}")
        return '\n'.join(lines)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
