"""Exception taxonomy for standgrid.

None of these are transient: they signal a setup bug or a faulty task and
are fatal to the enclosing simulation step. Callers above the core may
catch and log before giving up, but nothing here is retried.
"""

from __future__ import annotations

from typing import Any, Optional


class StandGridError(Exception):
    """Base class for all standgrid errors."""
    pass


class ConfigurationError(StandGridError, ValueError):
    """Invalid setup: non-positive cell size, empty grid, size mismatch."""
    pass


class FormatError(StandGridError, ValueError):
    """Truncated or malformed stamp stream."""
    pass


class PreconditionError(StandGridError, RuntimeError):
    """An operation was called before its prerequisites were in place."""
    pass


class TaskFault(StandGridError, RuntimeError):
    """An unhandled exception inside a scheduled operation.

    Aborts the whole in-flight phase. The underlying exception is chained
    as ``__cause__``; ``item`` is the unit, entity or (begin, end) chunk
    whose task failed.
    """

    def __init__(self, message: str, item: Optional[Any] = None,
                 phase: Optional[str] = None):
        super().__init__(message)
        self.item = item
        self.phase = phase
