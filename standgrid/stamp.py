"""Light influence patterns ("stamps") and the library that owns them.

A stamp is a small square array of precomputed attenuation values that
represents one tree's footprint on the light field. Storage is always one
of the StampSize ladder sizes (4, 8, ..., 64 cells per side); the logical
footprint is the odd width ``2 * offset + 1`` centred on the tree.

Writer stamps are applied onto the light grid; each may reference a
smaller "reader" stamp of the same crown radius that samples the light
field around the tree. Readers live in the same StampLibrary and are
referenced by key, not by object.

Binary encoding of one stamp (no header, no version):
    int32 offset
    float32 values[size * size]     # row-major, south row first
Big-endian by default, as written by the LightRoom stamp tooling.
The internal size is not stored: the caller supplies it.
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import TYPE_CHECKING, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from standgrid.errors import ConfigurationError, FormatError, PreconditionError
from standgrid.grid import Grid
from standgrid.types import LIGHT_CELL_SIZE, MAX_STAMP_WIDTH, StampSize

if TYPE_CHECKING:
    from standgrid.config import StampSection

logger = logging.getLogger(__name__)

# Width of the crown-radius classes used to match readers to writers (m)
READER_RADIUS_STEP = 0.5


# ═══════════════════════════════════════════════════════════════════════
# DISTANCE TABLE
# ═══════════════════════════════════════════════════════════════════════

class DistanceTable:
    """Read-only table of metric distances from a stamp centre.

    ``distance(dx, dy) = cell_size * hypot(dx, dy)`` for cell offsets
    0 <= dx, dy < size. One table is shared by every stamp of a library.
    """

    def __init__(self, size: int, cell_size: float = LIGHT_CELL_SIZE):
        if size <= 0 or cell_size <= 0:
            raise ConfigurationError(
                f"distance table needs positive size and cell size, "
                f"got {size} and {cell_size}"
            )
        self.size = int(size)
        self.cell_size = float(cell_size)
        d = np.arange(self.size, dtype=np.float64)
        table = cell_size * np.hypot(d[np.newaxis, :], d[:, np.newaxis])
        self.values = table.astype(np.float32)
        self.values.flags.writeable = False

    def distance(self, dx: int, dy: int) -> float:
        return float(self.values[dy, dx])

    def covers(self, size: int) -> bool:
        return self.size >= size


# ═══════════════════════════════════════════════════════════════════════
# STAMP
# ═══════════════════════════════════════════════════════════════════════

class Stamp:
    """One light influence pattern.

    Attributes:
        size: Internal (storage) size, a StampSize value.
        offset: Cells between the stamp edge and the tree's centre cell.
        values: (size, size) float32, read-only, indexed [y, x].
        crown_radius: Crown radius (m); set from the reader when attached.
        reader_key: Key of the reader stamp in the owning library, or None.
        distances: Shared DistanceTable, set by StampLibrary.finalize().
    """

    def __init__(
        self,
        size: int,
        offset: int = 0,
        values: Optional[np.ndarray] = None,
        crown_radius: float = 0.0,
    ):
        try:
            self.size = StampSize(size)
        except ValueError:
            raise ConfigurationError(
                f"stamp size {size} is not one of {[int(s) for s in StampSize]}"
            ) from None
        if offset < 0 or 2 * offset + 1 > self.size:
            raise ConfigurationError(
                f"offset {offset} does not fit a {int(self.size)}x{int(self.size)} stamp"
            )
        if values is None:
            arr = np.zeros((self.size, self.size), dtype=np.float32)
        else:
            arr = np.array(values, dtype=np.float32)
            if arr.shape != (self.size, self.size):
                raise ConfigurationError(
                    f"stamp values must have shape ({int(self.size)}, {int(self.size)}), "
                    f"got {arr.shape}"
                )
        arr.flags.writeable = False
        self.values = arr
        self.offset = int(offset)
        self.crown_radius = float(crown_radius)
        self.reader_key: Optional[int] = None
        self.distances: Optional[DistanceTable] = None

    # ── geometry ──────────────────────────────────────────────────────

    @property
    def logical_size(self) -> int:
        """Odd width of the footprint: 2 * offset + 1."""
        return 2 * self.offset + 1

    @property
    def count(self) -> int:
        return int(self.size) * int(self.size)

    @property
    def crown_area(self) -> float:
        return math.pi * self.crown_radius * self.crown_radius

    def value(self, x: int, y: int) -> float:
        return float(self.values[y, x])

    def offset_value(self, x: int, y: int, offset: int) -> float:
        """Value at (x + offset, y + offset); maps reader cells onto a writer."""
        return float(self.values[y + offset, x + offset])

    def distance_to_center(self, ix: int, iy: int) -> float:
        """Metric distance of stamp cell (ix, iy) from the stamp centre.

        Raises:
            PreconditionError: if no distance table has been attached.
        """
        if self.distances is None:
            raise PreconditionError(
                "distance table not initialised; call StampLibrary.finalize() first"
            )
        return self.distances.distance(abs(ix - self.offset), abs(iy - self.offset))

    # ── construction ──────────────────────────────────────────────────

    @classmethod
    def from_grid(cls, source: Union[Grid, np.ndarray], width: int,
                  max_width: int = MAX_STAMP_WIDTH) -> 'Stamp':
        """Extract a centred ``width`` x ``width`` window from a dense pattern.

        Both the (square) source and ``width`` must be odd. Widths above
        ``max_width`` are truncated with a warning.
        """
        arr = source.as_array() if isinstance(source, Grid) else np.asarray(source)
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ConfigurationError(f"source pattern must be square, got {arr.shape}")
        side = arr.shape[0]
        if side % 2 == 0 or width % 2 == 0:
            raise ConfigurationError(
                f"source size ({side}) and stamp width ({width}) must both be odd"
            )
        max_width = min(max_width, MAX_STAMP_WIDTH)
        if width > max_width:
            warnings.warn(
                f"stamp width {width} exceeds {max_width}; "
                f"truncated to {max_width}x{max_width}",
                UserWarning,
                stacklevel=2,
            )
            width = max_width
        if width > side:
            raise ConfigurationError(
                f"stamp width {width} exceeds source pattern size {side}"
            )
        size = StampSize.for_width(width)
        corner = side // 2 - width // 2   # e.g. side=25, width=7 -> 9
        values = np.zeros((size, size), dtype=np.float32)
        values[:width, :width] = arr[corner:corner + width, corner:corner + width]
        return cls(size, offset=width // 2, values=values)

    def inverted(self) -> 'Stamp':
        """Copy with every value v replaced by 1 - v."""
        stamp = Stamp(self.size, self.offset, 1.0 - self.values, self.crown_radius)
        stamp.reader_key = self.reader_key
        stamp.distances = self.distances
        return stamp

    # ── binary encoding ───────────────────────────────────────────────

    def save(self, stream: BinaryIO, byteorder: str = '>') -> None:
        """Write offset and values in the raw stamp encoding."""
        stream.write(np.array([self.offset], dtype=f'{byteorder}i4').tobytes())
        stream.write(self.values.astype(f'{byteorder}f4').tobytes(order='C'))

    def to_bytes(self, byteorder: str = '>') -> bytes:
        return (np.array([self.offset], dtype=f'{byteorder}i4').tobytes()
                + self.values.astype(f'{byteorder}f4').tobytes(order='C'))

    @classmethod
    def load(cls, stream: BinaryIO, size: int, byteorder: str = '>',
             crown_radius: float = 0.0) -> 'Stamp':
        """Read one stamp of internal size ``size`` from ``stream``.

        Raises:
            FormatError: truncated stream or an offset that cannot fit.
        """
        header = stream.read(4)
        if len(header) < 4:
            raise FormatError(f"stamp stream truncated: expected 4-byte offset, "
                              f"got {len(header)} bytes")
        offset = int(np.frombuffer(header, dtype=f'{byteorder}i4')[0])
        n_bytes = int(size) * int(size) * 4
        payload = stream.read(n_bytes)
        if len(payload) < n_bytes:
            raise FormatError(
                f"stamp stream truncated: expected {n_bytes} value bytes for a "
                f"{size}x{size} stamp, got {len(payload)}"
            )
        if offset < 0 or 2 * offset + 1 > size:
            raise FormatError(f"stamp offset {offset} invalid for size {size}")
        values = np.frombuffer(payload, dtype=f'{byteorder}f4').reshape(size, size)
        try:
            return cls(size, offset=offset, values=values, crown_radius=crown_radius)
        except ConfigurationError as exc:
            raise FormatError(str(exc)) from exc

    def __repr__(self) -> str:
        return (f"Stamp(size={int(self.size)}, offset={self.offset}, "
                f"crown_radius={self.crown_radius:.2f})")


# ═══════════════════════════════════════════════════════════════════════
# STAMP LIBRARY
# ═══════════════════════════════════════════════════════════════════════

def radius_class(crown_radius: float) -> int:
    """Crown-radius class used to pair writer stamps with readers."""
    return int(crown_radius / READER_RADIUS_STEP)


class StampLibrary:
    """Arena of writer stamps keyed by (species, size class) plus readers.

    Usage:
        library = StampLibrary()
        library.add('piab', 3, stamp, crown_radius=2.1)
        library.add_reader(reader, crown_radius=2.1)
        library.finalize()          # distance table + reader links
        stamp = library.stamp('piab', 3)
        reader = library.reader_of(stamp)
    """

    def __init__(self, cell_size: float = LIGHT_CELL_SIZE, byteorder: str = '>',
                 max_width: int = MAX_STAMP_WIDTH):
        self.cell_size = cell_size
        self.byteorder = byteorder
        self.max_width = max_width
        self._stamps: Dict[Tuple[str, int], Stamp] = {}
        self._classes: Dict[str, List[int]] = {}
        self._readers: Dict[int, Stamp] = {}
        self.distances: Optional[DistanceTable] = None

    @classmethod
    def from_config(cls, section: 'StampSection',
                    cell_size: float = LIGHT_CELL_SIZE) -> 'StampLibrary':
        byteorder = '>' if section.byteorder == 'big' else '<'
        return cls(cell_size, byteorder=byteorder, max_width=section.max_width)

    def load(self, stream: BinaryIO, size: int, crown_radius: float = 0.0) -> Stamp:
        """Read one raw stamp in this library's byte order (not registered)."""
        return Stamp.load(stream, size, self.byteorder, crown_radius)

    def from_grid(self, source: Union[Grid, np.ndarray], width: int) -> Stamp:
        """Stamp.from_grid() capped at this library's maximum width."""
        return Stamp.from_grid(source, width, self.max_width)

    def __len__(self) -> int:
        return len(self._stamps)

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return key in self._stamps

    def __iter__(self) -> Iterator[Stamp]:
        return iter(self._stamps.values())

    @property
    def species(self) -> List[str]:
        return sorted(self._classes)

    @property
    def readers(self) -> Dict[int, Stamp]:
        return dict(self._readers)

    def add(self, species: str, size_class: int, stamp: Stamp,
            crown_radius: Optional[float] = None) -> None:
        """Register a writer stamp. Replaces any stamp under the same key."""
        if size_class < 0:
            raise ConfigurationError(f"size class must be >= 0, got {size_class}")
        if crown_radius is not None:
            stamp.crown_radius = float(crown_radius)
        key = (species, int(size_class))
        if key not in self._stamps:
            self._classes.setdefault(species, []).append(int(size_class))
            self._classes[species].sort()
        self._stamps[key] = stamp

    def add_reader(self, stamp: Stamp, crown_radius: float) -> int:
        """Register a reader stamp; returns its key."""
        stamp.crown_radius = float(crown_radius)
        key = radius_class(crown_radius)
        self._readers[key] = stamp
        return key

    def stamp(self, species: str, size_class: int) -> Stamp:
        """Writer stamp for a species and crown size class.

        Classes without a stamp of their own fall back to the nearest
        smaller class, or to the smallest class when none is smaller.

        Raises:
            KeyError: if the species has no stamps at all.
        """
        key = (species, int(size_class))
        found = self._stamps.get(key)
        if found is not None:
            return found
        classes = self._classes.get(species)
        if not classes:
            raise KeyError(f"no stamps for species '{species}'")
        smaller = [c for c in classes if c < size_class]
        fallback = smaller[-1] if smaller else classes[0]
        return self._stamps[(species, fallback)]

    def reader(self, crown_radius: float) -> Optional[Stamp]:
        """Reader stamp of the crown-radius class of ``crown_radius``, or None."""
        return self._readers.get(radius_class(crown_radius))

    def reader_of(self, stamp: Stamp) -> Optional[Stamp]:
        """The reader attached to ``stamp``, or None."""
        if stamp.reader_key is None:
            return None
        return self._readers.get(stamp.reader_key)

    def attach_readers(self) -> int:
        """Link every writer to the reader of its crown-radius class.

        The writer takes over the reader's crown radius. Returns the
        number of writers that found a reader.
        """
        found = 0
        for stamp in self._stamps.values():
            reader = self.reader(stamp.crown_radius)
            if reader is None:
                stamp.reader_key = None
                continue
            stamp.reader_key = radius_class(stamp.crown_radius)
            stamp.crown_radius = reader.crown_radius
            found += 1
        if found < len(self._stamps):
            logger.warning("attach_readers: found readers for %d of %d stamps",
                           found, len(self._stamps))
        return found

    def finalize(self) -> 'StampLibrary':
        """Build the shared distance table and attach readers.

        Must run before any stamp is asked for distances. Safe to call
        again after adding stamps; the table only ever grows.
        """
        all_stamps = list(self._stamps.values()) + list(self.readers.values())
        if not all_stamps:
            raise ConfigurationError("stamp library is empty")
        max_size = max(int(s.size) for s in all_stamps)
        if self.distances is None or not self.distances.covers(max_size):
            self.distances = DistanceTable(max_size, self.cell_size)
        for stamp in all_stamps:
            stamp.distances = self.distances
        self.attach_readers()
        logger.info("stamp library: %d stamps for %d species, %d readers, "
                    "distance table %dx%d", len(self._stamps), len(self._classes),
                    len(self._readers), self.distances.size, self.distances.size)
        return self
