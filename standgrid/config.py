"""Configuration system for standgrid.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → site override → ad-hoc overrides (dict)

Sections:
  world      landscape extent, grid resolutions, buffer, torus mode
  stamps     stamp byte order and maximum stamp width
  threading  scheduler parallelism and chunking
"""

from __future__ import annotations

import dataclasses
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from standgrid.errors import ConfigurationError
from standgrid.types import (
    ALIAS_FACTORS,
    LIGHT_CELL_SIZE,
    LIGHT_PER_HEIGHT,
    MAX_STAMP_WIDTH,
    RESOURCE_UNIT_SIZE,
    Rect,
)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class WorldSection:
    """Landscape geometry."""
    extent: List[float] = field(default_factory=lambda: [0.0, 0.0, 200.0, 200.0])  # x, y, width, height (m)
    light_cell_size: float = LIGHT_CELL_SIZE        # m
    height_factor: int = LIGHT_PER_HEIGHT           # height cell = height_factor * light cell
    resource_unit_size: float = RESOURCE_UNIT_SIZE  # m
    buffer: float = 0.0              # m of outside forest around the project area
    torus: bool = False              # periodic boundaries (single-unit stands)

    @property
    def rect(self) -> Rect:
        x, y, w, h = self.extent
        return Rect(float(x), float(y), float(w), float(h))

    @property
    def height_cell_size(self) -> float:
        return self.light_cell_size * self.height_factor


@dataclass
class StampSection:
    """Stamp library input."""
    byteorder: str = 'big'           # 'big' | 'little'
    max_width: int = MAX_STAMP_WIDTH


@dataclass
class ThreadingSection:
    """PartitionedScheduler settings."""
    parallel: bool = True
    max_workers: Optional[int] = None
    threshold: int = 3               # at most this many items run sequentially
    min_chunk: int = 10000           # run_over_range
    max_chunks: int = 10
    timing: bool = False             # collect PhaseTimer statistics


@dataclass
class SimulationConfig:
    world: WorldSection = field(default_factory=WorldSection)
    stamps: StampSection = field(default_factory=StampSection)
    threading: ThreadingSection = field(default_factory=ThreadingSection)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# ═══════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base (in place) and return base.

    Nested dicts merge key by key; anything else in ``override`` replaces
    the value in ``base``.
    """
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Build a section dataclass from a dict; unknown keys are dropped."""
    known = {f.name for f in dataclasses.fields(section_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        warnings.warn(
            f"ignoring unknown {section_cls.__name__} keys: {unknown}",
            UserWarning,
            stacklevel=3,
        )
    return section_cls(**{k: v for k, v in data.items() if k in known})


_SECTIONS = {
    'world': WorldSection,
    'stamps': StampSection,
    'threading': ThreadingSection,
}


def _yaml_to_config(data: Dict) -> SimulationConfig:
    sections = {}
    for key, cls in _SECTIONS.items():
        value = data.get(key)
        sections[key] = _dict_to_section(cls, value) if isinstance(value, dict) else cls()
    return SimulationConfig(**sections)


def _read_yaml(path: Path) -> Dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def validate_config(config: SimulationConfig) -> None:
    """Check configuration constraints. Raises ConfigurationError on failure.

    Checks:
      - extent has four numbers and positive size
      - light cell size positive, height factor an alias factor
      - resource units and buffer tile evenly into height cells
      - torus stands are a single resource unit without buffer
      - threading and stamp settings in range
    """
    w = config.world
    if len(w.extent) != 4:
        raise ConfigurationError(
            f"world.extent must be [x, y, width, height], got {w.extent}"
        )
    if w.extent[2] <= 0 or w.extent[3] <= 0:
        raise ConfigurationError(f"world.extent must have positive size, got {w.extent}")
    if w.light_cell_size <= 0:
        raise ConfigurationError(
            f"world.light_cell_size must be positive, got {w.light_cell_size}"
        )
    if w.height_factor not in ALIAS_FACTORS:
        raise ConfigurationError(
            f"world.height_factor must be one of {ALIAS_FACTORS}, got {w.height_factor}"
        )
    if w.resource_unit_size <= 0:
        raise ConfigurationError(
            f"world.resource_unit_size must be positive, got {w.resource_unit_size}"
        )
    if not _is_multiple(w.resource_unit_size, w.height_cell_size):
        raise ConfigurationError(
            f"world.resource_unit_size ({w.resource_unit_size}) must be a multiple "
            f"of the height cell size ({w.height_cell_size})"
        )
    if not (_is_multiple(w.extent[2], w.resource_unit_size)
            and _is_multiple(w.extent[3], w.resource_unit_size)):
        raise ConfigurationError(
            f"world.extent size ({w.extent[2]} x {w.extent[3]}) must be a multiple "
            f"of the resource unit size ({w.resource_unit_size})"
        )
    if w.buffer < 0 or not _is_multiple(w.buffer, w.height_cell_size):
        raise ConfigurationError(
            f"world.buffer ({w.buffer}) must be a non-negative multiple of "
            f"the height cell size ({w.height_cell_size})"
        )
    if w.torus:
        if not (math.isclose(w.extent[2], w.resource_unit_size)
                and math.isclose(w.extent[3], w.resource_unit_size)):
            raise ConfigurationError(
                "world.torus requires an extent of exactly one resource unit"
            )
        if w.buffer != 0:
            raise ConfigurationError("world.torus cannot be combined with a buffer")

    s = config.stamps
    if s.byteorder not in ('big', 'little'):
        raise ConfigurationError(
            f"stamps.byteorder must be 'big' or 'little', got '{s.byteorder}'"
        )
    if not (1 <= s.max_width <= MAX_STAMP_WIDTH) or s.max_width % 2 == 0:
        raise ConfigurationError(
            f"stamps.max_width must be odd and in [1, {MAX_STAMP_WIDTH}], "
            f"got {s.max_width}"
        )

    t = config.threading
    if t.max_workers is not None and t.max_workers < 1:
        raise ConfigurationError(f"threading.max_workers must be >= 1, got {t.max_workers}")
    if t.threshold < 0:
        raise ConfigurationError(f"threading.threshold must be >= 0, got {t.threshold}")
    if t.min_chunk < 1 or t.max_chunks < 1:
        raise ConfigurationError(
            f"threading.min_chunk and max_chunks must be >= 1, "
            f"got {t.min_chunk}, {t.max_chunks}"
        )


def _is_multiple(value: float, step: float) -> bool:
    ratio = value / step
    return math.isclose(ratio, round(ratio), abs_tol=1e-9)


def load_config(
    base_path: Union[str, Path],
    override_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → override file → overrides dict.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")
    config_dict = _read_yaml(base_path)

    if override_path is not None:
        override_path = Path(override_path)
        if override_path.exists():
            deep_merge(config_dict, _read_yaml(override_path))
        else:
            warnings.warn(
                f"override config '{override_path}' not found; using base only",
                UserWarning,
                stacklevel=2,
            )

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a validated SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
