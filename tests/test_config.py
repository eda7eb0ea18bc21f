"""Tests for standgrid.config: configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from standgrid.config import (
    SimulationConfig,
    StampSection,
    ThreadingSection,
    WorldSection,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)
from standgrid.errors import ConfigurationError
from standgrid.types import HEIGHT_CELL_SIZE, LIGHT_CELL_SIZE, RESOURCE_UNIT_SIZE, Rect

DEFAULT_YAML = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({'a': 1, 'b': 2}, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'world': {'torus': False, 'buffer': 0.0}, 'x': 1}
        result = deep_merge(base, {'world': {'buffer': 20.0}})
        assert result == {'world': {'torus': False, 'buffer': 20.0}, 'x': 1}

    def test_new_key(self):
        assert deep_merge({'a': 1}, {'b': {'c': 2}}) == {'a': 1, 'b': {'c': 2}}

    def test_scalar_replaces_dict(self):
        assert deep_merge({'a': {'nested': 1}}, {'a': 'flat'}) == {'a': 'flat'}

    def test_modifies_base_in_place(self):
        base = {'a': {'b': 1}}
        deep_merge(base, {'a': {'b': 2}})
        assert base['a']['b'] == 2


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        assert isinstance(default_config(), SimulationConfig)

    def test_default_values(self):
        config = default_config()
        assert config.world.light_cell_size == 2.0
        assert config.world.height_cell_size == 10.0
        assert config.world.rect == Rect(0.0, 0.0, 200.0, 200.0)
        assert config.threading.threshold == 3
        assert config.threading.parallel is True
        assert config.stamps.byteorder == 'big'

    def test_world_defaults_follow_grid_constants(self):
        world = WorldSection()
        assert world.light_cell_size == LIGHT_CELL_SIZE
        assert world.height_cell_size == HEIGHT_CELL_SIZE
        assert world.resource_unit_size == RESOURCE_UNIT_SIZE

    def test_to_dict_round_trip(self):
        config = default_config()
        d = config.to_dict()
        assert d['world']['height_factor'] == 5
        assert d['threading']['max_chunks'] == 10


# ── load_config tests ────────────────────────────────────────────────

class TestLoadConfig:
    def test_repository_default_matches_code_default(self):
        loaded = load_config(DEFAULT_YAML)
        assert loaded == default_config()

    def test_override_file(self, tmp_path):
        override = tmp_path / "site.yaml"
        override.write_text(yaml.safe_dump({'world': {'extent': [0, 0, 300, 100]}}))
        config = load_config(DEFAULT_YAML, override)
        assert config.world.extent == [0, 0, 300, 100]
        assert config.world.light_cell_size == 2.0

    def test_overrides_dict_applied_last(self, tmp_path):
        override = tmp_path / "site.yaml"
        override.write_text(yaml.safe_dump({'threading': {'threshold': 8}}))
        config = load_config(DEFAULT_YAML, override, {'threading': {'threshold': 1}})
        assert config.threading.threshold == 1

    def test_missing_base(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_override_warns(self, tmp_path):
        with pytest.warns(UserWarning, match="not found"):
            config = load_config(DEFAULT_YAML, tmp_path / "missing.yaml")
        assert config == default_config()

    def test_unknown_keys_warn(self, tmp_path):
        path = tmp_path / "base.yaml"
        path.write_text(yaml.safe_dump({'world': {'torus': False, 'colour': 'green'}}))
        with pytest.warns(UserWarning, match="colour"):
            load_config(path)

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == default_config()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_config(path)


# ── validate_config tests ────────────────────────────────────────────

class TestValidation:
    def _config(self, **world):
        return SimulationConfig(world=WorldSection(**world))

    def test_bad_extent_length(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(extent=[0, 0, 100]))

    def test_non_positive_extent(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(extent=[0, 0, 0, 100]))

    def test_extent_not_whole_units(self):
        with pytest.raises(ConfigurationError, match="resource unit"):
            validate_config(self._config(extent=[0, 0, 150, 100]))

    def test_height_factor_must_alias(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(height_factor=3))

    def test_non_positive_cell_size(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(light_cell_size=0.0))

    def test_buffer_must_be_whole_height_cells(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(buffer=15.0))
        validate_config(self._config(buffer=20.0))

    def test_torus_single_unit_only(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(torus=True))
        validate_config(self._config(torus=True, extent=[0, 0, 100, 100]))

    def test_torus_without_buffer(self):
        with pytest.raises(ConfigurationError):
            validate_config(self._config(torus=True, extent=[0, 0, 100, 100], buffer=10.0))

    def test_byteorder(self):
        config = SimulationConfig(stamps=StampSection(byteorder='middle'))
        with pytest.raises(ConfigurationError):
            validate_config(config)

    def test_max_width_odd(self):
        with pytest.raises(ConfigurationError):
            validate_config(SimulationConfig(stamps=StampSection(max_width=32)))

    def test_threading_limits(self):
        with pytest.raises(ConfigurationError):
            validate_config(SimulationConfig(threading=ThreadingSection(max_workers=0)))
        with pytest.raises(ConfigurationError):
            validate_config(SimulationConfig(threading=ThreadingSection(min_chunk=0)))

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            validate_config(self._config(height_factor=4))
