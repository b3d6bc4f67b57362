"""Tests for reduction configuration loading."""

import pytest
from pydantic import ValidationError

from gsmp.config import CONFIG, ReductionConfig


class TestReductionConfig:

    def test_defaults_match_config_dict(self):
        assert ReductionConfig().to_dict() == CONFIG

    def test_from_dict_overrides(self):
        config = ReductionConfig.from_dict({'epsilon': 1e-8, 'n_workers': 2})
        assert config.epsilon == 1e-8
        assert config.n_workers == 2
        assert config.gauss_nodes == CONFIG['gauss_nodes']

    def test_unknown_key(self):
        with pytest.raises(ValidationError, match="epsilonn"):
            ReductionConfig.from_dict({'epsilonn': 1e-8})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "reduction.yaml"
        path.write_text("epsilon: 1.0e-7\nevent_composition: race\ncache_max_entries: 64\n")
        config = ReductionConfig.from_yaml(path)
        assert config.epsilon == 1e-7
        assert config.event_composition == 'race'
        assert config.cache_max_entries == 64

    def test_yaml_exponent_without_decimal_point(self, tmp_path):
        # PyYAML loads 1e-8 as the string '1e-8'
        path = tmp_path / "reduction.yaml"
        path.write_text("epsilon: 1e-8\n")
        config = ReductionConfig.from_yaml(path)
        assert isinstance(config.epsilon, float)
        assert config.epsilon == 1e-8

    def test_empty_yaml_keeps_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ReductionConfig.from_yaml(path) == ReductionConfig()

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            ReductionConfig.from_yaml(path)

    @pytest.mark.parametrize("overrides", [
        {'epsilon': 0.0},
        {'epsilon': 1.5},
        {'epsilon': 'tiny'},
        {'n_workers': 0},
        {'cache_max_entries': 0},
        {'synthesis_grid_points': 1},
        {'event_composition': 'rate_normalized'},
        {'taylor_min_degree': 10, 'taylor_max_degree': 5},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ReductionConfig.from_dict(overrides)

    def test_degree_order_message(self):
        with pytest.raises(ValidationError, match="exceeds taylor_max_degree"):
            ReductionConfig(taylor_min_degree=10, taylor_max_degree=5)

    def test_frozen(self):
        config = ReductionConfig()
        with pytest.raises(ValidationError):
            config.epsilon = 0.1
