"""
Tests for aggregation config loading.
"""

import pytest

from ntl_regions.config import (
    DEFAULT_AGGREGATION_CONFIG,
    config_digest,
    load_aggregation_config,
    validate_aggregation_config,
)
from ntl_regions.qa import ConfigurationError


def write_params(tmp_path, text):
    path = tmp_path / "params.yml"
    path.write_text(text)
    return path


class TestLoadConfig:
    """params.yml overlay and keyword overrides."""

    def test_file_overlays_defaults(self, tmp_path):
        path = write_params(tmp_path, "aggregation:\n  strategy: bounded\n  max_regions_per_pass: 10\n")
        cfg = load_aggregation_config(path)

        assert cfg["strategy"] == "bounded"
        assert cfg["max_regions_per_pass"] == 10
        assert cfg["id_col"] == DEFAULT_AGGREGATION_CONFIG["id_col"]

    def test_overrides_win_over_file(self, tmp_path):
        path = write_params(tmp_path, "aggregation:\n  strategy: bounded\n")
        cfg = load_aggregation_config(path, overrides={"strategy": "bulk", "id_col": None})

        assert cfg["strategy"] == "bulk"
        assert cfg["id_col"] == "region_id"

    def test_empty_file_gives_defaults(self, tmp_path):
        cfg = load_aggregation_config(write_params(tmp_path, ""))
        assert cfg == DEFAULT_AGGREGATION_CONFIG

    def test_file_without_aggregation_section(self, tmp_path):
        cfg = load_aggregation_config(write_params(tmp_path, "other:\n  x: 1\n"))
        assert cfg == DEFAULT_AGGREGATION_CONFIG

    def test_defaults_not_mutated(self, tmp_path):
        load_aggregation_config(write_params(tmp_path, "aggregation:\n  best_effort: true\n"))
        assert DEFAULT_AGGREGATION_CONFIG["best_effort"] is False

    def test_explicit_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_aggregation_config(tmp_path / "absent.yml")


class TestValidateConfig:
    """Rejected parameter values."""

    @pytest.mark.parametrize(
        "key,value",
        [
            ("strategy", "parallel"),
            ("max_regions_per_pass", 0),
            ("bulk_max_cells", -1),
        ],
    )
    def test_invalid_values(self, key, value):
        cfg = dict(DEFAULT_AGGREGATION_CONFIG, **{key: value})
        with pytest.raises(ConfigurationError):
            validate_aggregation_config(cfg)

    def test_unknown_key(self):
        cfg = dict(DEFAULT_AGGREGATION_CONFIG, chunk_size=4)
        with pytest.raises(ConfigurationError, match="chunk_size"):
            validate_aggregation_config(cfg)


class TestConfigDigest:
    """Digest identifies the effective config."""

    def test_stable_and_order_independent(self):
        a = {"strategy": "bulk", "id_col": "NUTS_ID"}
        b = {"id_col": "NUTS_ID", "strategy": "bulk"}
        assert config_digest(a) == config_digest(b)
        assert len(config_digest(a)) == 16

    def test_changes_with_values(self):
        assert config_digest({"strategy": "bulk"}) != config_digest({"strategy": "bounded"})
