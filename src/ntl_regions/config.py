"""
Aggregation parameters loaded from configs/params.yml.

The `aggregation` section of params.yml overlays the built-in defaults.
Keyword arguments passed to the pipeline override both.
"""

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ntl_regions.io_utils import read_yaml
from ntl_regions.paths import PARAMS_FILE
from ntl_regions.qa import ConfigurationError

STRATEGIES = ("auto", "bulk", "bounded")

DEFAULT_AGGREGATION_CONFIG: Dict[str, Any] = {
    "id_col": "region_id",
    "value_col": "ntl_sum",
    "all_touched": False,
    "strategy": "auto",
    # Rasters with more cells than this use the bounded path under "auto"
    "bulk_max_cells": 50_000_000,
    "max_regions_per_pass": 50,
    "best_effort": False,
    "cross_check": False,
    "cross_check_rtol": 1e-6,
}


def validate_aggregation_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check types and ranges of aggregation parameters.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    unknown = set(config) - set(DEFAULT_AGGREGATION_CONFIG)
    if unknown:
        raise ConfigurationError(f"Unknown aggregation parameters: {sorted(unknown)}")

    if config["strategy"] not in STRATEGIES:
        raise ConfigurationError(
            f"strategy must be one of {STRATEGIES}, got {config['strategy']!r}"
        )
    if int(config["max_regions_per_pass"]) < 1:
        raise ConfigurationError("max_regions_per_pass must be >= 1")
    if int(config["bulk_max_cells"]) < 1:
        raise ConfigurationError("bulk_max_cells must be >= 1")

    return config


def load_aggregation_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the effective aggregation config.

    Args:
        path: params.yml to read. Defaults to configs/params.yml; a missing
            default file means built-in defaults only.
        overrides: Values taking precedence over the file (None values ignored)

    Returns:
        Validated config dictionary
    """
    config = copy.deepcopy(DEFAULT_AGGREGATION_CONFIG)

    params_path = Path(path) if path is not None else PARAMS_FILE
    if path is not None or params_path.exists():
        params = read_yaml(params_path)
        config.update(params.get("aggregation", {}) or {})

    if overrides:
        config.update({k: v for k, v in overrides.items() if v is not None})

    return validate_aggregation_config(config)


def config_digest(config: Dict[str, Any]) -> str:
    """Short sha256 digest of a config dict (sorted-key JSON)."""
    s = json.dumps(config, sort_keys=True, default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:16]
