#!/usr/bin/env python3
"""Filter parameters and their TOML loader."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

try:
    import tomllib as _toml  # py311+
except ModuleNotFoundError:
    import tomli as _toml  # type: ignore[import-not-found,no-redef]

from .leakage import DEFAULT_LEAK_RATES


@dataclass(frozen=True)
class FilterConfig:
    identity_threshold: float = 0.95
    degraded_identity: float = 0.80
    leak_rates: Tuple[float, ...] = DEFAULT_LEAK_RATES
    leak_rate: float = 0.001
    # advisory: largest control read total a suggested rate may leave
    leak_control_tolerance: float = 0.0
    min_reads: float = 5000
    # samples need at least this many replicates surviving the pruner
    min_replicates: int = 1
    min_relative_abundance: float = 0.01
    deny_list: Tuple[str, ...] = ()
    max_iterations: int = 50
    kde_grid_size: int = 512
    sample_prefix: str = "sample:"

    def __post_init__(self):
        if not 0 <= self.leak_rate <= 1:
            raise ValueError(f"leak_rate must be in [0, 1], got {self.leak_rate}")
        if not 0 <= self.min_relative_abundance <= 1:
            raise ValueError(f"min_relative_abundance must be in [0, 1], got {self.min_relative_abundance}")
        if self.min_replicates < 1:
            raise ValueError(f"min_replicates must be >= 1, got {self.min_replicates}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        d["leak_rates"] = list(self.leak_rates)
        d["deny_list"] = list(self.deny_list)
        return d


FIELDS = {f.name for f in dataclasses.fields(FilterConfig)}
LISTY = {"leak_rates", "deny_list"}


def config_from_mapping(cfg: Dict[str, Any], base: Optional[FilterConfig] = None) -> FilterConfig:
    unknown = sorted(set(cfg) - FIELDS)
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}")
    values = {}
    for k, v in cfg.items():
        if v is None:
            continue
        if k in LISTY:
            if isinstance(v, str):
                v = [p.strip() for p in v.split(",") if p.strip()]
            v = tuple(float(x) for x in v) if k == "leak_rates" else tuple(str(x) for x in v)
        values[k] = v
    return dataclasses.replace(base or FilterConfig(), **values)


def load_config(path: str) -> FilterConfig:
    with open(path, "rb") as f:
        cfg = _toml.load(f)
    # allow the values to sit under a [filter] table
    if "filter" in cfg and isinstance(cfg["filter"], dict):
        cfg = cfg["filter"]
    return config_from_mapping(cfg)
