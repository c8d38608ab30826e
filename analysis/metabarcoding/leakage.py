#!/usr/bin/env python3
"""Tag-switching (leakage) correction.

Each MOTU loses a flat ceil(total_reads * rate / n_reactions) reads in every
reaction, clamped at zero. The rate is a configuration value; the sweep over
candidate rates shows what each one leaves in the PCR-negative controls so it
can be chosen by inspection.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .dataset import MetabarcodingData, check_consistency

logger = logging.getLogger("edna_filter")

DEFAULT_LEAK_RATES = (0.0, 0.0001, 0.0005, 0.001, 0.002, 0.005, 0.01, 0.02, 0.03)

SWEEP_COLUMNS = ["rate", "n_controls", "control_reads", "max_control_reads", "mean_control_reads",
                 "control_richness", "mean_motus_per_control", "controls_nonzero", "sample_reads_removed"]


def leak_deduction(counts: pd.DataFrame, rate: float) -> pd.Series:
    if rate < 0:
        raise ValueError(f"Leak rate must be >= 0, got {rate}")
    n = counts.shape[0]
    if n == 0:
        return pd.Series(0.0, index=counts.columns)
    totals = counts.sum(axis=0).astype(float)
    return np.ceil(totals * float(rate) / n)


def _subtract(counts: pd.DataFrame, deduction: pd.Series) -> pd.DataFrame:
    out = counts.sub(deduction, axis=1).clip(lower=0)
    if all(pd.api.types.is_integer_dtype(t) for t in counts.dtypes):
        out = out.round().astype(np.int64)
    return out


def sweep_leak_rates(data: MetabarcodingData, rates: Iterable[float] = DEFAULT_LEAK_RATES) -> pd.DataFrame:
    """Simulate each candidate rate on the PCR-negative controls."""
    check_consistency(data, "sweep_leak_rates")
    counts = data.counts
    is_ctrl = (data.samples["type"] == "pcrneg").to_numpy(dtype=bool)
    if not is_ctrl.any():
        logger.warning("No PCR-negative controls: the leak-rate sweep has nothing to calibrate against")
    rows: List[dict] = []
    for rate in sorted(set(float(r) for r in rates)):
        corrected = _subtract(counts, leak_deduction(counts, rate))
        ctrl = corrected.loc[is_ctrl]
        per_ctrl = ctrl.sum(axis=1)
        richness = (ctrl > 0).sum(axis=1)
        rows.append({
            "rate": rate,
            "n_controls": int(ctrl.shape[0]),
            "control_reads": float(per_ctrl.sum()),
            "max_control_reads": float(per_ctrl.max()) if len(per_ctrl) else np.nan,
            "mean_control_reads": float(per_ctrl.mean()) if len(per_ctrl) else np.nan,
            "control_richness": int((ctrl > 0).any(axis=0).sum()),
            "mean_motus_per_control": float(richness.mean()) if len(richness) else np.nan,
            "controls_nonzero": int((per_ctrl > 0).sum()),
            "sample_reads_removed": float((counts.loc[~is_ctrl] - corrected.loc[~is_ctrl]).values.sum()),
        })
    return pd.DataFrame(rows, columns=SWEEP_COLUMNS)


def suggest_leak_rate(sweep: pd.DataFrame, max_control_reads: float = 0.0) -> Optional[float]:
    """Smallest swept rate that leaves every PCR-negative control at or below max_control_reads.

    None when there is no control to judge by or no rate is clean enough.
    """
    judged = sweep[(sweep["n_controls"] > 0) & sweep["max_control_reads"].notna()]
    ok = judged[judged["max_control_reads"] <= max_control_reads]
    if ok.empty:
        return None
    return float(ok["rate"].min())


def correct_leakage(data: MetabarcodingData, rate: float) -> MetabarcodingData:
    check_consistency(data, "correct_leakage")
    deduction = leak_deduction(data.counts, rate)
    counts = _subtract(data.counts, deduction)
    removed = float((data.counts - counts).values.sum())
    logger.info("Leakage correction at rate %g removed %.0f reads (max per-cell deduction %.0f)",
                rate, removed, float(deduction.max()) if len(deduction) else 0.0)
    motus = data.motus.copy()
    motus["leak_deduction"] = deduction
    return data.replace(counts=counts, motus=motus)
