#!/usr/bin/env python3
"""Control-driven contamination labels and the combined contaminant/identity removal.

A MOTU is labelled by where its largest count sits:
- extneg: an extraction control holds the maximum (and it is > 0)
- pcrneg: a PCR control holds it
- none: a real sample holds it, or the MOTU is absent everywhere
Ties go to the first listed category.
"""
from __future__ import annotations

import logging
from typing import Dict

import numpy as np
import pandas as pd

from .dataset import MetabarcodingData, check_consistency
from .motu_annotation import supported_by

logger = logging.getLogger("edna_filter")

BIAS_ORDER = ("extneg", "pcrneg")


def max_by_type(counts: pd.DataFrame, types: pd.Series) -> Dict[str, pd.Series]:
    """Per-MOTU maximum within each reaction type; an empty group gives -inf."""
    out = {}
    for t in ("extneg", "pcrneg", "sample"):
        mask = (types == t).fillna(False).to_numpy(dtype=bool)
        if mask.any():
            out[t] = counts.loc[mask].max(axis=0).astype(float)
        else:
            out[t] = pd.Series(-np.inf, index=counts.columns)
    return out


def classify_contamination(data: MetabarcodingData) -> MetabarcodingData:
    check_consistency(data, "classify_contamination")
    types = data.samples["type"]
    n_undefined = int(types.isna().sum())
    if n_undefined:
        logger.warning("%d reactions without a type are ignored for contamination labels", n_undefined)
    for t in BIAS_ORDER:
        if not (types == t).any():
            logger.warning("No %s reactions; that category is excluded from contamination labels", t)

    maxima = max_by_type(data.counts, types)
    overall = pd.concat(maxima, axis=1).max(axis=1)
    bias = pd.Series("none", index=data.counts.columns, name="bias")
    assigned = pd.Series(False, index=data.counts.columns)
    for t in BIAS_ORDER:
        hit = (maxima[t] == overall) & (maxima[t] > 0) & ~assigned
        bias[hit] = t
        assigned |= hit

    motus = data.motus.copy()
    motus["bias"] = bias
    logger.info("Contamination labels: %s", motus["bias"].value_counts().to_dict())
    return data.replace(motus=motus)


def removal_reason(motus: pd.DataFrame, identity_threshold: float = 0.95) -> pd.Series:
    sup = supported_by(motus, identity_threshold)
    low_identity = ~(sup["best_identity_embl"] | sup["best_identity_mmhills"])
    biased = motus["bias"].fillna("none") != "none"
    reason = np.select([biased, low_identity], ["bias", "low_identity"], default="")
    return pd.Series(reason, index=motus.index, name="removed_reason")


def remove_contaminants(data: MetabarcodingData, identity_threshold: float = 0.95) -> MetabarcodingData:
    """Zero every count of a contaminant MOTU or one unsupported by both databases."""
    check_consistency(data, "remove_contaminants")
    if "bias" not in data.motus.columns:
        raise ValueError("MOTU table has no 'bias' column; run classify_contamination first")
    motus = data.motus.copy()
    motus["removed_reason"] = removal_reason(motus, identity_threshold)
    drop = motus.index[motus["removed_reason"] != ""]
    counts = data.counts.copy()
    counts.loc[:, drop] = 0
    logger.info("Zeroed %d MOTUs (%s)", len(drop), motus.loc[drop, "removed_reason"].value_counts().to_dict())
    return data.replace(counts=counts, motus=motus)
