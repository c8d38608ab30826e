#!/usr/bin/env python3
"""Rare-taxon suppression on the merged matrix, plus the expert deny-list."""
from __future__ import annotations

import logging
from typing import Iterable

import pandas as pd

from .dataset import MetabarcodingData, check_consistency

logger = logging.getLogger("edna_filter")


def relative_abundance(counts: pd.DataFrame) -> pd.DataFrame:
    totals = counts.sum(axis=1)
    return counts.div(totals.where(totals > 0), axis=0).fillna(0.0)


def filter_rare(data: MetabarcodingData, min_relative_abundance: float = 0.01,
                deny_list: Iterable[str] = ()) -> MetabarcodingData:
    check_consistency(data, "filter_rare")
    counts = data.counts.astype(float)
    rare = relative_abundance(counts) < min_relative_abundance
    n_rare = int((rare & (counts > 0)).values.sum())
    counts = counts.mask(rare, 0.0)

    deny_list = [str(m) for m in deny_list]
    deny = [m for m in deny_list if m in counts.columns]
    missing = sorted(set(deny_list) - set(deny))
    if missing:
        logger.info("%d deny-listed MOTUs not present: %s", len(missing), ", ".join(missing[:10]))
    counts.loc[:, deny] = 0.0

    motus = data.motus.copy()
    motus["denied"] = motus.index.isin(deny)
    logger.info("Rarity filter zeroed %d cells below %g; %d deny-listed MOTUs zeroed",
                n_rare, min_relative_abundance, len(deny))

    rows = counts.index[counts.sum(axis=1) > 0]
    cols = counts.columns[counts.sum(axis=0) > 0]
    dropped_rows = counts.shape[0] - len(rows)
    if dropped_rows:
        logger.info("%d samples left empty after the rarity filter", dropped_rows)
    out = data.replace(counts=counts, motus=motus)
    return out.subset(rows=rows, cols=cols)
