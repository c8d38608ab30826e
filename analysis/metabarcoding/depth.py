#!/usr/bin/env python3
"""Flag PCR reactions with too few reads. Flagged rows stay in the matrix."""
from __future__ import annotations

import logging

from .dataset import MetabarcodingData, check_consistency

logger = logging.getLogger("edna_filter")


def flag_low_depth(data: MetabarcodingData, min_reads: float = 5000) -> MetabarcodingData:
    check_consistency(data, "flag_low_depth")
    totals = data.counts.sum(axis=1)
    samples = data.samples.copy()
    samples["total_reads"] = totals
    # a reaction with no reads cannot be embedded, whatever the threshold
    samples["empty_PCR"] = (totals < min_reads) | (totals == 0)
    logger.info("%d of %d reactions below %s reads", int(samples["empty_PCR"].sum()), len(samples), min_reads)
    return data.replace(samples=samples)
