#!/usr/bin/env python3
"""Collapse surviving PCR replicates into one profile per biological sample."""
from __future__ import annotations

import logging

import pandas as pd

from .dataset import InconsistentSampleError, MetabarcodingData, check_consistency
from .sample_names import DECODED_FIELDS

logger = logging.getLogger("edna_filter")


def surviving_reactions(samples: pd.DataFrame) -> pd.Index:
    mask = ((samples["type"] == "sample")
            & ~samples["empty_PCR"].astype(bool)
            & ~samples["nonReplicating"].astype(bool))
    return samples.index[mask.to_numpy(dtype=bool)]


def _blank(v) -> bool:
    return v is None or (isinstance(v, float) and v != v) or v is pd.NA or str(v).strip() == ""


def merge_drop_reasons(samples: pd.DataFrame, min_replicates: int = 1) -> pd.Series:
    """Biological samples the merge leaves out, keyed by sample, with the reason."""
    s = samples.loc[surviving_reactions(samples)]
    key = s["replicate_group"]
    n_rep = key.value_counts()
    animal = s.groupby(key)["animal"].first() if "animal" in s.columns else pd.Series(dtype=object)
    reasons = {}
    for sample in sorted(n_rep.index):
        if n_rep[sample] < int(min_replicates):
            reasons[sample] = "too_few_replicates"
        elif sample in animal.index and _blank(animal[sample]):
            reasons[sample] = "no_animal"
    return pd.Series(reasons, dtype=object)


def merge_replicates(data: MetabarcodingData, min_replicates: int = 1) -> MetabarcodingData:
    check_consistency(data, "merge_replicates")
    keep = surviving_reactions(data.samples)
    samples = data.samples.loc[keep]
    counts = data.counts.loc[keep]
    key = samples["replicate_group"]

    fields = [f for f in DECODED_FIELDS if f in samples.columns]
    n_distinct = samples.groupby(key)[fields].nunique(dropna=False)
    bad = n_distinct[(n_distinct > 1).any(axis=1)]
    if not bad.empty:
        cols = [c for c in fields if (bad[c] > 1).any()]
        raise InconsistentSampleError(
            f"Replicates disagree on {cols} for samples {list(bad.index[:5])}")

    merged_counts = counts.groupby(key, sort=True).mean()
    meta = samples.groupby(key, sort=True)[fields].first()
    meta["n_replicates"] = key.value_counts().reindex(meta.index).astype(int)
    names = pd.Series(samples.index.astype(str), index=samples.index)
    meta["reactions"] = names.groupby(key, sort=True).agg(lambda s: ",".join(sorted(s)))
    meta.index.name = "sample"
    merged_counts.index.name = "sample"

    dropped = merge_drop_reasons(data.samples, min_replicates)
    for reason, group in dropped.groupby(dropped):
        logger.info("Dropping %d samples (%s): %s", len(group), reason, ", ".join(map(str, group.index[:10])))
    rows = [s for s in meta.index if s not in dropped.index]

    out = MetabarcodingData(counts=merged_counts.loc[rows], samples=meta.loc[rows], motus=data.motus.copy())
    out = out.drop_empty_motus()
    logger.info("Merged %d reactions into %d samples over %d MOTUs",
                len(keep), out.counts.shape[0], out.counts.shape[1])
    return out


def record_merge_status(reactions: MetabarcodingData, final: MetabarcodingData,
                        min_replicates: int = 1) -> MetabarcodingData:
    """Add merge_status to the reaction table: merged, or why its sample is missing from `final`.

    Controls and flagged reactions never enter the merge and keep a missing status.
    """
    samples = reactions.samples.copy()
    dropped = merge_drop_reasons(samples, min_replicates)
    keep = surviving_reactions(samples)

    def status(sample: str) -> str:
        if sample in dropped.index:
            return dropped[sample]
        return "merged" if sample in final.samples.index else "empty_after_rarity"

    samples["merge_status"] = None
    samples.loc[keep, "merge_status"] = [status(k) for k in samples.loc[keep, "replicate_group"]]
    return reactions.replace(samples=samples)
