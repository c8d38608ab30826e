#!/usr/bin/env python3
"""Reaction embedding and the distances used to compare PCR replicates.

Counts are square-root transformed and placed by correspondence analysis
(scaling 1, so Euclidean distances between rows approximate chi-square
distances between their profiles). Only the first axes are kept.
"""
from __future__ import annotations

import logging
from typing import List, Tuple

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform
from skbio.stats.ordination import ca

logger = logging.getLogger("edna_filter")


def ca_embedding(counts: pd.DataFrame, n_axes: int = 2) -> pd.DataFrame:
    """Row coordinates on the first `n_axes` CA axes of sqrt(counts).

    All-zero rows cannot be placed and are left out of the result.
    """
    x = np.sqrt(counts.astype(float).clip(lower=0))
    x = x.loc[x.sum(axis=1) > 0, x.sum(axis=0) > 0]
    dropped = counts.shape[0] - x.shape[0]
    if dropped:
        logger.warning("%d reactions without reads left out of the embedding", dropped)
    if x.shape[0] < 2 or x.shape[1] < 2:
        # a single row or column has no CA axes
        return pd.DataFrame(np.zeros((x.shape[0], 1)), index=x.index, columns=["CA1"])
    res = ca(x, scaling=1)
    coords = res.samples.iloc[:, :n_axes].copy()
    coords.index = x.index
    return coords


def pairwise_distances(coords: pd.DataFrame) -> pd.DataFrame:
    if coords.shape[0] < 2:
        return pd.DataFrame(np.zeros((coords.shape[0], coords.shape[0])), index=coords.index, columns=coords.index)
    d = squareform(pdist(coords.to_numpy(dtype=float), metric="euclidean"))
    return pd.DataFrame(d, index=coords.index, columns=coords.index)


def partition_distances(dist: pd.DataFrame, groups: pd.Series) -> pd.DataFrame:
    """Upper triangle in long form, with a flag for same-replicate-group pairs."""
    ids = list(dist.index)
    g = groups.reindex(ids).to_numpy()
    iu, ju = np.triu_indices(len(ids), k=1)
    vals = dist.to_numpy()[iu, ju]
    return pd.DataFrame({
        "reaction1": [ids[i] for i in iu],
        "reaction2": [ids[j] for j in ju],
        "group1": g[iu],
        "group2": g[ju],
        "distance": vals,
        "within": g[iu] == g[ju],
    })


def within_between(long: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
    within = long.loc[long["within"], "distance"].to_numpy(dtype=float)
    between = long.loc[~long["within"], "distance"].to_numpy(dtype=float)
    return within, between


def groups_over(long: pd.DataFrame, threshold: float) -> List[str]:
    """Replicate groups with at least one within-group distance above threshold."""
    hit = long[long["within"] & (long["distance"] > threshold)]
    return sorted(set(hit["group1"].astype(str)))
