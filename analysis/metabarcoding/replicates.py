#!/usr/bin/env python3
"""
Replicate-consistency pruning.

Each iteration:
1. embed the surviving sample reactions (CA on sqrt counts)
2. Euclidean distances between reactions
3. split pair distances into within- and between-replicate-group sets
4. threshold = first point where the within-group density falls below the
   between-group density (Gaussian KDE on [0, max distance])
5. in every group with a within distance above the threshold, drop
   reactions greedily by largest distance row sum (pairs go together)
6. flag the dropped reactions nonReplicating and repeat

The loop stops when no crossover exists, when an iteration drops nothing,
when fewer than three reactions remain, or after max_iterations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .dataset import MetabarcodingData, check_consistency
from .embedding import ca_embedding, groups_over, pairwise_distances, partition_distances, within_between

logger = logging.getLogger("edna_filter")

_EPS_SPREAD = 1e-12


@dataclass
class PruningIteration:
    iteration: int
    n_reactions: int
    threshold: Optional[float]
    removed: List[str] = field(default_factory=list)
    distances: Optional[pd.DataFrame] = None


# ------------------ adaptive threshold ------------------

def _kde(values: np.ndarray) -> Optional[stats.gaussian_kde]:
    values = np.asarray(values, float)
    values = values[np.isfinite(values)]
    if values.size < 2 or float(np.ptp(values)) < _EPS_SPREAD:
        return None
    return stats.gaussian_kde(values)


def crossover_threshold(within: Sequence[float], between: Sequence[float], grid_size: int = 512) -> Optional[float]:
    """Smallest distance where the within-group density drops below the between-group one.

    Returns None when either distribution cannot be estimated (fewer than two
    values or no spread) or when the densities never cross that way.
    """
    within = np.asarray(within, float)
    between = np.asarray(between, float)
    kw = _kde(within)
    kb = _kde(between)
    if kw is None or kb is None:
        return None
    top = float(max(within.max(), between.max()))
    grid = np.linspace(0.0, top, int(grid_size))
    below = kw(grid) < kb(grid)
    # must have been at or above before dropping below
    seen_above = np.concatenate([[False], np.logical_or.accumulate(~below)[:-1]])
    idx = np.flatnonzero(below & seen_above)
    if idx.size == 0:
        return None
    return float(grid[idx[0]])


# ------------------ greedy elimination ------------------

def prune_group(dist: np.ndarray, members: Tuple[int, ...], threshold: float) -> FrozenSet[int]:
    """Indices to drop so no pair among `members` is farther apart than threshold.

    `dist` is never modified; each call only narrows the index tuple.
    """
    members = tuple(members)
    if len(members) < 2:
        return frozenset()
    sub = dist[np.ix_(members, members)]
    if not (sub > threshold).any():
        return frozenset()
    if len(members) == 2:
        # one of two cannot be told apart from the other
        return frozenset(members)
    worst = members[int(np.argmax(sub.sum(axis=1)))]
    rest = tuple(m for m in members if m != worst)
    return frozenset([worst]) | prune_group(dist, rest, threshold)


def offenders(dist: pd.DataFrame, groups: pd.Series, threshold: float, candidates: Sequence[str]) -> List[str]:
    ids = list(dist.index)
    pos = {r: i for i, r in enumerate(ids)}
    arr = dist.to_numpy()
    g = groups.reindex(ids)
    out: List[str] = []
    for key in candidates:
        members = tuple(pos[r] for r in g.index[g == key])
        out.extend(ids[i] for i in sorted(prune_group(arr, members, threshold)))
    return out


# ------------------ fixed-point loop ------------------

def _active(samples: pd.DataFrame) -> pd.Index:
    mask = (samples["type"] == "sample") & ~samples["nonReplicating"].astype(bool) & ~samples["empty_PCR"].astype(bool)
    return samples.index[mask.to_numpy(dtype=bool)]


def prune_replicates(
    data: MetabarcodingData,
    embed: Callable[[pd.DataFrame], pd.DataFrame] = ca_embedding,
    max_iterations: int = 50,
    grid_size: int = 512,
) -> Tuple[MetabarcodingData, List[PruningIteration]]:
    check_consistency(data, "prune_replicates")
    samples = data.samples.copy()
    samples["nonReplicating"] = samples["nonReplicating"].astype(bool)
    if "pruned_iteration" not in samples.columns:
        samples["pruned_iteration"] = pd.array([pd.NA] * len(samples), dtype="Int64")
    history: List[PruningIteration] = []

    for it in range(1, int(max_iterations) + 1):
        active = _active(samples)
        if len(active) < 3:
            logger.info("Pruning stops: %d reactions left", len(active))
            break
        coords = embed(data.counts.loc[active])
        dist = pairwise_distances(coords)
        long = partition_distances(dist, samples["replicate_group"])
        long.insert(0, "iteration", it)
        within, between = within_between(long)
        threshold = crossover_threshold(within, between, grid_size=grid_size)
        rec = PruningIteration(iteration=it, n_reactions=len(dist), threshold=threshold, distances=long)
        history.append(rec)
        if threshold is None:
            logger.info("Iteration %d: no within/between density crossover; pruning done", it)
            break
        bad = offenders(dist, samples["replicate_group"], threshold, groups_over(long, threshold))
        rec.removed = bad
        logger.info("Iteration %d: threshold %.4f over %d reactions, %d flagged nonReplicating",
                    it, threshold, len(dist), len(bad))
        if not bad:
            break
        samples.loc[bad, "nonReplicating"] = True
        samples.loc[bad, "pruned_iteration"] = it
    else:
        logger.warning("Pruning hit max_iterations=%d before converging", max_iterations)

    return data.replace(samples=samples), history


def thresholds_table(history: List[PruningIteration]) -> pd.DataFrame:
    return pd.DataFrame([{
        "iteration": h.iteration,
        "n_reactions": h.n_reactions,
        "threshold": h.threshold if h.threshold is not None else np.nan,
        "n_removed": len(h.removed),
        "removed": ",".join(h.removed),
    } for h in history], columns=["iteration", "n_reactions", "threshold", "n_removed", "removed"])


def distances_table(history: List[PruningIteration]) -> pd.DataFrame:
    frames = [h.distances for h in history if h.distances is not None and not h.distances.empty]
    if not frames:
        return pd.DataFrame(columns=["iteration", "reaction1", "reaction2", "group1", "group2", "distance", "within"])
    return pd.concat(frames, ignore_index=True)
