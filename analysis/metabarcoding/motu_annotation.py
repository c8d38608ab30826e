#!/usr/bin/env python3
"""Derived MOTU labels from the reference-database identities."""
from __future__ import annotations

import numpy as np
import pandas as pd

from .dataset import MetabarcodingData, check_consistency

IDENTITY_COLS = ("best_identity_embl", "best_identity_mmhills")


def identity_frame(motus: pd.DataFrame) -> pd.DataFrame:
    """Best identity per database; a database without a column counts as no match."""
    out = pd.DataFrame(index=motus.index)
    for col in IDENTITY_COLS:
        if col in motus.columns:
            out[col] = pd.to_numeric(motus[col], errors="coerce")
        else:
            out[col] = np.nan
    return out


def supported_by(motus: pd.DataFrame, identity_threshold: float = 0.95) -> pd.DataFrame:
    # NaN >= x is False: no reported identity means no support
    return identity_frame(motus) >= identity_threshold


def sequence_type(motus: pd.DataFrame, identity_threshold: float = 0.95) -> pd.Series:
    sup = supported_by(motus, identity_threshold)
    embl = sup["best_identity_embl"]
    mmhills = sup["best_identity_mmhills"]
    out = np.select([embl & mmhills, embl, mmhills], ["both", "embl", "mmhills"], default="unknown")
    return pd.Series(out, index=motus.index, name="sequence_type")


def degraded(motus: pd.DataFrame, degraded_identity: float = 0.80) -> pd.Series:
    best = identity_frame(motus).max(axis=1, skipna=True)
    return (best.fillna(-np.inf) < degraded_identity).rename("degraded")


def annotate_motus(data: MetabarcodingData, identity_threshold: float = 0.95,
                   degraded_identity: float = 0.80) -> MetabarcodingData:
    check_consistency(data, "annotate_motus")
    motus = data.motus.copy()
    motus["sequence_type"] = sequence_type(motus, identity_threshold)
    motus["degraded"] = degraded(motus, degraded_identity)
    return data.replace(motus=motus)
