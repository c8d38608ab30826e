#!/usr/bin/env python3
"""io_utils.py

Readers and writers for the metabarcoding filter.

Expected input (obitab layout):
- one row per MOTU
- MOTU annotation columns (id, count, best_identity:<db>, family_name, ...)
- one integer column per PCR reaction, named "<sample_prefix><reaction name>"

The count block is transposed on read so the pipeline always works on a
reactions x MOTUs matrix.
"""
from __future__ import annotations

import json
import math
import os
import re
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .dataset import MetabarcodingData

DEFAULT_SAMPLE_PREFIX = "sample:"

# canonical MOTU column -> accepted header spellings (normalised with norm())
CAND = {
    "id": ["id", "motu", "motu_id", "otu", "otu_id"],
    "count": ["count", "total_count", "reads"],
    "best_identity_embl": ["best_identity_embl", "best_identity_r_embl", "identity_embl"],
    "best_identity_mmhills": ["best_identity_mmhills", "best_identity_r_mmhills", "identity_mmhills"],
    "family_name": ["family_name", "family"],
    "genus_name": ["genus_name", "genus"],
    "species_name": ["species_name", "species"],
    "scientific_name": ["scientific_name", "scientificname"],
    "rank": ["rank", "taxonomic_rank"],
    "seq_length": ["seq_length", "sequence_length", "length"],
    "sequence": ["sequence", "seq"],
    "match_count_embl": ["match_count_embl", "match_count_r_embl"],
    "match_count_mmhills": ["match_count_mmhills", "match_count_r_mmhills"],
    "species_list_embl": ["species_list_embl", "species_list_r_embl"],
    "species_list_mmhills": ["species_list_mmhills", "species_list_r_mmhills"],
}

NUMERIC_MOTU_COLS = ("count", "best_identity_embl", "best_identity_mmhills", "seq_length",
                     "match_count_embl", "match_count_mmhills")


def norm(s: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', str(s).strip().lower()).strip("_")


def float_or_nan(x: Any) -> float:
    if x is None:
        return math.nan
    if isinstance(x, (int, float)):
        return float(x)
    s = str(x).strip()
    if s == "" or s.lower() in {"na", "nan", "none", "null"}:
        return math.nan
    try:
        return float(s)
    except ValueError:
        return math.nan


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def read_table_any(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    if path.lower().endswith((".tsv", ".txt", ".tab")):
        return pd.read_csv(path, sep="\t")
    if path.lower().endswith(".csv"):
        return pd.read_csv(path)
    raise ValueError(f"Unsupported file type: {path}")


def pick_columns(header: List[str]) -> Dict[str, str]:
    """Map canonical MOTU column names to the headers present in the table."""
    hmap = {norm(h): h for h in header}
    out = {}
    for key, opts in CAND.items():
        for cand in opts:
            if cand in hmap:
                out[key] = hmap[cand]
                break
    return out


def split_motu_table(table: pd.DataFrame, sample_prefix: str = DEFAULT_SAMPLE_PREFIX) -> MetabarcodingData:
    """Split an obitab-style frame into a reactions x MOTUs snapshot."""
    sample_cols = [c for c in table.columns if str(c).startswith(sample_prefix)]
    if not sample_cols:
        raise ValueError(f"No count columns with prefix {sample_prefix!r} found")
    annot_cols = [c for c in table.columns if c not in sample_cols]
    picked = pick_columns(annot_cols)
    if "id" not in picked:
        raise ValueError(f"MOTU table has no identifier column. Columns={annot_cols}")

    motus = table[annot_cols].rename(columns={v: k for k, v in picked.items()})
    motus["id"] = motus["id"].astype(str)
    if motus["id"].duplicated().any():
        dup = motus.loc[motus["id"].duplicated(), "id"].tolist()
        raise ValueError(f"Duplicated MOTU identifiers: {dup[:5]}")
    for col in NUMERIC_MOTU_COLS:
        if col in motus.columns:
            motus[col] = motus[col].map(float_or_nan)
    motus = motus.set_index("id")

    counts = table[sample_cols].apply(pd.to_numeric, errors="coerce").fillna(0)
    counts = counts.round().astype(np.int64).T
    counts.index = [str(c)[len(sample_prefix):] for c in sample_cols]
    counts.index.name = "reaction"
    counts.columns = motus.index

    # sample metadata is decoded from the reaction names by the caller
    samples = pd.DataFrame(index=counts.index.copy())
    return MetabarcodingData(counts=counts, samples=samples, motus=motus)


def read_motu_table(path: str, sample_prefix: str = DEFAULT_SAMPLE_PREFIX) -> MetabarcodingData:
    return split_motu_table(read_table_any(path), sample_prefix=sample_prefix)


def write_tsv(path: str, df: pd.DataFrame, index: bool = True) -> None:
    parent = os.path.dirname(path)
    if parent:
        ensure_dir(parent)
    df.to_csv(path, sep="\t", index=index)


def write_json(path: str, payload: Dict[str, Any]) -> None:
    parent = os.path.dirname(path)
    if parent:
        ensure_dir(parent)
    with open(path, "w") as fh:
        json.dump(payload, fh, indent=2, default=str)


def write_list(path: str, values: List[str], column: str = "reaction") -> None:
    write_tsv(path, pd.DataFrame({column: sorted(values)}), index=False)


def write_summary(path: str, lines: List[str]) -> None:
    parent = os.path.dirname(path)
    if parent:
        ensure_dir(parent)
    with open(path, "w") as f:
        for line in lines:
            f.write(line + "\n")


def motus_out(motus: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
    """MOTU table ready for writing: identifier as first column."""
    out = motus.rename_axis("id").reset_index()
    if columns:
        out = out[[c for c in columns if c in out.columns]]
    return out
