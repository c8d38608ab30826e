#!/usr/bin/env python3
"""Matrix store: count matrix plus the per-reaction and per-MOTU tables.

Every pipeline stage takes a MetabarcodingData snapshot and returns a new one.
Rows of `counts` line up with `samples.index`, columns with `motus.index`.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import pandas as pd


class StructuralMismatchError(ValueError):
    """Matrix and metadata keys diverge."""


class InconsistentSampleError(ValueError):
    """Reactions of one biological sample disagree on a per-sample field."""


def _diff(a: pd.Index, b: pd.Index, limit: int = 5) -> str:
    only_a = [str(x) for x in a.difference(b)[:limit]]
    only_b = [str(x) for x in b.difference(a)[:limit]]
    if not only_a and not only_b:
        return "same members, different order"
    return f"only in matrix={only_a} only in metadata={only_b}"


@dataclass(frozen=True)
class MetabarcodingData:
    counts: pd.DataFrame
    samples: pd.DataFrame
    motus: pd.DataFrame

    def replace(self, **changes) -> "MetabarcodingData":
        return dataclasses.replace(self, **changes)

    def subset(self, rows: Optional[Iterable] = None, cols: Optional[Iterable] = None) -> "MetabarcodingData":
        rows = self.counts.index if rows is None else pd.Index(list(rows), name=self.counts.index.name)
        cols = self.counts.columns if cols is None else pd.Index(list(cols), name=self.motus.index.name)
        return MetabarcodingData(
            counts=self.counts.loc[rows, cols].copy(),
            samples=self.samples.loc[rows].copy(),
            motus=self.motus.loc[cols].copy(),
        )

    def drop_empty_motus(self) -> "MetabarcodingData":
        keep = self.counts.columns[self.counts.sum(axis=0) > 0]
        return self.subset(cols=keep)

    def summary(self) -> Dict[str, float]:
        return {
            "rows": int(self.counts.shape[0]),
            "motus": int(self.counts.shape[1]),
            "reads": float(self.counts.values.sum()) if self.counts.size else 0.0,
        }


def check_consistency(data: MetabarcodingData, stage: str = "") -> MetabarcodingData:
    where = f" ({stage})" if stage else ""
    if not data.counts.index.equals(data.samples.index):
        raise StructuralMismatchError(
            f"Row keys of counts and sample metadata differ{where}: "
            + _diff(data.counts.index, data.samples.index))
    if not data.counts.columns.equals(data.motus.index):
        raise StructuralMismatchError(
            f"Column keys of counts and MOTU table differ{where}: "
            + _diff(data.counts.columns, data.motus.index))
    if (data.counts.values < 0).any():
        raise StructuralMismatchError(f"Negative counts in matrix{where}")
    return data
