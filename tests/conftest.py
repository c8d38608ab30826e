import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from analysis.metabarcoding.dataset import MetabarcodingData  # noqa: E402
from analysis.metabarcoding.sample_names import build_sample_table  # noqa: E402


def build_data(rows, motu_ids, identities=None, dtype=np.int64):
    """rows: {reaction name: [count per MOTU]}; identities: {motu: (embl, mmhills)}."""
    names = list(rows)
    counts = pd.DataFrame([rows[n] for n in names], index=pd.Index(names, name="reaction"),
                          columns=pd.Index(motu_ids, name="id")).astype(dtype)
    identities = identities or {}
    motus = pd.DataFrame({
        "best_identity_embl": [identities.get(m, (0.99, 0.99))[0] for m in motu_ids],
        "best_identity_mmhills": [identities.get(m, (0.99, 0.99))[1] for m in motu_ids],
    }, index=pd.Index(motu_ids, name="id"))
    return MetabarcodingData(counts=counts, samples=build_sample_table(names), motus=motus)


@pytest.fixture
def make_data():
    return build_data
