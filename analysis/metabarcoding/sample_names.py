#!/usr/bin/env python3
"""Decode PCR reaction names into per-reaction metadata.

Grammar: sampleNumber_group_label_animal_percentIdentity_primerPairCount_replicateLetter
e.g. 12_w_fox_fox_98.5_2_a. Controls replace the sample number with a PCR* or
En* prefix, and carry no DNA-identification fields.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .io_utils import float_or_nan

logger = logging.getLogger("edna_filter")

REPLICATE_LETTERS = ("a", "b", "c")
GROUPS = ("w", "d")

_REPLICATE_SUFFIX = re.compile(r"_(%s)$" % "|".join(REPLICATE_LETTERS))

DECODED_FIELDS = ["sample_number", "group", "label", "animal", "percent_identity", "primer_pairs"]
SAMPLE_COLUMNS = DECODED_FIELDS + ["replicate", "type", "replicate_group", "empty_PCR", "nonReplicating"]


def replicate_group_key(name: str) -> str:
    return _REPLICATE_SUFFIX.sub("", str(name))


def control_type(first_token: str) -> Optional[str]:
    if first_token.startswith("PCR"):
        return "pcrneg"
    if first_token.startswith("En"):
        return "extneg"
    return None


def _int_or_none(s: str) -> Optional[int]:
    v = float_or_nan(s)
    if math.isnan(v) or v != int(v):
        return None
    return int(v)


def _blank_to_none(s: str) -> Optional[str]:
    s = s.strip()
    if s == "" or s.lower() in {"na", "nan", "none", "null"}:
        return None
    return s


def decode_sample_name(name: str) -> Dict[str, object]:
    tokens = str(name).split("_")
    rec: Dict[str, object] = {f: None for f in DECODED_FIELDS}
    letter = tokens[-1] if len(tokens) > 1 and tokens[-1] in REPLICATE_LETTERS else None
    rec["replicate"] = letter
    rec["replicate_group"] = replicate_group_key(name)

    ctype = control_type(tokens[0])
    if ctype is not None:
        rec["type"] = ctype
        return rec

    number = _int_or_none(tokens[0])
    if len(tokens) < 7 or letter is None or number is None or tokens[1] not in GROUPS:
        logger.warning("Reaction name %r does not follow the sample grammar; type left undefined", name)
        rec["type"] = None
        return rec

    rec.update(
        sample_number=number,
        group=tokens[1],
        label=_blank_to_none("_".join(tokens[2:-4])),
        animal=_blank_to_none(tokens[-4]),
        percent_identity=float_or_nan(tokens[-3]),
        primer_pairs=_int_or_none(tokens[-2]),
        type="sample",
    )
    return rec


def build_sample_table(names: Iterable[str]) -> pd.DataFrame:
    names = [str(n) for n in names]
    rows: List[Dict[str, object]] = [decode_sample_name(n) for n in names]
    df = pd.DataFrame(rows, index=pd.Index(names, name="reaction"),
                      columns=DECODED_FIELDS + ["replicate", "type", "replicate_group"])
    df["sample_number"] = df["sample_number"].astype("Int64")
    df["primer_pairs"] = df["primer_pairs"].astype("Int64")
    df["percent_identity"] = pd.to_numeric(df["percent_identity"], errors="coerce")
    df["empty_PCR"] = False
    df["nonReplicating"] = False
    return df[SAMPLE_COLUMNS]
