#!/usr/bin/env python3
"""
eDNA metabarcoding filter: from a raw MOTU x PCR-reaction table to one
denoised profile per biological sample.

Stages, in order:
- MOTU annotation (sequence_type, degraded)
- contamination labels from extraction / PCR negatives
- leak-rate sweep (advisory) and tag-switching correction at the configured rate
- removal of contaminant and low-identity MOTUs
- low-depth flags
- replicate-consistency pruning (CA distances, adaptive threshold)
- replicate merging
- rare-taxon suppression and deny-list

Dependencies: pandas, numpy, scipy, scikit-bio
"""
from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from .config import FilterConfig, config_from_mapping, load_config
from .contamination import classify_contamination, remove_contaminants
from .dataset import MetabarcodingData, check_consistency
from .depth import flag_low_depth
from .io_utils import (ensure_dir, motus_out, read_motu_table, write_json, write_list,
                       write_summary, write_tsv)
from .leakage import correct_leakage, suggest_leak_rate, sweep_leak_rates
from .merge import merge_replicates, record_merge_status, surviving_reactions
from .motu_annotation import annotate_motus
from .rarity import filter_rare
from .replicates import PruningIteration, distances_table, prune_replicates, thresholds_table
from .sample_names import build_sample_table


def setup_logging(level: str = "INFO") -> logging.Logger:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
    return logging.getLogger("edna_filter")


logger = logging.getLogger("edna_filter")


@dataclass
class PipelineResult:
    final: MetabarcodingData
    reactions: MetabarcodingData
    leak_sweep: pd.DataFrame
    suggested_leak_rate: Optional[float]
    pruning: List[PruningIteration] = field(default_factory=list)
    summary: List[str] = field(default_factory=list)


def with_decoded_samples(data: MetabarcodingData) -> MetabarcodingData:
    """Attach decoded reaction metadata to a freshly read table."""
    samples = build_sample_table(data.counts.index)
    extra = data.samples.drop(columns=[c for c in data.samples.columns if c in samples.columns])
    return data.replace(samples=samples.join(extra))


def run_pipeline(data: MetabarcodingData, config: FilterConfig = FilterConfig(), embed=None) -> PipelineResult:
    summary: List[str] = []

    def add_sum(stage: str, d: MetabarcodingData):
        s = d.summary()
        line = f"{stage}: rows={s['rows']} motus={s['motus']} reads={s['reads']:.0f}"
        summary.append(line)
        logger.info(line)

    data = check_consistency(data, "input")
    if "type" not in data.samples.columns:
        data = with_decoded_samples(data)
    add_sum("input", data)

    data = annotate_motus(data, config.identity_threshold, config.degraded_identity)
    data = classify_contamination(data)

    sweep = sweep_leak_rates(data, config.leak_rates)
    suggested = suggest_leak_rate(sweep, config.leak_control_tolerance)
    summary.append(f"leak rate: configured={config.leak_rate} suggested={suggested}")
    if suggested is not None and suggested != config.leak_rate:
        logger.info("Leak-rate sweep suggests %g; using configured %g", suggested, config.leak_rate)

    data = correct_leakage(data, config.leak_rate)
    add_sum("leakage", data)
    data = remove_contaminants(data, config.identity_threshold)
    add_sum("contaminants", data)
    data = flag_low_depth(data, config.min_reads)

    prune_kw = dict(max_iterations=config.max_iterations, grid_size=config.kde_grid_size)
    if embed is not None:
        prune_kw["embed"] = embed
    data, history = prune_replicates(data, **prune_kw)
    n_pruned = int(data.samples["nonReplicating"].sum())
    summary.append(f"pruning: iterations={len(history)} nonReplicating={n_pruned}")
    merged = merge_replicates(data, config.min_replicates)
    add_sum("merged", merged)
    final = filter_rare(merged, config.min_relative_abundance, config.deny_list)
    add_sum("rarity", final)
    reactions = record_merge_status(data, final, config.min_replicates)
    status = reactions.samples["merge_status"].dropna()
    summary.append(f"merge: reactions_merged={int((status == 'merged').sum())} "
                   f"reactions_lost={int((status != 'merged').sum())}")

    return PipelineResult(final=final, reactions=reactions, leak_sweep=sweep,
                          suggested_leak_rate=suggested, pruning=history, summary=summary)


MOTU_OUT_COLS = ["id", "count", "best_identity_embl", "best_identity_mmhills", "family_name", "genus_name",
                 "species_name", "scientific_name", "rank", "seq_length", "sequence_type", "degraded",
                 "bias", "removed_reason", "leak_deduction", "denied", "sequence"]


def write_outputs(result: PipelineResult, out_dir: str, config: FilterConfig) -> None:
    ensure_dir(out_dir)
    final = result.final
    write_tsv(os.path.join(out_dir, "motus_filtered.tsv"), motus_out(final.motus, MOTU_OUT_COLS), index=False)
    write_tsv(os.path.join(out_dir, "samples_merged.tsv"), final.samples)
    write_tsv(os.path.join(out_dir, "counts_merged.tsv"), final.counts)
    write_tsv(os.path.join(out_dir, "leak_rate_sweep.tsv"), result.leak_sweep, index=False)
    write_tsv(os.path.join(out_dir, "reactions_flagged.tsv"), result.reactions.samples)
    write_tsv(os.path.join(out_dir, "pruning_thresholds.tsv"), thresholds_table(result.pruning), index=False)
    write_tsv(os.path.join(out_dir, "replicate_distances.tsv"), distances_table(result.pruning), index=False)

    samples = result.reactions.samples
    write_list(os.path.join(out_dir, "reactions_included.tsv"), list(map(str, surviving_reactions(samples))))
    write_list(os.path.join(out_dir, "reactions_negatives.tsv"),
               list(map(str, samples.index[samples["type"].isin(["pcrneg", "extneg"]).to_numpy(dtype=bool)])))
    write_list(os.path.join(out_dir, "reactions_excluded.tsv"),
               list(map(str, samples.index[(samples["empty_PCR"] | samples["nonReplicating"]).to_numpy(dtype=bool)])))

    params = config.to_dict()
    params["suggested_leak_rate"] = result.suggested_leak_rate
    write_json(os.path.join(out_dir, "filter_parameters.json"), params)
    write_summary(os.path.join(out_dir, "summary.txt"), result.summary)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Denoise and merge an eDNA metabarcoding MOTU table")
    ap.add_argument("--input", required=True, help="obitab-style TSV/CSV: MOTU annotations + one count column per reaction")
    ap.add_argument("--out-dir", default="results/edna_filter")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--config", help="TOML config file mapping option names to values")

    # thresholds (None = take from config file or defaults)
    ap.add_argument("--identity-threshold", type=float, default=None)
    ap.add_argument("--degraded-identity", type=float, default=None)
    ap.add_argument("--leak-rates", default=None, help="CSV candidate rates like '0,0.001,0.01'")
    ap.add_argument("--leak-rate", type=float, default=None)
    ap.add_argument("--leak-control-tolerance", type=float, default=None)
    ap.add_argument("--min-reads", type=float, default=None)
    ap.add_argument("--min-replicates", type=int, default=None)
    ap.add_argument("--min-relative-abundance", type=float, default=None)
    ap.add_argument("--deny-list", default=None, help="CSV of MOTU ids to zero out")
    ap.add_argument("--max-iterations", type=int, default=None)
    ap.add_argument("--kde-grid-size", type=int, default=None)
    ap.add_argument("--sample-prefix", default=None)
    return ap


def config_from_args(args: argparse.Namespace) -> FilterConfig:
    base = load_config(args.config) if args.config else FilterConfig()
    cli = {k: getattr(args, k) for k in (
        "identity_threshold", "degraded_identity", "leak_rates", "leak_rate", "leak_control_tolerance",
        "min_reads", "min_replicates", "min_relative_abundance", "deny_list", "max_iterations",
        "kde_grid_size", "sample_prefix")}
    return config_from_mapping(cli, base=base)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    config = config_from_args(args)

    data = with_decoded_samples(read_motu_table(args.input, sample_prefix=config.sample_prefix))
    result = run_pipeline(data, config)
    write_outputs(result, args.out_dir, config)
    logger.info("Wrote outputs to: %s", args.out_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
