import pytest

from analysis.metabarcoding.dataset import InconsistentSampleError, check_consistency
from analysis.metabarcoding.depth import flag_low_depth
from analysis.metabarcoding.merge import merge_drop_reasons, merge_replicates, record_merge_status
from analysis.metabarcoding.rarity import filter_rare

A1, A2, A3 = "1_w_fox_fox_99_1_a", "1_w_fox_fox_99_1_b", "1_w_fox_fox_99_1_c"
B1, B2 = "2_d_cow_cow_98_2_a", "2_d_cow_cow_98_2_b"


# ------------------ depth ------------------

def test_depth_flags_strictly_below_minimum(make_data):
    data = make_data({A1: [50, 49], A2: [60, 40], "PCR1_a": [0, 3]}, ["m1", "m2"])
    out = flag_low_depth(data, min_reads=100)
    assert out.samples["empty_PCR"].to_dict() == {A1: True, A2: False, "PCR1_a": True}
    assert out.samples.loc[A2, "total_reads"] == 100
    # nothing removed
    assert list(out.counts.index) == [A1, A2, "PCR1_a"]


def test_reactions_without_reads_flagged_at_any_threshold(make_data):
    data = make_data({A1: [50, 49], A2: [0, 0]}, ["m1", "m2"])
    out = flag_low_depth(data, min_reads=0)
    assert out.samples["empty_PCR"].to_dict() == {A1: False, A2: True}


# ------------------ merge ------------------

def test_merge_is_arithmetic_mean(make_data):
    data = make_data({A1: [10, 0, 4], A2: [6, 2, 2]}, ["m1", "m2", "m3"])
    out = merge_replicates(data)
    check_consistency(out)
    assert out.counts.loc["1_w_fox_fox_99_1"].tolist() == [8, 1, 3]
    meta = out.samples.loc["1_w_fox_fox_99_1"]
    assert meta["animal"] == "fox"
    assert meta["n_replicates"] == 2
    assert meta["reactions"] == f"{A1},{A2}"


def test_merge_skips_controls_and_flagged_reactions(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2], A3: [100, 100], B1: [0, 8], "PCR1_a": [1, 1]}, ["m1", "m2"])
    samples = data.samples.copy()
    samples.loc[A3, "nonReplicating"] = True
    samples.loc[B1, "empty_PCR"] = True
    out = merge_replicates(data.replace(samples=samples))
    assert list(out.counts.index) == ["1_w_fox_fox_99_1"]
    assert out.counts.loc["1_w_fox_fox_99_1"].tolist() == [8, 1]


def test_min_replicates_policy(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2], B1: [0, 8]}, ["m1", "m2"])
    assert sorted(merge_replicates(data, min_replicates=1).counts.index) == ["1_w_fox_fox_99_1", "2_d_cow_cow_98_2"]
    out = merge_replicates(data, min_replicates=2)
    assert list(out.counts.index) == ["1_w_fox_fox_99_1"]


def test_missing_animal_dropped_and_empty_motus_removed(make_data):
    data = make_data({A1: [10, 0, 0], "3_w_fox_NA_99_1_a": [0, 0, 5]}, ["m1", "m2", "m3"])
    out = merge_replicates(data)
    assert list(out.counts.index) == ["1_w_fox_fox_99_1"]
    assert list(out.counts.columns) == ["m1"]
    assert list(out.motus.index) == ["m1"]


def test_disagreeing_replicates_raise(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2]}, ["m1", "m2"])
    samples = data.samples.copy()
    samples.loc[A2, "label"] = "badger"
    with pytest.raises(InconsistentSampleError, match="label"):
        merge_replicates(data.replace(samples=samples))


# ------------------ rarity ------------------

def _merged(make_data, rows, motus):
    return merge_replicates(make_data(rows, motus))


def test_rarity_boundary_is_strict(make_data):
    merged = _merged(make_data, {A1: [1, 99, 0], B1: [99, 0, 9901]}, ["m1", "m2", "m3"])
    out = filter_rare(merged, min_relative_abundance=0.01)
    # exactly 1% kept, 0.99% zeroed
    assert out.counts.loc["1_w_fox_fox_99_1", "m1"] == 1
    assert out.counts.loc["2_d_cow_cow_98_2", "m1"] == 0
    assert out.counts.loc["2_d_cow_cow_98_2", "m3"] == 9901
    assert (out.counts <= merged.counts.loc[out.counts.index, out.counts.columns]).all().all()
    check_consistency(out)


def test_deny_list_zeroes_motu_everywhere(make_data):
    merged = _merged(make_data, {A1: [500, 500], B1: [900, 100]}, ["m1", "m2"])
    out = filter_rare(merged, deny_list=["m2", "not_there"])
    assert "m2" not in out.counts.columns or (out.counts["m2"] == 0).all()
    assert list(out.motus.index) == list(out.counts.columns)


def test_rows_left_empty_are_dropped(make_data):
    merged = _merged(make_data, {A1: [500, 0], B1: [0, 100]}, ["m1", "m2"])
    out = filter_rare(merged, deny_list=["m2"])
    assert list(out.counts.index) == ["1_w_fox_fox_99_1"]
    assert list(out.samples.index) == ["1_w_fox_fox_99_1"]


# ------------------ merge status ------------------

NO_ANIMAL = "3_w_fox_NA_99_1_a"


def test_drop_reasons_name_each_lost_sample(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2], B1: [0, 8], NO_ANIMAL: [3, 3]}, ["m1", "m2"])
    reasons = merge_drop_reasons(data.samples, min_replicates=2)
    # a lone reaction fails the replicate count before its animal is looked at
    assert reasons.to_dict() == {"2_d_cow_cow_98_2": "too_few_replicates",
                                 "3_w_fox_NA_99_1": "too_few_replicates"}
    reasons = merge_drop_reasons(data.samples, min_replicates=1)
    assert reasons.to_dict() == {"3_w_fox_NA_99_1": "no_animal"}


def test_merge_status_recorded_per_reaction(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2], A3: [1, 1], B1: [0, 8], B2: [0, 6],
                      NO_ANIMAL: [3, 3], "3_w_fox_NA_99_1_b": [2, 2], "PCR1_a": [1, 1]}, ["m1", "m2"])
    samples = data.samples.copy()
    samples.loc[A3, "nonReplicating"] = True
    data = data.replace(samples=samples)

    merged = merge_replicates(data)
    final = filter_rare(merged, deny_list=["m2"])
    out = record_merge_status(data, final)
    check_consistency(out)
    status = out.samples["merge_status"]
    assert status[A1] == "merged" and status[A2] == "merged"
    assert status[B1] == "empty_after_rarity" and status[B2] == "empty_after_rarity"
    assert status[NO_ANIMAL] == "no_animal"
    # never entered the merge
    assert status.isna()[A3] and status.isna()["PCR1_a"]
    assert list(final.counts.index) == ["1_w_fox_fox_99_1"]


def test_merge_status_for_too_few_replicates(make_data):
    data = make_data({A1: [10, 0], A2: [6, 2], B1: [0, 8]}, ["m1", "m2"])
    final = filter_rare(merge_replicates(data, min_replicates=2))
    status = record_merge_status(data, final, min_replicates=2).samples["merge_status"]
    assert status.to_dict() == {A1: "merged", A2: "merged", B1: "too_few_replicates"}
