import numpy as np
import pandas as pd

from analysis.metabarcoding.embedding import ca_embedding, pairwise_distances, partition_distances
from analysis.metabarcoding.replicates import crossover_threshold, prune_group, prune_replicates

OFFSETS = {"a": (0.0, 0.0), "b": (0.1, 0.0), "c": (0.0, 0.1)}


def coords_embed(counts):
    return counts[["x", "y"]].astype(float)


def line_of_groups(make_data, n_groups=10, spacing=20.0, override=None, drop=()):
    """Replicate groups of three spread along x; `override` moves single reactions."""
    rows = {}
    for k in range(n_groups):
        for letter, (dx, dy) in OFFSETS.items():
            name = f"{k + 1}_w_fox_fox_99_1_{letter}"
            if name in drop:
                continue
            rows[name] = [spacing * k + dx, dy]
    for name, xy in (override or {}).items():
        rows[name] = list(xy)
    return make_data(rows, ["x", "y"], dtype=float)


# ------------------ threshold ------------------

def test_crossover_between_separated_distributions():
    within = np.linspace(0.05, 0.15, 20)
    between = np.linspace(0.8, 1.2, 40)
    t = crossover_threshold(within, between)
    assert t is not None
    assert 0.15 < t < 0.8


def test_identical_distances_have_no_crossover():
    assert crossover_threshold([1.0, 1.0, 1.0], [1.0, 1.0, 1.0, 1.0]) is None


def test_too_few_values_have_no_crossover():
    assert crossover_threshold([0.1], [1.0, 2.0, 3.0]) is None
    assert crossover_threshold([], [1.0, 2.0]) is None


def test_same_distribution_never_crosses():
    vals = np.linspace(0.0, 1.0, 10)
    assert crossover_threshold(vals, vals.copy()) is None


# ------------------ greedy group pruning ------------------

def test_pair_over_threshold_loses_both():
    dist = np.array([[0.0, 5.0], [5.0, 0.0]])
    assert prune_group(dist, (0, 1), 1.0) == frozenset({0, 1})
    assert prune_group(dist, (0, 1), 6.0) == frozenset()


def test_single_member_is_kept():
    assert prune_group(np.zeros((1, 1)), (0,), 0.5) == frozenset()


def test_outlier_with_largest_row_sum_goes_first():
    pos = np.array([0.0, 0.1, 5.0, -5.0])
    dist = np.abs(pos[:, None] - pos[None, :])
    before = dist.copy()
    assert prune_group(dist, (0, 1, 2), 1.0) == frozenset({2})
    assert prune_group(dist, (0, 1, 2, 3), 1.0) == frozenset({2, 3})
    np.testing.assert_array_equal(dist, before)


def test_prune_group_uses_only_listed_members():
    pos = np.array([0.0, 0.1, 50.0])
    dist = np.abs(pos[:, None] - pos[None, :])
    assert prune_group(dist, (0, 1), 1.0) == frozenset()


# ------------------ fixed-point loop ------------------

def test_loop_flags_the_outlier_replicate(make_data):
    data = line_of_groups(make_data, override={"1_w_fox_fox_99_1_c": (6.0, 0.0)})
    out, history = prune_replicates(data, embed=coords_embed)
    flagged = sorted(out.samples.index[out.samples["nonReplicating"]])
    assert flagged == ["1_w_fox_fox_99_1_c"]
    assert history[0].removed == ["1_w_fox_fox_99_1_c"]
    assert history[0].threshold < 5.9
    assert out.samples.loc["1_w_fox_fox_99_1_c", "pruned_iteration"] == 1
    # input snapshot untouched
    assert not data.samples["nonReplicating"].any()


def test_loop_drops_both_members_of_a_divergent_pair(make_data):
    data = line_of_groups(make_data, drop=("1_w_fox_fox_99_1_c",), override={"1_w_fox_fox_99_1_b": (6.0, 0.0)})
    out, _ = prune_replicates(data, embed=coords_embed)
    flagged = sorted(out.samples.index[out.samples["nonReplicating"]])
    assert flagged == ["1_w_fox_fox_99_1_a", "1_w_fox_fox_99_1_b"]


def test_loop_terminates_and_flags_only_grow(make_data):
    data = line_of_groups(make_data, override={"1_w_fox_fox_99_1_c": (6.0, 0.0), "5_w_fox_fox_99_1_a": (88.0, 3.0)})
    out, history = prune_replicates(data, embed=coords_embed, max_iterations=20)
    assert 1 <= len(history) <= 20
    seen = set()
    for h in history:
        assert seen.isdisjoint(h.removed)
        seen |= set(h.removed)
    assert seen == set(out.samples.index[out.samples["nonReplicating"]])


def test_identical_profiles_stop_without_flags(make_data):
    rows = {f"{k}_w_fox_fox_99_1_{l}": [1.0, 1.0] for k in (1, 2, 3) for l in "abc"}
    out, history = prune_replicates(make_data(rows, ["x", "y"], dtype=float), embed=coords_embed)
    assert len(history) == 1
    assert history[0].threshold is None
    assert not out.samples["nonReplicating"].any()


def test_controls_and_shallow_reactions_are_not_embedded(make_data):
    data = line_of_groups(make_data, n_groups=3)
    samples = data.samples.copy()
    samples.loc["1_w_fox_fox_99_1_a", "empty_PCR"] = True
    seen = []

    def spy(counts):
        seen.append(list(counts.index))
        return coords_embed(counts)

    prune_replicates(data.replace(samples=samples), embed=spy)
    assert "1_w_fox_fox_99_1_a" not in seen[0]
    assert len(seen[0]) == 8


def test_too_few_reactions_skip_pruning(make_data):
    data = make_data({"1_w_fox_fox_99_1_a": [1.0, 2.0], "1_w_fox_fox_99_1_b": [9.0, 9.0]}, ["x", "y"], dtype=float)
    out, history = prune_replicates(data, embed=coords_embed)
    assert history == []
    assert not out.samples["nonReplicating"].any()


# ------------------ embedding ------------------

def _profiles():
    return pd.DataFrame(
        [[100, 50, 5, 0], [110, 45, 6, 1], [95, 55, 4, 0],
         [0, 5, 60, 120], [1, 4, 66, 118], [0, 6, 58, 125],
         [0, 0, 0, 0]],
        index=["A1", "A2", "A3", "B1", "B2", "B3", "Z"],
        columns=["m1", "m2", "m3", "m4"],
    )


def test_ca_embedding_separates_profiles_and_skips_empty_rows():
    coords = ca_embedding(_profiles())
    assert list(coords.index) == ["A1", "A2", "A3", "B1", "B2", "B3"]
    assert coords.shape[1] == 2
    dist = pairwise_distances(coords)
    long = partition_distances(dist, pd.Series({r: r[0] for r in coords.index}))
    assert long["distance"][long["within"]].max() < long["distance"][~long["within"]].min()


def test_partition_distances_is_upper_triangle():
    coords = pd.DataFrame({"x": [0.0, 3.0, 0.0]}, index=["p", "q", "r"])
    dist = pairwise_distances(coords)
    long = partition_distances(dist, pd.Series({"p": "g1", "q": "g1", "r": "g2"}))
    assert len(long) == 3
    assert long.set_index(["reaction1", "reaction2"])["distance"].to_dict() == {
        ("p", "q"): 3.0, ("p", "r"): 0.0, ("q", "r"): 3.0}
    assert long["within"].tolist() == [True, False, False]
