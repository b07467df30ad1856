"""Tests for the seeded train / holdout split"""

import numpy as np
import polars as pl
import pytest

from race_match_analysis.partition import response_bins, split_train_holdout


def _keys(df):
    return list(zip(df["CDS_CODE"].to_list(), df["EthnicGroup"].to_list()))


def test_split_sizes_and_coverage(school_groups):
    part = split_train_holdout(school_groups, train_fraction=0.8, seed=42)

    assert part.train.height + part.holdout.height == school_groups.height
    assert part.train.height == pytest.approx(0.8 * school_groups.height, abs=1)
    assert set(_keys(part.train)).isdisjoint(_keys(part.holdout))
    assert part.stratified
    assert part.train.columns == school_groups.columns


def test_split_is_reproducible(school_groups):
    a = split_train_holdout(school_groups, seed=42)
    b = split_train_holdout(school_groups, seed=42)

    assert a.train.equals(b.train)
    assert a.holdout.equals(b.holdout)


def test_different_seed_gives_different_split(school_groups):
    a = split_train_holdout(school_groups, seed=1)
    b = split_train_holdout(school_groups, seed=2)

    assert _keys(a.holdout) != _keys(b.holdout)


def test_split_covers_response_range(school_groups):
    part = split_train_holdout(school_groups, seed=7)
    lo, hi = np.quantile(school_groups["matchProp"].to_numpy(), [0.2, 0.8])

    # holdout reaches into the lowest and highest quintiles
    assert part.holdout["matchProp"].min() <= lo
    assert part.holdout["matchProp"].max() >= hi


def test_response_bins():
    values = np.arange(10, dtype=float)
    bins = response_bins(values, n_bins=5)

    assert bins.tolist() == [0, 0, 1, 1, 2, 2, 3, 3, 4, 4]
    assert response_bins(values, n_bins=1).tolist() == [0] * 10


def test_tiny_input_falls_back_to_random_split():
    df = pl.DataFrame({"matchProp": [0.1, 0.5, 0.9]})

    part = split_train_holdout(df, train_fraction=0.67, seed=0)

    assert part.train.height + part.holdout.height == 3
    assert not part.stratified


def test_single_row_rejected():
    with pytest.raises(ValueError):
        split_train_holdout(pl.DataFrame({"matchProp": [0.5]}))
