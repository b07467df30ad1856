# race_match_analysis/partition.py
"""Seeded train / holdout split of school-group observations."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import polars as pl
from sklearn.model_selection import train_test_split

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partition:
    train: pl.DataFrame
    holdout: pl.DataFrame
    seed: int
    train_fraction: float
    stratified: bool


def response_bins(values: np.ndarray, n_bins: int = 5) -> np.ndarray:
    """Label each value with its quantile bin (0..n_bins-1)."""
    n_bins = max(1, min(n_bins, len(values)))
    if n_bins == 1:
        return np.zeros(len(values), dtype=int)
    edges = np.unique(np.quantile(values, np.linspace(0.0, 1.0, n_bins + 1))[1:-1])
    return np.searchsorted(edges, values, side="right")


def split_train_holdout(
    df: pl.DataFrame,
    train_fraction: float = 0.8,
    seed: int = 42,
    *,
    response: str = "matchProp",
    n_bins: int = 5,
) -> Partition:
    """
    Split rows into training and holdout sets.

    Rows are stratified by quantile bins of the response so both sets cover
    its distribution. If any bin is too small to be split, the split falls back
    to plain random sampling. The same seed always yields the same rows.
    """
    if df.height < 2:
        raise ValueError(f"Need at least 2 rows to partition, got {df.height}")

    indexed = df.with_row_index("_row")
    rows = indexed.get_column("_row").to_numpy()
    bins = response_bins(indexed.get_column(response).to_numpy(), n_bins=n_bins)

    _, bin_counts = np.unique(bins, return_counts=True)
    stratified = bool(bin_counts.min() >= 2)
    if not stratified:
        logger.warning("  Response bins too small to stratify (min bin size %d); using random split", bin_counts.min())

    try:
        train_rows, holdout_rows = train_test_split(
            rows,
            train_size=train_fraction,
            random_state=seed,
            shuffle=True,
            stratify=bins if stratified else None,
        )
    except ValueError:
        # Holdout too small to hold one row per bin
        logger.warning("  Holdout too small for %d strata; using random split", len(bin_counts))
        stratified = False
        train_rows, holdout_rows = train_test_split(rows, train_size=train_fraction, random_state=seed, shuffle=True)

    train = indexed.filter(pl.col("_row").is_in(np.sort(train_rows).tolist())).drop("_row")
    holdout = indexed.filter(pl.col("_row").is_in(np.sort(holdout_rows).tolist())).drop("_row")

    logger.info(
        "Partitioned %s rows: %s train / %s holdout (seed=%d, stratified=%s)",
        f"{df.height:,}",
        f"{train.height:,}",
        f"{holdout.height:,}",
        seed,
        stratified,
    )

    return Partition(
        train=train,
        holdout=holdout,
        seed=seed,
        train_fraction=train_fraction,
        stratified=stratified,
    )
