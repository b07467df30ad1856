# race_match_analysis/aggregation.py
"""Aggregate grade-level race-match rates to school x ethnic-group observations.

Raw rates are "teachers per student" averages for one grade category. Averaging
them directly across grades would give small grades the same pull as large
ones, so each step below works in absolute expected counts:

1. scale up:   count = rate * EnrollCount (zero enrollment -> zero count)
2. sum:        counts and enrollment summed over grade categories
3. scale down: rate = summed count / summed enrollment (enrollment-weighted mean)
4. totalTeacher = totalMatch + totalMismatch
5. enrollTotal per school, enrollShare and matchProp
6. drop rows with any undefined derived value

Every function takes a DataFrame and returns a new one; nothing is mutated.
"""

from __future__ import annotations

import logging

import polars as pl

from race_match_analysis.loader import ID_COLUMNS

__all__ = [
    "COUNT_COLUMNS",
    "DERIVED_COLUMNS",
    "GROUP_KEYS",
    "SCHOOL_KEYS",
    "add_enrollment_shares",
    "aggregate_school_groups",
    "as_raw_observations",
    "drop_undefined",
    "recompute_total_teacher",
    "scale_counts_to_rates",
    "scale_rates_to_counts",
    "sum_across_grades",
]

logger = logging.getLogger(__name__)

# Raw rate column -> aggregated column
COUNT_COLUMNS: dict[str, str] = {
    "MatchValue": "totalMatch",
    "MismatchValue": "totalMismatch",
    "TotalTeacher": "totalTeacher",
}
SCHOOL_KEYS: list[str] = [*ID_COLUMNS, "SchoolType", "Elementary"]
GROUP_KEYS: list[str] = [*SCHOOL_KEYS, "EthnicGroup"]
DERIVED_COLUMNS: list[str] = ["totalMatch", "totalMismatch", "totalTeacher", "enrollTotal", "enrollShare", "matchProp"]


def scale_rates_to_counts(raw: pl.DataFrame) -> pl.DataFrame:
    """Convert per-student rates into expected teacher counts for each grade row."""
    enroll = pl.col("EnrollCount")
    return raw.with_columns([
        pl.when(enroll == 0).then(pl.lit(0.0)).otherwise(pl.col(src) * enroll).alias(dst)
        for src, dst in COUNT_COLUMNS.items()
    ]).drop(list(COUNT_COLUMNS))


def sum_across_grades(counts: pl.DataFrame) -> pl.DataFrame:
    """Sum enrollment and counts per (school, ethnic group), discarding GradeCategory.

    A missing count in any grade makes the group's total missing rather than
    silently summing the remaining grades.
    """
    aggs = [pl.col("EnrollCount").sum().alias("EnrollCount")]
    aggs += [
        pl.when(pl.col(c).null_count() > 0).then(pl.lit(None, dtype=pl.Float64)).otherwise(pl.col(c).sum()).alias(c)
        for c in COUNT_COLUMNS.values()
    ]
    return counts.group_by(GROUP_KEYS, maintain_order=True).agg(aggs)


def scale_counts_to_rates(summed: pl.DataFrame) -> pl.DataFrame:
    """Divide summed counts by summed enrollment; zero enrollment gives null."""
    enroll = pl.col("EnrollCount")
    return summed.with_columns([
        pl.when(enroll > 0).then(pl.col(c) / enroll).otherwise(pl.lit(None, dtype=pl.Float64)).alias(c)
        for c in COUNT_COLUMNS.values()
    ])


def recompute_total_teacher(rates: pl.DataFrame) -> pl.DataFrame:
    return rates.with_columns((pl.col("totalMatch") + pl.col("totalMismatch")).alias("totalTeacher"))


def add_enrollment_shares(rates: pl.DataFrame) -> pl.DataFrame:
    """Attach enrollTotal (school-wide), enrollShare and matchProp."""
    totals = rates.group_by("CDS_CODE", maintain_order=True).agg(pl.col("EnrollCount").sum().alias("enrollTotal"))

    return rates.join(totals, on="CDS_CODE", how="left").with_columns([
        pl.when(pl.col("enrollTotal") > 0)
        .then(pl.col("EnrollCount") / pl.col("enrollTotal"))
        .otherwise(pl.lit(None, dtype=pl.Float64))
        .alias("enrollShare"),
        pl.when(pl.col("totalTeacher") > 0)
        .then(pl.col("totalMatch") / pl.col("totalTeacher"))
        .otherwise(pl.lit(None, dtype=pl.Float64))
        .alias("matchProp"),
    ])


def drop_undefined(df: pl.DataFrame) -> pl.DataFrame:
    """Drop rows where any derived value is null, NaN or infinite, or matchProp falls outside [0, 1]."""
    return df.drop_nulls(subset=DERIVED_COLUMNS).filter(
        pl.all_horizontal([pl.col(c).is_finite() for c in DERIVED_COLUMNS])
        & (pl.col("totalTeacher") > 0)
        & pl.col("matchProp").is_between(0.0, 1.0)
    )


def aggregate_school_groups(raw: pl.DataFrame) -> pl.DataFrame:
    """
    Turn raw grade-level rows into one row per (school, ethnic group).

    Output columns: school identifiers, SchoolType, Elementary, EthnicGroup,
    EnrollCount, totalMatch, totalMismatch, totalTeacher, enrollTotal,
    enrollShare, matchProp. Rows are sorted by CDS_CODE then EthnicGroup.
    """
    logger.info("Aggregating %s grade-level rows to school x ethnic group...", f"{raw.height:,}")

    n_zero_enroll = raw.filter(pl.col("EnrollCount") == 0).height
    if n_zero_enroll > 0:
        logger.info("  %s grade rows have zero enrollment (contribute zero counts)", f"{n_zero_enroll:,}")

    counts = scale_rates_to_counts(raw)
    summed = sum_across_grades(counts)
    rates = recompute_total_teacher(scale_counts_to_rates(summed))
    shared = add_enrollment_shares(rates)
    out = drop_undefined(shared)

    n_dropped = shared.height - out.height
    if n_dropped > 0:
        pct = n_dropped / shared.height * 100
        logger.warning("  %s (%.1f%%) school-group rows have undefined values - dropping", f"{n_dropped:,}", pct)

    logger.info(
        "  %s school-group rows across %s schools",
        f"{out.height:,}",
        f"{out['CDS_CODE'].n_unique():,}",
    )

    return out.select([*GROUP_KEYS, "EnrollCount", *DERIVED_COLUMNS]).sort(["CDS_CODE", "EthnicGroup"])


def as_raw_observations(school_groups: pl.DataFrame, grade_label: str = "All") -> pl.DataFrame:
    """Express aggregated rows in the raw schema as a single grade category."""
    return school_groups.select([
        *ID_COLUMNS,
        pl.lit(grade_label).alias("GradeCategory"),
        "SchoolType",
        "EthnicGroup",
        "Elementary",
        "EnrollCount",
        pl.col("totalMatch").alias("MatchValue"),
        pl.col("totalMismatch").alias("MismatchValue"),
        pl.col("totalTeacher").alias("TotalTeacher"),
    ])
