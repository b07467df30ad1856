"""Tests for grade -> school x ethnic-group aggregation"""

import polars as pl
import pytest
from conftest import raw_frame, raw_row

from race_match_analysis.aggregation import (
    aggregate_school_groups,
    as_raw_observations,
    scale_counts_to_rates,
    scale_rates_to_counts,
    sum_across_grades,
)
from race_match_analysis.loader import normalize_raw_observations
from race_match_analysis.sample_data import generate_raw_observations


def _row(df, cds, group):
    return df.filter((pl.col("CDS_CODE") == cds) & (pl.col("EthnicGroup") == group)).row(0, named=True)


def test_two_school_scenario():
    """School A: X(80 students, .5/.5), Y(20 students, .2/.8)"""
    raw = raw_frame([
        raw_row("01000000000001", "X", 80, 0.5, 0.5),
        raw_row("01000000000001", "Y", 20, 0.2, 0.8),
        raw_row("01000000000002", "X", 50, 0.3, 0.7),
        raw_row("01000000000002", "Y", 150, 0.6, 0.4),
    ])

    out = aggregate_school_groups(raw)
    assert out.height == 4

    x = _row(out, "01000000000001", "X")
    y = _row(out, "01000000000001", "Y")
    assert x["enrollTotal"] == pytest.approx(100)
    assert y["enrollTotal"] == pytest.approx(100)
    assert x["enrollShare"] == pytest.approx(0.8)
    assert y["enrollShare"] == pytest.approx(0.2)
    assert x["matchProp"] == pytest.approx(0.5)
    assert y["matchProp"] == pytest.approx(0.2)

    b = _row(out, "01000000000002", "Y")
    assert b["enrollShare"] == pytest.approx(0.75)
    assert b["matchProp"] == pytest.approx(0.6)


def test_rates_weighted_by_grade_enrollment():
    """A 10-student grade must not pull the school rate as hard as a 90-student grade"""
    raw = raw_frame([
        raw_row("01000000000001", "X", 10, 0.1, 0.9, grade="K-5"),
        raw_row("01000000000001", "X", 90, 0.5, 0.5, grade="6-8"),
        raw_row("01000000000001", "Y", 100, 0.2, 0.8, grade="K-5"),
    ])

    out = aggregate_school_groups(raw)
    x = _row(out, "01000000000001", "X")

    assert x["EnrollCount"] == pytest.approx(100)
    assert x["totalMatch"] == pytest.approx((10 * 0.1 + 90 * 0.5) / 100)
    assert x["totalMismatch"] == pytest.approx((10 * 0.9 + 90 * 0.5) / 100)
    assert x["totalMatch"] != pytest.approx((0.1 + 0.5) / 2)
    assert x["enrollTotal"] == pytest.approx(200)


def test_scale_steps_are_pure():
    raw = raw_frame([raw_row("01000000000001", "X", 40, 0.25, 0.75)])
    before = raw.clone()

    counts = scale_rates_to_counts(raw)
    summed = sum_across_grades(counts)
    rates = scale_counts_to_rates(summed)

    assert raw.equals(before)
    assert counts["totalMatch"][0] == pytest.approx(10.0)
    assert counts["totalMismatch"][0] == pytest.approx(30.0)
    assert "GradeCategory" not in summed.columns
    assert rates["totalMatch"][0] == pytest.approx(0.25)


def test_zero_enrollment_grade_contributes_zero():
    """A zero-enrollment grade with undefined rates does not poison the group"""
    raw = raw_frame([
        raw_row("01000000000001", "X", 60, 0.4, 0.6, grade="K-5"),
        raw_row("01000000000001", "X", 0, None, None, grade="6-8"),
        raw_row("01000000000001", "Y", 40, 0.1, 0.9, grade="K-5"),
    ])

    out = aggregate_school_groups(raw)
    x = _row(out, "01000000000001", "X")

    assert out.height == 2
    assert x["totalMatch"] == pytest.approx(0.4)
    assert x["enrollShare"] == pytest.approx(0.6)


def test_zero_enrollment_group_is_dropped():
    raw = raw_frame([
        raw_row("01000000000001", "X", 50, 0.4, 0.6),
        raw_row("01000000000001", "Y", 0, 0.3, 0.7),
    ])

    out = aggregate_school_groups(raw)

    assert out.get_column("EthnicGroup").to_list() == ["X"]
    assert out["enrollShare"][0] == pytest.approx(1.0)
    for col in ["totalMatch", "totalMismatch", "totalTeacher", "enrollShare", "matchProp"]:
        assert out[col].is_finite().all()


def test_missing_rate_in_enrolled_grade_drops_group():
    raw = raw_frame([
        raw_row("01000000000001", "X", 50, 0.4, 0.6, grade="K-5"),
        raw_row("01000000000001", "X", 30, 0.4, None, grade="6-8"),
        raw_row("01000000000001", "Y", 20, 0.1, 0.9, grade="K-5"),
    ])

    out = aggregate_school_groups(raw)

    assert out.get_column("EthnicGroup").to_list() == ["Y"]


def test_zero_teachers_dropped():
    raw = raw_frame([
        raw_row("01000000000001", "X", 50, 0.0, 0.0),
        raw_row("01000000000001", "Y", 50, 0.2, 0.8),
    ])

    out = aggregate_school_groups(raw)

    assert out.get_column("EthnicGroup").to_list() == ["Y"]


def test_single_group_school_has_full_share():
    raw = raw_frame([raw_row("01000000000001", "X", 75, 0.3, 0.2)])

    out = aggregate_school_groups(raw)

    assert out["enrollShare"][0] == pytest.approx(1.0)
    assert out["matchProp"][0] == pytest.approx(0.6)


def test_total_teacher_is_match_plus_mismatch(school_groups):
    diff = (school_groups["totalMatch"] + school_groups["totalMismatch"] - school_groups["totalTeacher"]).abs()
    assert diff.max() < 1e-12


def test_enroll_shares_sum_to_one_per_school(school_groups):
    sums = school_groups.group_by("CDS_CODE").agg(pl.col("enrollShare").sum())
    assert sums["enrollShare"].to_numpy() == pytest.approx(1.0)


def test_unique_school_group_key(school_groups):
    assert school_groups.select(["CDS_CODE", "EthnicGroup"]).unique().height == school_groups.height


def test_match_prop_in_unit_interval(school_groups):
    assert school_groups["matchProp"].min() >= 0.0
    assert school_groups["matchProp"].max() <= 1.0


def test_aggregation_is_idempotent(school_groups):
    again = aggregate_school_groups(as_raw_observations(school_groups))

    assert again.height == school_groups.height
    assert again["CDS_CODE"].to_list() == school_groups["CDS_CODE"].to_list()
    assert again["EthnicGroup"].to_list() == school_groups["EthnicGroup"].to_list()
    for col in ["EnrollCount", "totalMatch", "totalMismatch", "totalTeacher", "enrollTotal", "enrollShare", "matchProp"]:
        assert again[col].to_numpy() == pytest.approx(school_groups[col].to_numpy(), rel=1e-9)


def test_missing_values_never_reach_output():
    raw = normalize_raw_observations(generate_raw_observations(80, seed=3, missing_rate=0.2))

    out = aggregate_school_groups(raw)

    assert out.height > 0
    assert out.null_count().sum_horizontal().item() == 0
    assert (out["totalTeacher"] > 0).all()


def test_out_of_range_match_prop_dropped():
    """Rows that skip loader validation still never yield matchProp outside [0, 1]"""
    raw = pl.DataFrame(
        [
            raw_row("01000000000001", "X", 50, 0.6, -0.2),
            raw_row("01000000000001", "Y", 50, 0.2, 0.8),
        ],
        schema_overrides={"MatchValue": pl.Float64, "MismatchValue": pl.Float64, "TotalTeacher": pl.Float64},
    )

    out = aggregate_school_groups(raw)

    assert out.get_column("EthnicGroup").to_list() == ["Y"]
    assert out["matchProp"][0] == pytest.approx(0.2)


def test_dropped_group_keeps_its_enrollment_in_school_total():
    """enrollTotal counts every enrolled group, so shares of the surviving groups sum below 1"""
    raw = raw_frame([
        raw_row("01000000000001", "X", 50, 0.4, 0.6),
        raw_row("01000000000001", "Y", 30, 0.3, None),
        raw_row("01000000000001", "Z", 20, 0.1, 0.9),
    ])

    out = aggregate_school_groups(raw)

    assert out.get_column("EthnicGroup").to_list() == ["X", "Z"]
    assert out["enrollTotal"].to_list() == pytest.approx([100.0, 100.0])
    assert out["enrollShare"].to_list() == pytest.approx([0.5, 0.2])
    assert out["enrollShare"].sum() == pytest.approx(0.7)
