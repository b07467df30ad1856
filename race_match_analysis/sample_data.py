# race_match_analysis/sample_data.py
"""
Synthetic race-match records for local testing.

Output matches the raw extract's structure and data types: one row per
school x grade category x ethnic group, per-student teacher rates, and
TRUE/FALSE Elementary flags. Match proportions follow a known logistic
relationship with enrollment share, school type and ethnic group so fitted
models have something to find.
"""

from __future__ import annotations

import math
import random

import polars as pl

from race_match_analysis.loader import RAW_COLUMNS

ETHNIC_GROUPS: tuple[str, ...] = (
    "African American",
    "American Indian or Alaska Native",
    "Asian",
    "Filipino",
    "Hispanic or Latino",
    "Pacific Islander",
    "White",
)

# Deviation from the grand mean on the logit scale
GROUP_EFFECTS: dict[str, float] = {
    "African American": -0.6,
    "American Indian or Alaska Native": -1.2,
    "Asian": -0.4,
    "Filipino": -0.8,
    "Hispanic or Latino": 0.3,
    "Pacific Islander": -1.0,
    "White": 1.5,
}

COUNTIES: tuple[str, ...] = ("Alameda", "Fresno", "Los Angeles", "Sacramento", "San Diego")


def _expit(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def generate_raw_observations(
    num_schools: int = 200,
    *,
    seed: int | None = 0,
    groups: tuple[str, ...] = ETHNIC_GROUPS,
    zero_enrollment_rate: float = 0.05,
    missing_rate: float = 0.0,
) -> pl.DataFrame:
    """
    Build a raw grade-level table.

    Args:
        num_schools: Number of schools
        seed: Seed for random.Random (None for a fresh draw)
        groups: Ethnic group labels to sample from (at least two)
        zero_enrollment_rate: Chance that a grade x group cell has no students
        missing_rate: Chance that a cell's MismatchValue is missing

    Returns:
        DataFrame with the raw input columns
    """
    if len(groups) < 2:
        raise ValueError("Need at least two ethnic groups")

    rng = random.Random(seed)
    rows: list[dict[str, object]] = []

    for i in range(num_schools):
        county_idx = rng.randrange(len(COUNTIES))
        district = 10000 + rng.randrange(50)
        school = 100000 + i
        cds = f"{county_idx + 1:02d}{district:05d}{school:07d}"

        school_type = "Charter" if rng.random() < 0.25 else "TPS"
        elementary = rng.random() < 0.5
        grades = ["K-5", "6-8"] if elementary and rng.random() < 0.3 else (["K-5"] if elementary else ["6-8", "9-12"])
        present = rng.sample(list(groups), k=rng.randint(2, len(groups)))
        teachers_per_student = rng.uniform(1.0, 1.5) if elementary else rng.uniform(4.0, 6.0)

        cells: list[tuple[str, str, int]] = []
        for grade in grades:
            for group in present:
                size = 0 if rng.random() < zero_enrollment_rate else rng.randint(5, 250)
                cells.append((grade, group, size))

        school_total = sum(n for _, _, n in cells) or 1
        group_totals = {g: sum(n for _, gg, n in cells if gg == g) for g in present}

        for grade, group, size in cells:
            share = group_totals[group] / school_total
            logit = (
                -1.5
                + 2.5 * share
                + GROUP_EFFECTS.get(group, 0.0)
                + (0.3 if school_type == "Charter" else 0.0)
                + rng.gauss(0.0, 0.3)
            )
            p = _expit(logit)
            total = teachers_per_student * rng.uniform(0.9, 1.1)
            match = round(total * p, 4)
            mismatch = round(total * (1.0 - p), 4)
            rows.append({
                "CDS_CODE": cds,
                "DistrictCode": f"{district:05d}",
                "SchoolCode": f"{school:07d}",
                "COUNTY": COUNTIES[county_idx],
                "DISTRICT": f"District {district}",
                "SCHOOL": f"School {school}",
                "GradeCategory": grade,
                "SchoolType": school_type,
                "EthnicGroup": group,
                "Elementary": "TRUE" if elementary else "FALSE",
                "EnrollCount": float(size),
                "MatchValue": match,
                "MismatchValue": None if rng.random() < missing_rate else mismatch,
                "TotalTeacher": round(match + mismatch, 4),
            })

    schema = dict.fromkeys(RAW_COLUMNS, pl.Utf8)
    schema.update({"EnrollCount": pl.Float64, "MatchValue": pl.Float64, "MismatchValue": pl.Float64, "TotalTeacher": pl.Float64})
    return pl.DataFrame(rows, schema=schema)
