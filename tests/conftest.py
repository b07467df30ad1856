import polars as pl
import pytest

from race_match_analysis.aggregation import aggregate_school_groups
from race_match_analysis.loader import normalize_raw_observations
from race_match_analysis.model import ModelSpec
from race_match_analysis.sample_data import ETHNIC_GROUPS, generate_raw_observations

SMALL_GROUPS = ETHNIC_GROUPS[:3]


def raw_row(cds, group, enroll, match, mismatch, total=None, grade="K-5", school_type="TPS", elementary=True):
    """One raw grade-level row with throwaway identifiers."""
    return {
        "CDS_CODE": cds,
        "DistrictCode": cds[:7],
        "SchoolCode": cds[7:],
        "COUNTY": "Alameda",
        "DISTRICT": "District",
        "SCHOOL": f"School {cds}",
        "GradeCategory": grade,
        "SchoolType": school_type,
        "EthnicGroup": group,
        "Elementary": elementary,
        "EnrollCount": float(enroll),
        "MatchValue": match,
        "MismatchValue": mismatch,
        "TotalTeacher": total if total is not None else (
            None if match is None or mismatch is None else match + mismatch
        ),
    }


def raw_frame(rows):
    return normalize_raw_observations(
        pl.DataFrame(
            rows,
            schema_overrides={"MatchValue": pl.Float64, "MismatchValue": pl.Float64, "TotalTeacher": pl.Float64},
        )
    )


@pytest.fixture(scope="session")
def raw_sample():
    """150 schools, 3 ethnic groups, no missing rates"""
    return normalize_raw_observations(generate_raw_observations(150, seed=1, groups=SMALL_GROUPS))


@pytest.fixture(scope="session")
def school_groups(raw_sample):
    return aggregate_school_groups(raw_sample)


@pytest.fixture(scope="session")
def small_spec():
    """Reduced predictor scope so selection stays fast"""
    return ModelSpec(quantitative=("enrollShare",), school_factors=("SchoolType",), group_factor="EthnicGroup")
