# race_match_analysis/loader.py
"""Load raw per-grade race-match records.

One input row describes a school x grade category x ethnic group cell:

- identifiers: CDS_CODE, DistrictCode, SchoolCode, COUNTY, DISTRICT, SCHOOL
- GradeCategory, SchoolType (TPS / Charter), EthnicGroup, Elementary (K-5 flag)
- EnrollCount: students in the cell
- MatchValue / MismatchValue / TotalTeacher: average same-race, other-race and
  total teachers per student (rates, not counts)

Identifier columns are kept as strings so CDS codes keep their leading zeros.
"""

from __future__ import annotations

import logging
from pathlib import Path

import polars as pl

__all__ = [
    "ID_COLUMNS",
    "RATE_COLUMNS",
    "RAW_COLUMNS",
    "SCHOOL_TYPES",
    "RateConsistencyError",
    "SchemaError",
    "check_rate_consistency",
    "load_raw_observations",
    "normalize_raw_observations",
    "validate_raw_schema",
]

logger = logging.getLogger(__name__)

ID_COLUMNS: list[str] = ["CDS_CODE", "DistrictCode", "SchoolCode", "COUNTY", "DISTRICT", "SCHOOL"]
RATE_COLUMNS: list[str] = ["MatchValue", "MismatchValue", "TotalTeacher"]
RAW_COLUMNS: list[str] = [
    *ID_COLUMNS,
    "GradeCategory",
    "SchoolType",
    "EthnicGroup",
    "Elementary",
    "EnrollCount",
    *RATE_COLUMNS,
]
SCHOOL_TYPES: frozenset[str] = frozenset({"TPS", "Charter"})

_TRUE_LABELS = {"true", "t", "1", "yes", "y"}
_FALSE_LABELS = {"false", "f", "0", "no", "n"}


class SchemaError(ValueError):
    """Input table is missing columns or holds values that cannot be parsed."""


class RateConsistencyError(ValueError):
    """MatchValue + MismatchValue disagrees with TotalTeacher beyond tolerance."""


def validate_raw_schema(cols: list[str]) -> None:
    missing = [c for c in RAW_COLUMNS if c not in cols]
    if missing:
        raise SchemaError(f"Missing required columns in raw input: {missing}")


def _elementary_expr() -> pl.Expr:
    label = pl.col("Elementary").cast(pl.Utf8).str.strip_chars().str.to_lowercase()
    return (
        pl.when(label.is_in(list(_TRUE_LABELS)))
        .then(pl.lit(True))
        .when(label.is_in(list(_FALSE_LABELS)))
        .then(pl.lit(False))
        .otherwise(pl.lit(None, dtype=pl.Boolean))
    )


def normalize_raw_observations(df: pl.DataFrame) -> pl.DataFrame:
    """Validate and coerce an in-memory raw table to the canonical dtypes.

    Raises:
        SchemaError: on missing columns, unparseable numbers, unknown school
            types, unparseable Elementary flags, negative enrollment or
            negative rates.
    """
    validate_raw_schema(df.columns)

    try:
        out = df.select(RAW_COLUMNS).with_columns(
            [pl.col(c).cast(pl.Utf8) for c in [*ID_COLUMNS, "GradeCategory", "SchoolType", "EthnicGroup"]]
            + [pl.col(c).cast(pl.Float64, strict=True) for c in ["EnrollCount", *RATE_COLUMNS]]
        )
    except pl.exceptions.PolarsError as e:
        raise SchemaError(f"Non-numeric values in EnrollCount or rate columns: {e}") from e

    parsed = out.with_columns(_elementary_expr().alias("_elementary"))
    bad = parsed.filter(pl.col("_elementary").is_null() & pl.col("Elementary").is_not_null())
    if bad.height > 0:
        samples = sorted(bad.get_column("Elementary").cast(pl.Utf8).unique().to_list())[:5]
        raise SchemaError(f"Unparseable Elementary flags: {samples}")
    out = parsed.drop("Elementary").rename({"_elementary": "Elementary"}).select(RAW_COLUMNS)

    unknown_types = sorted(set(out.get_column("SchoolType").drop_nulls().unique().to_list()) - SCHOOL_TYPES)
    if unknown_types:
        raise SchemaError(f"Unknown SchoolType labels: {unknown_types} (expected {sorted(SCHOOL_TYPES)})")

    key_nulls = {c: out[c].null_count() for c in ["CDS_CODE", "EthnicGroup", "SchoolType", "Elementary", "EnrollCount"]}
    key_nulls = {c: n for c, n in key_nulls.items() if n > 0}
    if key_nulls:
        raise SchemaError(f"Null values in key columns: {key_nulls}")

    n_negative = out.filter(pl.col("EnrollCount") < 0).height
    if n_negative > 0:
        raise SchemaError(f"{n_negative:,} rows have negative EnrollCount")

    negative_rates = {c: out.filter(pl.col(c) < 0).height for c in RATE_COLUMNS}
    negative_rates = {c: n for c, n in negative_rates.items() if n > 0}
    if negative_rates:
        raise SchemaError(f"Negative teacher rates: {negative_rates}")

    return out


def load_raw_observations(path: Path | str) -> pl.DataFrame:
    """Read the raw CSV extract into a validated polars DataFrame."""
    path = Path(path)
    if not path.exists():
        raise SchemaError(f"Input file not found: {path}")

    logger.info("Loading raw observations from %s", path)

    string_cols = [*ID_COLUMNS, "GradeCategory", "SchoolType", "EthnicGroup", "Elementary"]
    try:
        header = pl.read_csv(path, n_rows=0).columns
        validate_raw_schema(header)
        raw = pl.read_csv(
            path,
            schema_overrides=dict.fromkeys(string_cols, pl.Utf8),
            null_values=["", "NA", "NaN", "*"],
            infer_schema_length=10000,
        )
    except pl.exceptions.PolarsError as e:
        raise SchemaError(f"Could not parse {path}: {e}") from e

    df = normalize_raw_observations(raw)

    logger.info(
        "  Loaded %s rows: %s schools, %s ethnic groups, %s grade categories",
        f"{df.height:,}",
        f"{df['CDS_CODE'].n_unique():,}",
        df["EthnicGroup"].n_unique(),
        df["GradeCategory"].n_unique(),
    )
    return df


def check_rate_consistency(raw: pl.DataFrame, tolerance: float = 0.05, *, strict: bool = False) -> int:
    """Count rows where MatchValue + MismatchValue drifts from TotalTeacher.

    Only rows with all three rates defined are checked. Returns the number of
    violating rows; logs a warning when there are any, and raises
    RateConsistencyError instead when ``strict`` is set.
    """
    defined = raw.filter(pl.all_horizontal(pl.col(RATE_COLUMNS).is_not_null()))
    violations = defined.filter(
        (pl.col("MatchValue") + pl.col("MismatchValue") - pl.col("TotalTeacher")).abs() > tolerance
    ).height

    if violations == 0:
        logger.info("  Rate check: Match + Mismatch within %.3g of TotalTeacher for all defined rows", tolerance)
        return 0

    msg = (
        f"{violations:,} of {defined.height:,} rows have |MatchValue + MismatchValue - TotalTeacher| > {tolerance:g}"
    )
    if strict:
        raise RateConsistencyError(msg)
    logger.warning("  Rate check: %s", msg)
    return violations
