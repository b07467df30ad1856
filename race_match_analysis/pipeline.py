#!/usr/bin/env python3
"""
Race-match regression pipeline.

Goal
-----
Estimate how a school-group's proportion of same-race teachers (matchProp)
relates to the group's share of enrollment, teacher supply, school size,
school type, elementary status and ethnic group.

Data Flow
---------
1. Load raw school x grade x ethnic-group rows
2. Aggregate to school x ethnic-group observations (enrollment-weighted rates)
3. Seeded 80/20 train / holdout split
4. Assumption checks on the training set (collinearity, logit linearity)
5. Fit full-interaction weighted logit, prune by stepwise BIC
6. Evaluate: McFadden pseudo R², holdout RMSE and r², odds ratios
7. Predict over a synthetic enrollShare grid for plotting

Artifacts are written only after every stage has succeeded. A failure in any
stage raises PipelineStageError naming the stage; the CLI records it in
failure.json and exits with status 1.

Usage
-----
    python scripts/run_analysis.py \\
        --input data/raw/race_match_by_grade.csv \\
        --output-dir data/results
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import polars as pl

from race_match_analysis.aggregation import DERIVED_COLUMNS, aggregate_school_groups
from race_match_analysis.assumptions import (
    correlation_matrix,
    flag_collinear_pairs,
    logit_linearity_series,
    logit_linearity_summary,
)
from race_match_analysis.config import SELECTION_STRATEGIES, AnalysisSettings, load_config, settings_from_config
from race_match_analysis.evaluation import HoldoutMetrics, calibration_check, holdout_metrics, mcfadden_r2
from race_match_analysis.loader import RAW_COLUMNS, check_rate_consistency, load_raw_observations
from race_match_analysis.model import DesignFrame, FittedModel, ModelSpec, build_model, fit_null_model
from race_match_analysis.partition import Partition, split_train_holdout
from race_match_analysis.pipeline_validator import PipelineValidator
from race_match_analysis.report import (
    generate_report,
    write_coefficients_table,
    write_model_summary,
    write_results_json,
)
from race_match_analysis.run_manifest import write_run_manifest
from race_match_analysis.selection import SelectionResult, get_strategy
from race_match_analysis.visualization import (
    build_prediction_grid,
    plot_correlation_matrix,
    plot_logit_linearity,
    plot_predictions,
    predict_grid,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "analysis.yaml"


class PipelineStageError(RuntimeError):
    """A pipeline stage failed; no results are produced."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Stage '{stage}' failed: {type(cause).__name__}: {cause}")
        self.stage = stage
        self.cause = cause


@contextmanager
def _stage(name: str) -> Iterator[None]:
    logger.info("-" * 60)
    logger.info("STAGE: %s", name)
    try:
        yield
    except PipelineStageError:
        raise
    except Exception as e:
        raise PipelineStageError(name, e) from e


def spec_from_settings(settings: AnalysisSettings) -> ModelSpec:
    return ModelSpec(
        quantitative=tuple(settings.quantitative_predictors),
        school_factors=tuple(settings.school_factors),
        group_factor=settings.group_factor,
    )


@dataclass
class AnalysisResults:
    settings: AnalysisSettings
    spec: ModelSpec
    raw: pl.DataFrame
    school_groups: pl.DataFrame
    partition: Partition
    rate_violations: int
    correlation: pl.DataFrame
    collinear_pairs: list[tuple[str, str, float]]
    linearity_series: pl.DataFrame
    linearity_r: dict[str, float]
    model: FittedModel
    selection: SelectionResult
    null_model: FittedModel
    pseudo_r2: float
    holdout: HoldoutMetrics
    calibration: dict[str, float]
    grid_predictions: pl.DataFrame
    validator: PipelineValidator = field(default_factory=PipelineValidator)

    def sizes(self) -> dict[str, int]:
        return {
            "raw_rows": self.raw.height,
            "school_group_rows": self.school_groups.height,
            "train_rows": self.partition.train.height,
            "holdout_rows": self.partition.holdout.height,
            "rate_violations": self.rate_violations,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sizes": self.sizes(),
            "partition": {
                "seed": self.partition.seed,
                "train_fraction": self.partition.train_fraction,
                "stratified": self.partition.stratified,
            },
            "assumptions": {
                "correlation_matrix": self.correlation.rows_by_key("variable", named=True, unique=True),
                "collinear_pairs": [{"a": a, "b": b, "r": r} for a, b, r in self.collinear_pairs],
                "logit_linearity_r": self.linearity_r,
            },
            "fit": {
                "formula": self.spec.formula(),
                "strategy": self.selection.strategy,
                "n_models_scored": self.selection.n_evaluated,
                "selected_terms": self.model.term_names,
                "selection_history": [
                    {"step": s.step, "action": s.action, "term": s.term, "bic": s.score} for s in self.selection.history
                ],
                "n_train": self.model.n_obs,
                "weight_col": self.spec.weight,
                "loglike": self.model.loglike,
                "loglike_null": self.null_model.loglike,
                "bic": self.model.bic,
                "mcfadden_r2": self.pseudo_r2,
            },
            "holdout": self.holdout.to_dict(),
            "calibration": self.calibration,
            "coefficients": self.model.coefficients(),
            "odds_ratios": self.model.odds_ratios(),
        }


def run_analysis(settings: AnalysisSettings) -> AnalysisResults:
    """Run every stage in memory and return the results. Writes nothing."""
    validator = PipelineValidator()
    spec = spec_from_settings(settings)

    with _stage("load"):
        raw = load_raw_observations(settings.input_path)
        validator.checkpoint("raw", raw, required_cols=RAW_COLUMNS)
        rate_violations = check_rate_consistency(
            raw, settings.rate_tolerance, strict=settings.strict_rate_check
        )

    with _stage("aggregate"):
        school_groups = aggregate_school_groups(raw)
        report = validator.checkpoint(
            "school_groups",
            school_groups,
            required_cols=DERIVED_COLUMNS,
            key_cols=["CDS_CODE", "EthnicGroup"],
        )
        if report["status"] == "FAIL":
            raise ValueError(f"Aggregated data failed validation: {report['issues']}")
        validator.compare_checkpoints("raw", "school_groups")

    with _stage("partition"):
        partition = split_train_holdout(
            school_groups,
            train_fraction=settings.train_fraction,
            seed=settings.seed,
            response=spec.response,
            n_bins=settings.stratify_bins,
        )

    with _stage("assumptions"):
        predictors = list(spec.quantitative)
        corr = correlation_matrix(partition.train, predictors)
        collinear = flag_collinear_pairs(corr, settings.correlation_threshold)
        series = logit_linearity_series(partition.train, predictors, spec.response)
        linearity_r = logit_linearity_summary(series)

    with _stage("model"):
        design = DesignFrame(partition.train, spec)
        model, selection = build_model(partition.train, spec, get_strategy(settings.strategy), design=design)
        null_model = fit_null_model(partition.train, spec, design=design)

    with _stage("evaluate"):
        pseudo_r2 = mcfadden_r2(model, null_model)
        logger.info("McFadden pseudo R²: %.4f", pseudo_r2)
        holdout = holdout_metrics(model, partition.holdout)
        calibration = calibration_check(model, partition.train)

    with _stage("predict_grid"):
        grid = build_prediction_grid(partition.train, spec, settings.grid_step)
        grid_predictions = predict_grid(model, grid)

    return AnalysisResults(
        settings=settings,
        spec=spec,
        raw=raw,
        school_groups=school_groups,
        partition=partition,
        rate_violations=rate_violations,
        correlation=corr,
        collinear_pairs=collinear,
        linearity_series=series,
        linearity_r=linearity_r,
        model=model,
        selection=selection,
        null_model=null_model,
        pseudo_r2=pseudo_r2,
        holdout=holdout,
        calibration=calibration,
        grid_predictions=grid_predictions,
        validator=validator,
    )


def write_artifacts(results: AnalysisResults, output_dir: Path, *, command: str = "") -> dict[str, Path]:
    """Write data, tables, report, plots and manifest to output_dir."""
    output_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "school_groups": output_dir / "school_groups.parquet",
        "correlation_matrix": output_dir / "correlation_matrix.csv",
        "results": output_dir / "results.json",
        "coefficients": output_dir / "coefficients.parquet",
        "model_summary": output_dir / "statsmodels_summary.txt",
        "report": output_dir / "report.txt",
        "validation": output_dir / "validation_summary.txt",
    }

    with _stage("write"):
        results.school_groups.write_parquet(paths["school_groups"])
        results.correlation.write_csv(paths["correlation_matrix"])
        payload = results.to_dict()
        write_results_json(payload, paths["results"])
        write_coefficients_table(results.model, paths["coefficients"])
        write_model_summary(results.model, paths["model_summary"])
        text = generate_report(payload, paths["report"])
        paths["validation"].write_text(results.validator.summary() + "\n", encoding="utf-8")

        if results.settings.make_plots:
            paths["correlation_plot"] = output_dir / "correlation_matrix.png"
            paths["linearity_plot"] = output_dir / "logit_linearity.png"
            paths["prediction_plot"] = output_dir / "predictions.png"
            plot_correlation_matrix(results.correlation, paths["correlation_plot"])
            plot_logit_linearity(results.linearity_series, paths["linearity_plot"])
            plot_predictions(results.grid_predictions, results.partition.train, paths["prediction_plot"], results.spec)

        paths["manifest"] = write_run_manifest(
            output_dir=output_dir,
            command=command,
            repo_root=Path(__file__).parent.parent,
            input_path=results.settings.input_path,
            seed=results.settings.seed,
            train_fraction=results.settings.train_fraction,
            strategy=results.selection.strategy,
            formula=results.spec.formula(),
            selected_terms=results.model.term_names,
            sizes=results.sizes(),
            artifacts=paths,
        )

    print("\n" + text)
    return paths


# =============================================================================
# CLI
# =============================================================================


def _configure_logging(output_dir: Path) -> Path:
    """Log to stdout and output_dir/run.log."""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_path = output_dir / "run.log"

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    # Avoid duplicate handlers across repeated invocations
    existing = {(type(h), getattr(h, "baseFilename", None)) for h in root.handlers}
    fmt = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    if (logging.StreamHandler, None) not in existing:
        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt)
        root.addHandler(sh)

    if (logging.FileHandler, str(log_path.resolve())) not in existing:
        fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    return log_path


def _write_failure_json(output_dir: Path, error: PipelineStageError) -> Path:
    out = output_dir / "failure.json"
    payload = {
        "failed_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "stage": error.stage,
        "error_type": type(error.cause).__name__,
        "message": str(error.cause),
    }
    out.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return out


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Weighted logistic regression of school race-match proportions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--input", type=Path, default=None, help="Raw per-grade CSV (overrides config)")
    parser.add_argument("--output-dir", type=Path, default=None, help="Output directory (overrides config)")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: config/analysis.yaml)")
    parser.add_argument("--seed", type=int, default=None, help="Partition random seed (default: 42)")
    parser.add_argument("--train-fraction", type=float, default=None, help="Training share (default: 0.8)")
    parser.add_argument("--strategy", choices=SELECTION_STRATEGIES, default=None, help="Stepwise search direction")
    parser.add_argument(
        "--strict-rate-check",
        action="store_true",
        help="Fail if MatchValue + MismatchValue differs from TotalTeacher beyond tolerance",
    )
    parser.add_argument("--no-plots", action="store_true", help="Skip writing PNG plots")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> AnalysisSettings:
    if args.config is not None:
        config = load_config(args.config)
    elif DEFAULT_CONFIG_PATH.exists():
        config = load_config(DEFAULT_CONFIG_PATH)
    else:
        config = {}

    settings = settings_from_config(config, input_path=args.input)
    return settings.with_overrides(
        output_dir=args.output_dir,
        seed=args.seed,
        train_fraction=args.train_fraction,
        strategy=args.strategy,
        strict_rate_check=True if args.strict_rate_check else None,
        make_plots=False if args.no_plots else None,
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        settings = load_settings(args)
    except (FileNotFoundError, ValueError) as e:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
        logger.error("Invalid configuration: %s", e)
        return 1

    log_path = _configure_logging(settings.output_dir)

    print("=" * 70)
    print("RACE-MATCH WEIGHTED LOGISTIC REGRESSION")
    print("=" * 70)
    logger.info("Input: %s", settings.input_path)
    logger.info("Output: %s (log: %s)", settings.output_dir, log_path)

    command = " ".join(sys.argv if argv is None else ["race-match-analysis", *argv])
    try:
        results = run_analysis(settings)
        write_artifacts(results, settings.output_dir, command=command)
    except PipelineStageError as e:
        logger.error("%s", e)
        failure_path = _write_failure_json(settings.output_dir, e)
        logger.error("Failure recorded in %s", failure_path)
        return 1

    print(f"\nOutputs saved to: {settings.output_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
