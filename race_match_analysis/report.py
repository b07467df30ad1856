# race_match_analysis/report.py
"""Write model results: JSON, coefficient table, statsmodels summary, text report."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from race_match_analysis.model import FittedModel

logger = logging.getLogger(__name__)


def _json_safe(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    return obj


def _fmt(value: float | None, digits: int = 4) -> str:
    if value is None or not math.isfinite(value):
        return "n/a"
    return f"{value:.{digits}f}"


def write_results_json(results: dict[str, Any], output_path: Path) -> None:
    output_path.write_text(json.dumps(_json_safe(results), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.info("Wrote results: %s", output_path)


def write_coefficients_table(model: FittedModel, output_path: Path) -> None:
    model.coefficient_table().write_parquet(output_path)
    logger.info("Wrote coefficient table: %s", output_path)


def write_model_summary(model: FittedModel, output_path: Path) -> None:
    output_path.write_text(model.summary_text() + "\n", encoding="utf-8")
    logger.info("Wrote statsmodels summary: %s", output_path)


def generate_report(results: dict[str, Any], output_path: Path, *, top_n: int = 15) -> str:
    """Generate human-readable summary."""
    sizes = results["sizes"]
    fit = results["fit"]
    holdout = results["holdout"]

    lines = [
        "=" * 70,
        "RACE-MATCH WEIGHTED LOGISTIC REGRESSION",
        "=" * 70,
        "",
        "DATA",
        "-" * 70,
        f"Raw grade-level rows:        {sizes['raw_rows']:,}",
        f"School x ethnic-group rows:  {sizes['school_group_rows']:,}",
        f"Training rows:               {sizes['train_rows']:,}",
        f"Holdout rows:                {sizes['holdout_rows']:,}",
        f"Rate-sum violations:         {sizes.get('rate_violations', 0):,}",
        "",
        "ASSUMPTIONS",
        "-" * 70,
    ]

    collinear = results["assumptions"]["collinear_pairs"]
    if collinear:
        for pair in collinear:
            lines.append(f"  Collinear: {pair['a']} ~ {pair['b']} (r={pair['r']:.3f})")
    else:
        lines.append("  No collinear predictor pairs above threshold")
    for name, r in results["assumptions"]["logit_linearity_r"].items():
        lines.append(f"  log-odds vs {name}: r={_fmt(r, 3)}")

    lines.extend([
        "",
        "MODEL",
        "-" * 70,
        f"Formula (full): {fit['formula']}",
        f"Selection strategy: {fit['strategy']}",
        f"Models scored: {fit['n_models_scored']}",
        f"Selected terms ({len(fit['selected_terms'])}):",
    ])
    if fit["selected_terms"]:
        lines.extend(f"  {t}" for t in fit["selected_terms"])
    else:
        lines.append("  (intercept only)")
    lines.extend([
        f"Log-likelihood: {fit['loglike']:.3f}",
        f"Null log-likelihood: {fit['loglike_null']:.3f}",
        f"BIC: {fit['bic']:.3f}",
        f"McFadden pseudo R²: {fit['mcfadden_r2']:.4f}",
        "",
        "HOLDOUT",
        "-" * 70,
        f"RMSE: {holdout['rmse']:.4f}",
        f"Pearson r²: {_fmt(holdout['r2'])}",
        "",
        f"ODDS RATIOS (top {top_n} by |log-odds|)",
        "-" * 70,
    ])

    coefs = results["coefficients"]
    ranked = sorted(
        ((name, coef) for name, coef in coefs.items() if name != "Intercept"),
        key=lambda x: abs(x[1]),
        reverse=True,
    )[:top_n]
    for name, coef in ranked:
        arrow = "↑" if coef > 0 else "↓"
        lines.append(f"  {arrow} {name}: OR={results['odds_ratios'][name]:.3f}, coef={coef:.3f}")

    lines.append("\n" + "=" * 70)

    text = "\n".join(lines)
    output_path.write_text(text + "\n", encoding="utf-8")
    logger.info("Report saved to %s", output_path)
    return text
