# race_match_analysis/pipeline_validator.py
"""
Data quality checkpoints between pipeline stages.
Tracks row counts, nulls in key columns and duplicate keys.
"""

from __future__ import annotations

import logging

import polars as pl

logger = logging.getLogger(__name__)


class PipelineValidator:
    """Track data through pipeline transformations"""

    def __init__(self) -> None:
        self.checkpoints: dict[str, dict[str, object]] = {}

    def checkpoint(
        self,
        step_name: str,
        df: pl.DataFrame,
        required_cols: list[str] | None = None,
        key_cols: list[str] | None = None,
    ) -> dict[str, object]:
        """Validate data at a pipeline checkpoint."""
        issues: list[str] = []
        warnings: list[str] = []

        if required_cols:
            missing = [c for c in required_cols if c not in df.columns]
            if missing:
                issues.append(f"Missing required columns: {missing}")

            for col in required_cols:
                if col in df.columns and df.height > 0:
                    null_count = df[col].null_count()
                    if null_count > 0:
                        pct = 100 * null_count / df.height
                        if pct > 50:
                            issues.append(f"{col}: {null_count:,} nulls ({pct:.1f}%)")
                        else:
                            warnings.append(f"{col}: {null_count:,} nulls ({pct:.1f}%)")

        if key_cols and all(c in df.columns for c in key_cols):
            n_unique = df.select(key_cols).unique().height
            if n_unique < df.height:
                issues.append(f"Found {df.height - n_unique:,} duplicate {'/'.join(key_cols)} rows")

        if df.height == 0:
            issues.append("No rows")

        report: dict[str, object] = {
            "step": step_name,
            "status": "FAIL" if issues else "PASS",
            "rows": df.height,
            "columns": len(df.columns),
            "issues": issues,
            "warnings": warnings,
        }
        self.checkpoints[step_name] = report

        if issues:
            logger.error("%s: FAILED validation", step_name)
            for issue in issues:
                logger.error("  - %s", issue)
        else:
            logger.info("%s: %s rows, %d cols", step_name, f"{df.height:,}", len(df.columns))

        for warning in warnings:
            logger.warning("  %s", warning)

        return report

    def compare_checkpoints(self, step1: str, step2: str) -> dict[str, object]:
        """Compare two checkpoints to report row changes"""
        if step1 not in self.checkpoints or step2 not in self.checkpoints:
            return {"status": "ERROR", "message": "Checkpoint not found"}

        rows1 = int(self.checkpoints[step1]["rows"])  # type: ignore[call-overload]
        rows2 = int(self.checkpoints[step2]["rows"])  # type: ignore[call-overload]
        row_change = rows2 - rows1
        row_pct = 100 * row_change / rows1 if rows1 > 0 else 0.0

        logger.info("%s -> %s: %+d rows (%+.1f%%)", step1, step2, row_change, row_pct)

        return {
            "from": step1,
            "to": step2,
            "row_change": row_change,
            "row_change_pct": row_pct,
            "status": "OK",
        }

    @property
    def failed(self) -> list[str]:
        return [name for name, report in self.checkpoints.items() if report["status"] == "FAIL"]

    def summary(self) -> str:
        """Validation summary as text"""
        lines = ["=" * 60, "PIPELINE VALIDATION SUMMARY", "=" * 60]

        for step_name, report in self.checkpoints.items():
            lines.append(f"\n[{report['status']}] {step_name}")
            lines.append(f"  Rows: {report['rows']:,}")
            lines.append(f"  Columns: {report['columns']}")

            if report["issues"]:
                lines.append("  Issues:")
                lines.extend(f"    - {issue}" for issue in report["issues"])  # type: ignore[attr-defined]

            if report["warnings"]:
                lines.append("  Warnings:")
                lines.extend(f"    - {warning}" for warning in report["warnings"])  # type: ignore[attr-defined]

        return "\n".join(lines)
