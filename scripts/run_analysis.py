#!/usr/bin/env python3
"""
Run the race-match regression end to end.

Usage:
    python scripts/run_analysis.py --input data/raw/race_match_by_grade.csv
    python scripts/run_analysis.py --input data/raw/race_match_by_grade.csv --output-dir data/results --seed 7
    python scripts/run_analysis.py --config config/custom.yaml --strategy backward --no-plots
"""

from __future__ import annotations

from race_match_analysis.pipeline import main

if __name__ == "__main__":
    raise SystemExit(main())
