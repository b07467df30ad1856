#!/usr/bin/env python3
"""
Generate a synthetic raw race-match CSV for local testing.

Usage:
    python scripts/generate_sample_data.py --num-schools 500 --seed 1 --out data/samples/race_match_sample.csv
"""

from __future__ import annotations

import argparse
from pathlib import Path

from race_match_analysis.sample_data import generate_raw_observations


def main() -> int:
    ap = argparse.ArgumentParser(description="Generate a synthetic raw race-match CSV.")
    ap.add_argument("--num-schools", type=int, default=500)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--missing-rate", type=float, default=0.01, help="Share of cells with a missing MismatchValue")
    ap.add_argument("--out", type=Path, default=Path("data/samples/race_match_sample.csv"))
    args = ap.parse_args()

    df = generate_raw_observations(args.num_schools, seed=args.seed, missing_rate=args.missing_rate)

    args.out.parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(args.out)
    print(f"Wrote {args.out} ({df.height} rows)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
