# race_match_analysis/run_manifest.py
from __future__ import annotations

import json
import platform
import subprocess
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class RunManifest:
    """Lightweight, reproducible metadata for an analysis run."""

    created_utc: str
    python: str
    platform: str
    git_commit: str | None
    command: str
    output_dir: str

    # Inputs
    input_path: str

    # Key parameters
    seed: int
    train_fraction: float
    strategy: str
    formula: str
    selected_terms: list[str]

    # Dataset sizes
    raw_rows: int
    school_group_rows: int
    train_rows: int
    holdout_rows: int

    # Outputs
    artifacts: dict[str, str]


def _safe_git_commit(repo_root: Path) -> str | None:
    """Best-effort git commit retrieval without depending on GitPython."""
    try:
        r = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if r.returncode == 0:
        return r.stdout.strip() or None
    return None


def write_run_manifest(
    *,
    output_dir: str | Path,
    command: str,
    repo_root: str | Path | None = None,
    input_path: str | Path,
    seed: int,
    train_fraction: float,
    strategy: str,
    formula: str,
    selected_terms: list[str],
    sizes: dict[str, int],
    artifacts: dict[str, Any],
) -> Path:
    """Write run_manifest.json with parameters, dataset sizes and output paths."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    created_utc = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    repo_root_path = Path(repo_root) if repo_root is not None else None
    git_commit = _safe_git_commit(repo_root_path) if repo_root_path else None

    manifest = RunManifest(
        created_utc=created_utc,
        python=sys.version.replace("\n", " "),
        platform=f"{platform.system()} {platform.release()} ({platform.machine()})",
        git_commit=git_commit,
        command=command,
        output_dir=str(out),
        input_path=str(input_path),
        seed=seed,
        train_fraction=train_fraction,
        strategy=strategy,
        formula=formula,
        selected_terms=list(selected_terms),
        raw_rows=int(sizes.get("raw_rows", 0)),
        school_group_rows=int(sizes.get("school_group_rows", 0)),
        train_rows=int(sizes.get("train_rows", 0)),
        holdout_rows=int(sizes.get("holdout_rows", 0)),
        artifacts={k: str(v) for k, v in artifacts.items()},
    )

    manifest_path = out / "run_manifest.json"
    manifest_path.write_text(json.dumps(asdict(manifest), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return manifest_path
