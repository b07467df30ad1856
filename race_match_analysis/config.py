"""
Configuration loader for race-match analysis runs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, cast

import yaml

logger = logging.getLogger(__name__)

DEFAULT_QUANTITATIVE_PREDICTORS: tuple[str, ...] = ("enrollShare", "totalTeacher", "enrollTotal")
DEFAULT_SCHOOL_FACTORS: tuple[str, ...] = ("Elementary", "SchoolType")
SELECTION_STRATEGIES: tuple[str, ...] = ("both", "backward", "forward")


@dataclass(frozen=True)
class AnalysisSettings:
    """Parameters for a single analysis run."""

    input_path: Path
    output_dir: Path = Path("data/results")
    seed: int = 42
    train_fraction: float = 0.8
    stratify_bins: int = 5
    grid_step: float = 0.01
    correlation_threshold: float = 0.8
    rate_tolerance: float = 0.05
    strict_rate_check: bool = False
    strategy: str = "both"
    quantitative_predictors: tuple[str, ...] = DEFAULT_QUANTITATIVE_PREDICTORS
    school_factors: tuple[str, ...] = DEFAULT_SCHOOL_FACTORS
    group_factor: str | None = "EthnicGroup"
    make_plots: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 < self.train_fraction < 1.0:
            raise ValueError(f"train_fraction must be in (0, 1), got {self.train_fraction}")
        if not 0.0 < self.grid_step <= 1.0:
            raise ValueError(f"grid_step must be in (0, 1], got {self.grid_step}")
        if self.stratify_bins < 1:
            raise ValueError(f"stratify_bins must be >= 1, got {self.stratify_bins}")
        if self.strategy not in SELECTION_STRATEGIES:
            raise ValueError(f"strategy must be one of {SELECTION_STRATEGIES}, got {self.strategy!r}")
        if not self.quantitative_predictors:
            raise ValueError("At least one quantitative predictor is required")

    def with_overrides(self, **overrides: Any) -> AnalysisSettings:
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to config file. If None, uses default config/analysis.yaml

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    if config_path is None:
        # Default to config/analysis.yaml relative to project root
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config" / "analysis.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        config: dict[str, Any] = {}
    elif not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    else:
        config = cast(dict[str, Any], data)

    return cast(dict[str, Any], _substitute_env_vars(config))


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        return os.getenv(var_name, obj)  # fall back to original if unset
    return obj


def settings_from_config(config: dict[str, Any], input_path: Path | str | None = None) -> AnalysisSettings:
    """
    Build AnalysisSettings from a config mapping.

    Keys are flattened from the ``data``, ``partition``, ``model`` and
    ``plots`` sections. Unknown keys are logged as a warning and kept in
    ``extra``; nothing in the pipeline reads them.

    Args:
        config: Mapping as returned by load_config()
        input_path: Overrides ``data.input_path`` when given

    Returns:
        AnalysisSettings
    """
    data = dict(config.get("data") or {})
    partition = dict(config.get("partition") or {})
    model = dict(config.get("model") or {})
    plots = dict(config.get("plots") or {})

    raw_input = input_path if input_path is not None else data.pop("input_path", None)
    data.pop("input_path", None)
    if raw_input is None:
        raise ValueError("No input path given (set data.input_path or pass --input)")

    flat: dict[str, Any] = {}
    flat.update(data)
    flat.update(partition)
    flat.update(model)
    if "enabled" in plots:
        flat["make_plots"] = bool(plots.pop("enabled"))
    flat.update(plots)

    known = {f.name for f in fields(AnalysisSettings)}
    kwargs: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in flat.items():
        if key in known and key not in {"input_path", "extra"}:
            kwargs[key] = value
        else:
            extra[key] = value

    if extra:
        logger.warning("Ignoring unknown config keys: %s", sorted(extra))

    if "output_dir" in kwargs:
        kwargs["output_dir"] = Path(kwargs["output_dir"])
    for key in ("quantitative_predictors", "school_factors"):
        if key in kwargs:
            kwargs[key] = tuple(kwargs[key] or ())

    return AnalysisSettings(input_path=Path(raw_input), extra=extra, **kwargs)
