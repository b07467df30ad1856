# race_match_analysis/visualization.py
"""
Plots for the race-match model:
- correlation heatmap of quantitative predictors
- empirical log-odds vs each quantitative predictor (lowess trend)
- predicted match probability over enrollShare, one facet per ethnic group,
  colored by SchoolType and styled by Elementary, over observed training rows
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import seaborn as sns

from race_match_analysis.model import FittedModel, ModelSpec

logger = logging.getLogger(__name__)

# Style
sns.set_style("whitegrid")
plt.rcParams.update({
    "font.family": "sans-serif",
    "font.size": 10,
    "axes.labelsize": 11,
    "axes.titlesize": 12,
    "legend.fontsize": 9,
    "figure.titlesize": 14,
    "grid.alpha": 0.3,
})


def build_prediction_grid(
    train: pl.DataFrame,
    spec: ModelSpec | None = None,
    step: float = 0.01,
    *,
    x: str = "enrollShare",
) -> pl.DataFrame:
    """
    Synthetic rows for drawing prediction curves.

    ``x`` spans [0, 1] at ``step``, crossed with every observed level of each
    categorical predictor. Other quantitative predictors are held at their
    training means.
    """
    spec = spec or ModelSpec()
    if x not in spec.quantitative:
        raise ValueError(f"Grid axis {x!r} is not a quantitative predictor of the model")

    # 1.0 is always included, even when step does not divide it
    values = np.append(np.arange(0.0, 1.0, step), 1.0)
    values = values[np.concatenate([np.diff(values) > step * 1e-6, [True]])]
    grid = pl.DataFrame({x: values})

    for col in spec.categorical_columns():
        levels = train.get_column(col).unique().sort()
        grid = grid.join(pl.DataFrame({col: levels}), how="cross")

    for q in spec.quantitative:
        if q != x:
            grid = grid.with_columns(pl.lit(float(train.get_column(q).mean())).alias(q))

    return grid


def predict_grid(model: FittedModel, grid: pl.DataFrame) -> pl.DataFrame:
    return grid.with_columns(pl.Series("predicted", model.predict(grid)))


def plot_correlation_matrix(corr: pl.DataFrame, output_path: Path) -> None:
    names = [c for c in corr.columns if c != "variable"]

    fig, ax = plt.subplots(figsize=(1.6 * len(names) + 3, 1.3 * len(names) + 2))
    sns.heatmap(
        corr.select(names).to_numpy(),
        annot=True,
        fmt=".2f",
        cmap="RdBu_r",
        vmin=-1,
        vmax=1,
        square=True,
        xticklabels=names,
        yticklabels=names,
        cbar_kws={"label": "Pearson r", "shrink": 0.75},
        ax=ax,
    )
    ax.set_title("Correlation among quantitative predictors")

    plt.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    logger.info("Wrote correlation heatmap: %s", output_path)


def plot_logit_linearity(series: pl.DataFrame, output_path: Path) -> None:
    predictors = series.get_column("predictor").unique(maintain_order=True).to_list()
    fig, axes = plt.subplots(1, len(predictors), figsize=(5 * len(predictors), 4), squeeze=False)

    for ax, name in zip(axes[0], predictors):
        sub = series.filter(pl.col("predictor") == name).to_pandas()
        sns.regplot(
            data=sub,
            x="value",
            y="log_odds",
            lowess=True,
            scatter_kws={"s": 6, "alpha": 0.25, "color": "#7f8c8d"},
            line_kws={"color": "#c0392b", "linewidth": 2},
            ax=ax,
        )
        ax.set_xlabel(name)
        ax.set_ylabel("log(p / (1 - p))")
        ax.set_title(f"Empirical log-odds vs {name}")

    plt.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    logger.info("Wrote logit linearity plot: %s", output_path)


def plot_predictions(
    grid_predictions: pl.DataFrame,
    train: pl.DataFrame,
    output_path: Path,
    spec: ModelSpec | None = None,
    *,
    x: str = "enrollShare",
    ncols: int = 4,
) -> None:
    spec = spec or ModelSpec()
    hue = "SchoolType" if "SchoolType" in spec.school_factors else None
    style = "Elementary" if "Elementary" in spec.school_factors else None

    if spec.group_factor:
        facets = grid_predictions.get_column(spec.group_factor).unique().sort().to_list()
    else:
        facets = [None]

    ncols = min(ncols, len(facets))
    nrows = math.ceil(len(facets) / ncols)
    fig, axes = plt.subplots(nrows, ncols, figsize=(4.5 * ncols, 3.8 * nrows), sharex=True, sharey=True, squeeze=False)

    for i, facet in enumerate(facets):
        ax = axes[i // ncols, i % ncols]
        if facet is None:
            obs, pred = train, grid_predictions
        else:
            obs = train.filter(pl.col(spec.group_factor) == facet)
            pred = grid_predictions.filter(pl.col(spec.group_factor) == facet)

        ax.scatter(obs.get_column(x).to_numpy(), obs.get_column(spec.response).to_numpy(), s=5, alpha=0.2, color="gray")
        sns.lineplot(
            data=pred.to_pandas(),
            x=x,
            y="predicted",
            hue=hue,
            style=style,
            linewidth=2,
            legend=(i == 0),
            ax=ax,
        )
        ax.set_title(str(facet) if facet is not None else "All groups")
        ax.set_xlabel(x)
        ax.set_ylabel(spec.response)
        ax.set_ylim(-0.02, 1.02)

    for j in range(len(facets), nrows * ncols):
        axes[j // ncols, j % ncols].set_visible(False)

    fig.suptitle("Predicted vs observed race-match proportion")
    plt.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    logger.info("Wrote prediction plot: %s", output_path)
