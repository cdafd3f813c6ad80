"""Figures for a fitted eigenmodel: heatmaps, calibration, traces, latent clusters.

Plotting is exploratory: empty inputs skip the figure instead of failing
the run.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from sklearn.cluster import KMeans

from .registry import TeamRegistry
from .sampling import Posterior

log = logging.getLogger(__name__)

RANDOM_STATE = 42


def cluster_teams(
    embeddings: np.ndarray,
    registry: TeamRegistry,
    n_clusters: int = 3,
    random_state: int = RANDOM_STATE,
) -> pd.DataFrame:
    """KMeans clusters of posterior-mean latent positions, one row per team."""
    columns = ["team", "cluster"] + [f"u{k}" for k in range(embeddings.shape[1] if embeddings.ndim == 2 else 0)]
    if embeddings.size == 0 or len(registry) == 0:
        return pd.DataFrame(columns=columns)

    k = min(n_clusters, len(registry))
    labels = KMeans(n_clusters=k, n_init=10, random_state=random_state).fit_predict(embeddings)
    frame = pd.DataFrame(embeddings, columns=columns[2:])
    frame.insert(0, "cluster", labels.astype(int))
    frame.insert(0, "team", list(registry.names))
    return frame


def _save(fig, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    log.debug("Wrote %s", path)
    return path


def plot_adjacency_comparison(
    truth: np.ndarray,
    predicted: np.ndarray,
    registry: TeamRegistry,
    path: Path,
) -> Optional[Path]:
    """Ground-truth network next to posterior mean edge probabilities."""
    if truth.size == 0:
        log.info("No teams to plot; skipping %s", path.name)
        return None

    names = list(registry.names)
    fig, axes = plt.subplots(1, 2, figsize=(14, 6.5))
    for ax, matrix, title in [
        (axes[0], truth, "Observed over edges"),
        (axes[1], predicted, "Posterior mean P(over)"),
    ]:
        im = ax.imshow(matrix, vmin=0, vmax=1, cmap="viridis")
        ax.set_title(title)
        ax.set_xticks(range(len(names)))
        ax.set_yticks(range(len(names)))
        ax.set_xticklabels(names, rotation=90, fontsize=7)
        ax.set_yticklabels(names, fontsize=7)
        fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    return _save(fig, path)


def plot_calibration(comparison: pd.DataFrame, path: Path, n_bins: int = 10) -> Optional[Path]:
    """Observed over rate against binned predicted probability."""
    frame = comparison[comparison["observed"]] if "observed" in comparison.columns else comparison
    if frame.empty:
        log.info("No observed dyads; skipping %s", path.name)
        return None

    bins = np.linspace(0, 1, n_bins + 1)
    binned = frame.assign(bin=pd.cut(frame["prob"], bins, include_lowest=True))
    table = binned.groupby("bin", observed=True).agg(
        predicted=("prob", "mean"),
        actual=("truth", "mean"),
        count=("truth", "size"),
    )

    fig, ax = plt.subplots(figsize=(6, 6))
    ax.plot([0, 1], [0, 1], linestyle="--", color="grey", label="Perfect calibration")
    ax.scatter(table["predicted"], table["actual"], s=20 + 10 * table["count"], alpha=0.8)
    ax.plot(table["predicted"], table["actual"], marker="", linewidth=1)
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_xlabel("Predicted P(over)")
    ax.set_ylabel("Observed over rate")
    ax.set_title("Calibration")
    ax.legend(loc="upper left")
    return _save(fig, path)


def plot_traces(draws: Dict[str, np.ndarray], path: Path, max_params: int = 8) -> Optional[Path]:
    """Trace plots (one line per chain) for up to ``max_params`` scalars."""
    names = list(draws)[:max_params]
    if not names:
        log.info("No parameters to trace; skipping %s", path.name)
        return None

    fig, axes = plt.subplots(len(names), 1, figsize=(10, 1.8 * len(names)), sharex=True, squeeze=False)
    for ax, name in zip(axes[:, 0], names):
        for c, chain in enumerate(draws[name]):
            ax.plot(chain, linewidth=0.6, alpha=0.8, label=f"chain {c+1}")
        ax.set_ylabel(name, fontsize=8)
    axes[-1, 0].set_xlabel("Draw")
    axes[0, 0].legend(loc="upper right", fontsize=7, ncol=4)
    return _save(fig, path)


def plot_latent_space(clusters: pd.DataFrame, path: Path) -> Optional[Path]:
    """Teams in the first two latent dimensions, coloured by cluster."""
    if clusters.empty:
        log.info("No latent positions; skipping %s", path.name)
        return None

    x = clusters["u0"].to_numpy()
    y = clusters["u1"].to_numpy() if "u1" in clusters.columns else np.zeros_like(x)

    fig, ax = plt.subplots(figsize=(8, 7))
    scatter = ax.scatter(x, y, c=clusters["cluster"], cmap="tab10", s=60)
    for team, xi, yi in zip(clusters["team"], x, y):
        ax.annotate(team, (xi, yi), textcoords="offset points", xytext=(4, 4), fontsize=8)
    ax.axhline(0, color="grey", linewidth=0.5)
    ax.axvline(0, color="grey", linewidth=0.5)
    ax.set_xlabel("Latent dimension 1")
    ax.set_ylabel("Latent dimension 2" if "u1" in clusters.columns else "")
    ax.set_title("Posterior mean latent positions")
    ax.legend(*scatter.legend_elements(), title="Cluster", loc="best")
    return _save(fig, path)


def plot_all(
    output_dir: Path,
    truth: np.ndarray,
    comparison: pd.DataFrame,
    posterior: Posterior,
    clusters: pd.DataFrame,
    registry: TeamRegistry,
    covariate_names: Optional[List[str]] = None,
) -> List[Path]:
    """Write every figure for a fit; returns the paths actually written."""
    output_dir = Path(output_dir)
    written = [
        plot_adjacency_comparison(truth, posterior.mean_edge_prob(), registry, output_dir / "adjacency.png"),
        plot_calibration(comparison, output_dir / "calibration.png"),
        plot_traces(posterior.scalar_draws(covariate_names), output_dir / "traces.png"),
        plot_latent_space(clusters, output_dir / "latent_space.png"),
    ]
    return [p for p in written if p is not None]
