"""Convergence diagnostics and predicted-vs-true evaluation."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    f1_score,
    log_loss,
    precision_score,
    recall_score,
    roc_auc_score,
)

from .adjacency import AdjacencyStack
from .data import ConfigurationError
from .features import ModelPayload
from .sampling import Posterior

log = logging.getLogger(__name__)


# =============================================================================
# Convergence
# =============================================================================

def split_rhat(draws: np.ndarray) -> float:
    """Split-chain potential scale reduction for draws shaped [chains, draws]."""
    x = np.asarray(draws, dtype=np.float64)
    n_draws = x.shape[1]
    half = n_draws // 2
    if half < 2:
        return float("nan")

    split = np.concatenate([x[:, :half], x[:, n_draws - half:]], axis=0)
    means = split.mean(axis=1)
    within = split.var(axis=1, ddof=1).mean()
    between = half * means.var(ddof=1)
    if within <= 0:
        return 1.0 if between <= 0 else float("inf")

    var_plus = (half - 1) / half * within + between / half
    return float(np.sqrt(var_plus / within))


def _autocovariance(x: np.ndarray) -> np.ndarray:
    n = len(x)
    centred = x - x.mean()
    size = 2 ** int(np.ceil(np.log2(2 * n)))
    f = np.fft.rfft(centred, size)
    return np.fft.irfft(f * np.conj(f), size)[:n] / n


def effective_sample_size(draws: np.ndarray) -> float:
    """
    Effective sample size across chains for draws shaped [chains, draws].

    Uses the chain-combined autocorrelation truncated at Geyer's initial
    monotone positive sequence.
    """
    x = np.asarray(draws, dtype=np.float64)
    n_chains, n_draws = x.shape
    total = n_chains * n_draws
    if n_draws < 4:
        return float("nan")

    acov = np.stack([_autocovariance(chain) for chain in x])
    chain_var = acov[:, 0] * n_draws / (n_draws - 1)
    within = chain_var.mean()
    var_plus = within * (n_draws - 1) / n_draws
    if n_chains > 1:
        var_plus += x.mean(axis=1).var(ddof=1)
    if var_plus <= 0:
        return float(total)

    rho = 1.0 - (within - acov.mean(axis=0)) / var_plus
    rho[0] = 1.0

    pair_sums = []
    t = 0
    while t + 1 < n_draws:
        pair = rho[t] + rho[t + 1]
        if pair < 0:
            break
        # Monotone: each pair sum no larger than the previous one
        if pair_sums and pair > pair_sums[-1]:
            pair = pair_sums[-1]
        pair_sums.append(pair)
        t += 2

    tau = -1.0 + 2.0 * sum(pair_sums)
    tau = max(tau, 1.0 / np.log10(max(total, 10)))
    return float(total / tau)


@dataclass
class ConvergenceReport:
    """Per-parameter summary with R-hat and ESS flags."""
    summary: pd.DataFrame
    rhat_threshold: float
    min_ess: float

    @property
    def flagged(self) -> List[str]:
        return list(self.summary.loc[self.summary["flagged"], "parameter"])

    @property
    def converged(self) -> bool:
        return not self.summary["flagged"].any()

    @property
    def max_rhat(self) -> float:
        return float(self.summary["rhat"].max()) if len(self.summary) else float("nan")

    @property
    def min_effective(self) -> float:
        return float(self.summary["ess"].min()) if len(self.summary) else float("nan")


def _summarize(name: str, draws: np.ndarray, rhat_threshold: float, min_ess: float) -> Dict:
    flat = draws.reshape(-1)
    rhat = split_rhat(draws)
    ess = effective_sample_size(draws)
    flagged = bool(rhat > rhat_threshold) or bool(ess < min_ess)
    return {
        "parameter": name,
        "mean": float(flat.mean()),
        "sd": float(flat.std()),
        "q5": float(np.quantile(flat, 0.05)),
        "q95": float(np.quantile(flat, 0.95)),
        "rhat": rhat,
        "ess": ess,
        "flagged": flagged,
    }


def convergence_report(
    posterior: Posterior,
    registry=None,
    covariate_names: Optional[List[str]] = None,
    rhat_threshold: float = 1.1,
    min_ess: float = 100.0,
    include_edges: bool = True,
) -> ConvergenceReport:
    """
    Summarise convergence of every scalar parameter and, optionally, every
    upper-triangle edge probability.

    Non-convergence is logged as a warning; nothing is re-run.
    """
    rows = [
        _summarize(name, draws, rhat_threshold, min_ess)
        for name, draws in posterior.scalar_draws(covariate_names).items()
    ]

    if include_edges:
        n = posterior.edge_prob.shape[-1]
        names = list(registry.names) if registry is not None else [str(i) for i in range(n)]
        for i, j in zip(*np.triu_indices(n, k=1)):
            rows.append(_summarize(
                f"edge_prob[{names[i]},{names[j]}]",
                posterior.edge_prob[:, :, i, j],
                rhat_threshold,
                min_ess,
            ))

    report = ConvergenceReport(
        summary=pd.DataFrame(rows, columns=["parameter", "mean", "sd", "q5", "q95", "rhat", "ess", "flagged"]),
        rhat_threshold=rhat_threshold,
        min_ess=min_ess,
    )

    if not report.converged:
        flagged = report.flagged
        log.warning(
            "%d parameter(s) failed convergence checks (R-hat > %.2f or ESS < %.0f): %s%s",
            len(flagged), rhat_threshold, min_ess,
            ", ".join(flagged[:10]),
            f" (+{len(flagged) - 10} more)" if len(flagged) > 10 else "",
        )
    return report


# =============================================================================
# Predicted vs true
# =============================================================================

COMPARISON_COLUMNS = ["team_a", "team_b", "truth", "prob", "prob_lo", "prob_hi", "observed", "meetings"]


def compare_predictions(
    payload: ModelPayload,
    posterior: Posterior,
    stack: Optional[AdjacencyStack] = None,
    interval: float = 0.9,
) -> pd.DataFrame:
    """One row per upper-triangle dyad: ground truth against posterior mean.

    ``observed`` marks dyads that entered the likelihood; ``meetings`` is
    how often the pair actually met (when a stack is given).
    """
    n = payload.n_teams
    if posterior.edge_prob.shape[-1] != n:
        raise ConfigurationError(
            f"Posterior covers {posterior.edge_prob.shape[-1]} teams, payload has {n}"
        )

    mean = posterior.mean_edge_prob()
    lo, hi = posterior.edge_prob_interval(interval)
    observed = payload.likelihood_mask()
    names = payload.registry.names

    rows = []
    for i, j in zip(*np.triu_indices(n, k=1)):
        rows.append({
            "team_a": names[i],
            "team_b": names[j],
            "truth": int(payload.adjacency[i, j]),
            "prob": float(mean[i, j]),
            "prob_lo": float(lo[i, j]),
            "prob_hi": float(hi[i, j]),
            "observed": bool(observed[i, j]),
            "meetings": stack.meetings_between(names[i], names[j]) if stack is not None else np.nan,
        })
    return pd.DataFrame(rows, columns=COMPARISON_COLUMNS)


def classify(comparison: pd.DataFrame, threshold: float = 0.5) -> pd.DataFrame:
    """Add a thresholded ``predicted`` column (1 when prob >= threshold)."""
    out = comparison.copy()
    out["predicted"] = (out["prob"] >= threshold).astype(int)
    out["correct"] = out["predicted"] == out["truth"]
    return out


def classification_metrics(
    comparison: pd.DataFrame,
    threshold: float = 0.5,
    observed_only: bool = True,
) -> Dict[str, float]:
    """Accuracy, precision, recall, F1, AUC, Brier and log-loss at a threshold.

    An empty comparison yields NaN scores and zero counts.
    """
    frame = comparison
    if observed_only and "observed" in frame.columns:
        frame = frame[frame["observed"]]

    empty = {
        "threshold": threshold, "n": 0,
        "accuracy": np.nan, "precision": np.nan, "recall": np.nan, "f1": np.nan,
        "auc": np.nan, "brier": np.nan, "log_loss": np.nan,
        "tp": 0, "fp": 0, "tn": 0, "fn": 0,
    }
    if frame.empty:
        return empty

    y = frame["truth"].to_numpy(dtype=int)
    prob = frame["prob"].to_numpy(dtype=float)
    pred = (prob >= threshold).astype(int)
    tn, fp, fn, tp = confusion_matrix(y, pred, labels=[0, 1]).ravel()

    auc = roc_auc_score(y, prob) if len(np.unique(y)) == 2 else np.nan
    return {
        "threshold": threshold,
        "n": int(len(y)),
        "accuracy": float(accuracy_score(y, pred)),
        "precision": float(precision_score(y, pred, zero_division=0)),
        "recall": float(recall_score(y, pred, zero_division=0)),
        "f1": float(f1_score(y, pred, zero_division=0)),
        "auc": float(auc),
        "brier": float(np.mean((prob - y) ** 2)),
        "log_loss": float(log_loss(y, np.clip(prob, 1e-12, 1 - 1e-12), labels=[0, 1])),
        "tp": int(tp), "fp": int(fp), "tn": int(tn), "fn": int(fn),
    }


def threshold_sweep(
    comparison: pd.DataFrame,
    thresholds: Optional[List[float]] = None,
    observed_only: bool = True,
) -> pd.DataFrame:
    """Classification metrics over a grid of thresholds."""
    if thresholds is None:
        thresholds = [round(t, 2) for t in np.arange(0.1, 0.91, 0.05)]
    return pd.DataFrame([
        classification_metrics(comparison, t, observed_only=observed_only)
        for t in thresholds
    ])


def edges_above(comparison: pd.DataFrame, threshold: float = 0.5) -> pd.DataFrame:
    """Dyads predicted at or above ``threshold``, most likely first. May be empty."""
    if comparison.empty or "prob" not in comparison.columns:
        return comparison.iloc[0:0]
    hits = comparison[comparison["prob"] >= threshold]
    return hits.sort_values("prob", ascending=False).reset_index(drop=True)
