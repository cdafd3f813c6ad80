"""Tests for matchnet.diagnostics module."""

import pytest
import numpy as np
import pandas as pd
from matchnet.diagnostics import (
    classification_metrics, classify, compare_predictions, convergence_report,
    edges_above, effective_sample_size, split_rhat, threshold_sweep,
)
from matchnet.features import build_payload
from matchnet.sampling import Posterior


def _posterior(n_chains=4, n_draws=200, n=3, seed=0, offsets=None):
    """Synthetic posterior with independent normal draws."""
    rng = np.random.default_rng(seed)
    shift = np.zeros(n_chains) if offsets is None else np.asarray(offsets)
    intercept = rng.normal(size=(n_chains, n_draws)) + shift[:, None]
    prob = rng.uniform(0.2, 0.8, size=(n_chains, n_draws, n, n))
    prob = np.triu(prob, k=1)
    prob = prob + prob.transpose(0, 1, 3, 2)
    return Posterior(
        intercept=intercept,
        weights=rng.normal(size=(n_chains, n_draws, 1)),
        embeddings=rng.normal(size=(n_chains, n_draws, n, 2)),
        eigenvalues=np.sort(rng.normal(size=(n_chains, n_draws, 2)), axis=-1)[..., ::-1],
        variances=rng.gamma(2.0, size=(n_chains, n_draws, 3)),
        edge_prob=prob,
        acceptance=np.full(n_chains, 0.8),
        step_sizes=np.full(n_chains, 0.05),
    )


class TestSplitRhat:
    def test_iid_near_one(self):
        draws = np.random.default_rng(0).normal(size=(4, 1000))
        assert split_rhat(draws) == pytest.approx(1.0, abs=0.02)

    def test_separated_chains_flagged(self):
        rng = np.random.default_rng(1)
        draws = rng.normal(size=(4, 500)) + np.array([0, 0, 5, 5])[:, None]
        assert split_rhat(draws) > 1.5

    def test_trend_within_chain_detected(self):
        draws = np.tile(np.linspace(0, 10, 400), (2, 1))
        assert split_rhat(draws) > 1.5

    def test_too_few_draws(self):
        assert np.isnan(split_rhat(np.zeros((2, 3))))

    def test_constant(self):
        assert split_rhat(np.ones((2, 100))) == 1.0


class TestEffectiveSampleSize:
    def test_iid_close_to_total(self):
        draws = np.random.default_rng(0).normal(size=(4, 1000))
        ess = effective_sample_size(draws)
        assert 3000 < ess < 5000

    def test_autocorrelated_smaller(self):
        rng = np.random.default_rng(2)
        x = np.zeros((4, 1000))
        for c in range(4):
            for t in range(1, 1000):
                x[c, t] = 0.95 * x[c, t - 1] + rng.normal()
        assert effective_sample_size(x) < 400

    def test_too_few_draws(self):
        assert np.isnan(effective_sample_size(np.zeros((2, 3))))


class TestConvergenceReport:
    def test_converged(self):
        report = convergence_report(_posterior(), rhat_threshold=1.1, min_ess=100)
        assert report.converged
        assert report.flagged == []
        # intercept, 1 weight, 2 eigenvalues, 3 variances, 3 edges
        assert len(report.summary) == 10

    def test_flags_and_warns(self, caplog):
        posterior = _posterior(offsets=[0, 0, 6, 6])
        with caplog.at_level("WARNING"):
            report = convergence_report(posterior, rhat_threshold=1.1, min_ess=100)
        assert not report.converged
        assert "intercept" in report.flagged
        assert "failed convergence" in caplog.text

    def test_without_edges(self):
        report = convergence_report(_posterior(), include_edges=False)
        assert not report.summary["parameter"].str.startswith("edge_prob").any()

    def test_edge_names_from_registry(self, sample_stack):
        report = convergence_report(_posterior(n=4), registry=sample_stack.registry)
        assert "edge_prob[Bills,Dolphins]" in set(report.summary["parameter"])


@pytest.fixture
def comparison():
    return pd.DataFrame({
        "team_a": ["A", "A", "B", "B", "C"],
        "team_b": ["B", "C", "C", "D", "D"],
        "truth": [1, 0, 1, 0, 1],
        "prob": [0.9, 0.2, 0.6, 0.55, 0.3],
        "prob_lo": [0.8, 0.1, 0.4, 0.4, 0.2],
        "prob_hi": [0.95, 0.3, 0.7, 0.7, 0.4],
        "observed": [True, True, True, True, False],
        "meetings": [2, 1, 1, 1, 0],
    })


class TestComparePredictions:
    def test_rows_per_dyad(self, sample_stack, sample_covariates, fast_config):
        payload = build_payload(sample_stack, sample_covariates, fast_config)
        comp = compare_predictions(payload, _posterior(n=4), sample_stack)
        assert len(comp) == 6
        row = comp[(comp["team_a"] == "Dolphins") & (comp["team_b"] == "Patriots")].iloc[0]
        assert row["truth"] == 1
        assert row["meetings"] == 2
        assert comp["observed"].all()
        assert ((comp["prob_lo"] <= comp["prob"]) & (comp["prob"] <= comp["prob_hi"])).all()

    def test_size_mismatch(self, sample_stack, sample_covariates, fast_config):
        from matchnet.data import ConfigurationError
        payload = build_payload(sample_stack, sample_covariates, fast_config)
        with pytest.raises(ConfigurationError):
            compare_predictions(payload, _posterior(n=3))


class TestClassification:
    def test_classify(self, comparison):
        out = classify(comparison, 0.5)
        assert list(out["predicted"]) == [1, 0, 1, 1, 0]
        assert list(out["correct"]) == [True, True, True, False, False]

    def test_metrics_observed_only(self, comparison):
        m = classification_metrics(comparison, 0.5)
        assert m["n"] == 4
        assert m["tp"] == 2 and m["fp"] == 1 and m["tn"] == 1 and m["fn"] == 0
        assert m["accuracy"] == pytest.approx(0.75)
        assert m["precision"] == pytest.approx(2 / 3)
        assert m["recall"] == pytest.approx(1.0)

    def test_metrics_all_dyads(self, comparison):
        m = classification_metrics(comparison, 0.5, observed_only=False)
        assert m["n"] == 5
        assert m["fn"] == 1

    def test_empty(self, comparison):
        m = classification_metrics(comparison.iloc[0:0], 0.5)
        assert m["n"] == 0
        assert np.isnan(m["accuracy"])

    def test_single_class_auc_nan(self, comparison):
        m = classification_metrics(comparison[comparison["truth"] == 1], 0.5)
        assert np.isnan(m["auc"])
        assert m["recall"] == pytest.approx(1.0)

    def test_threshold_sweep(self, comparison):
        sweep = threshold_sweep(comparison, [0.25, 0.5, 0.75])
        assert list(sweep["threshold"]) == [0.25, 0.5, 0.75]
        assert sweep["tp"].is_monotonic_decreasing

    def test_edges_above(self, comparison):
        hits = edges_above(comparison, 0.5)
        assert list(hits["prob"]) == [0.9, 0.6, 0.55]

    def test_edges_above_empty(self, comparison):
        assert edges_above(comparison, 0.99).empty
        assert edges_above(pd.DataFrame(), 0.5).empty
