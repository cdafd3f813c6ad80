"""Hyperparameter search for the latent eigenmodel using Optuna."""

from dataclasses import replace
from typing import Tuple

import numpy as np
import optuna
import pandas as pd

from .adjacency import AdjacencyStack
from .config import Config
from .data import ConfigurationError
from .features import ModelPayload, build_payload
from .sampling import Posterior, fit_eigenmodel


def holdout_split(
    payload: ModelPayload,
    fraction: float = 0.2,
    seed: int = 42,
) -> Tuple[np.ndarray, np.ndarray]:
    """Randomly hold out a fraction of the likelihood dyads.

    Returns:
        (train_mask, test_mask), both upper-triangle N x N boolean arrays

    Raises:
        ConfigurationError: fraction outside (0, 1), or too few dyads to
            hold out at least one
    """
    if not 0 < fraction < 1:
        raise ConfigurationError(f"Holdout fraction must be between 0 and 1 (exclusive), got {fraction}")

    candidates = payload.likelihood_mask()
    rows, cols = np.nonzero(candidates)
    n_test = int(round(fraction * len(rows)))
    if n_test < 1 or n_test >= len(rows):
        raise ConfigurationError(
            f"Holdout fraction {fraction} of {len(rows)} dyad(s) leaves an empty "
            f"{'test' if n_test < 1 else 'training'} set"
        )
    rng = np.random.default_rng(seed)
    picked = rng.choice(len(rows), size=n_test, replace=False)

    test = np.zeros_like(candidates)
    test[rows[picked], cols[picked]] = True
    return candidates & ~test, test


def heldout_log_density(posterior: Posterior, payload: ModelPayload, test_mask: np.ndarray) -> float:
    """Mean log posterior predictive density of the held-out dyads."""
    if not test_mask.any():
        return float("nan")
    y = payload.adjacency[test_mask]
    probs = posterior.edge_prob[..., test_mask].reshape(-1, int(test_mask.sum()))
    probs = np.clip(probs, 1e-12, 1 - 1e-12)
    likelihood = np.where(y == 1, probs, 1 - probs).mean(axis=0)
    return float(np.log(likelihood).mean())


def tune_eigenmodel(
    stack: AdjacencyStack,
    covariates: pd.DataFrame,
    config: Config,
    n_trials: int = 20,
    holdout_fraction: float = 0.2,
    max_latent_dim: int = 4,
) -> optuna.Study:
    """Bayesian search over latent dimension and HMC step size.

    Each trial fits on the training dyads and scores held-out predictive
    density. Returns the Optuna study object with all trial results.
    """
    base = build_payload(stack, covariates, config)
    train_mask, test_mask = holdout_split(base, holdout_fraction, seed=config.sampler.seed)

    def objective(trial: optuna.Trial) -> float:
        latent_dim = trial.suggest_int("latent_dim", 1, max_latent_dim)
        step_size = trial.suggest_float("step_size", 1e-3, 0.5, log=True)

        payload = replace(base, latent_dim=latent_dim).with_mask(train_mask)
        sampler = replace(config.sampler, step_size=step_size)
        posterior = fit_eigenmodel(payload, sampler, verbose=False)

        trial.set_user_attr("acceptance", float(np.mean(posterior.acceptance)))
        trial.set_user_attr("step_size_adapted", float(np.mean(posterior.step_sizes)))
        return heldout_log_density(posterior, payload, test_mask)

    study = optuna.create_study(direction="maximize")
    study.optimize(objective, n_trials=n_trials)

    completed = study.get_trials(deepcopy=False, states=(optuna.trial.TrialState.COMPLETE,))
    if not completed:
        raise ConfigurationError(
            f"None of {len(study.trials)} tuning trial(s) produced a finite held-out score"
        )
    return study
