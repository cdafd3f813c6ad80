"""Posterior sampling for the latent eigenmodel.

Each chain starts from a MAP estimate, then alternates a conjugate Gibbs
update of the prior variances with one Hamiltonian Monte Carlo transition
of the continuous parameters.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import torch
from torch.nn.utils import parameters_to_vector, vector_to_parameters

from .config import SamplerConfig
from .features import ModelPayload
from .models import LatentEigenmodel

log = logging.getLogger(__name__)

VARIANCE_NAMES = ("eigen_var", "embedding_var", "weight_var")


@dataclass
class Posterior:
    """Posterior draws, stacked as [chains, draws, ...]."""
    intercept: np.ndarray      # [C, S]
    weights: np.ndarray        # [C, S, P]
    embeddings: np.ndarray     # [C, S, N, K]
    eigenvalues: np.ndarray    # [C, S, K]
    variances: np.ndarray      # [C, S, 3]
    edge_prob: np.ndarray      # [C, S, N, N]
    acceptance: np.ndarray     # [C]
    step_sizes: np.ndarray     # [C]
    map_history: List[List[float]] = field(default_factory=list)

    @property
    def n_chains(self) -> int:
        return self.intercept.shape[0]

    @property
    def n_draws(self) -> int:
        return self.intercept.shape[1]

    def mean_edge_prob(self) -> np.ndarray:
        return self.edge_prob.mean(axis=(0, 1))

    def edge_prob_interval(self, level: float = 0.9) -> Tuple[np.ndarray, np.ndarray]:
        lo = (1 - level) / 2
        flat = self.edge_prob.reshape(-1, *self.edge_prob.shape[2:])
        return np.quantile(flat, lo, axis=0), np.quantile(flat, 1 - lo, axis=0)

    def mean_embeddings(self) -> np.ndarray:
        """Posterior mean latent positions [N, K].

        Columns of each draw are flipped to agree in sign with the first
        draw, since u_k and -u_k give the same network.
        """
        flat = self.embeddings.reshape(-1, *self.embeddings.shape[2:])
        if flat.shape[0] == 0:
            return np.zeros(self.embeddings.shape[2:])
        reference = flat[0]
        signs = np.sign(np.einsum("snk,nk->sk", flat, reference))
        signs[signs == 0] = 1.0
        return (flat * signs[:, None, :]).mean(axis=0)

    def scalar_draws(self, covariate_names: Optional[List[str]] = None) -> Dict[str, np.ndarray]:
        """Every scalar parameter as a [C, S] array keyed by a readable name."""
        names = covariate_names or [f"x{p}" for p in range(self.weights.shape[-1])]
        draws = {"intercept": self.intercept}
        for p, name in enumerate(names):
            draws[f"weight[{name}]"] = self.weights[:, :, p]
        for k in range(self.eigenvalues.shape[-1]):
            draws[f"eigenvalue[{k}]"] = self.eigenvalues[:, :, k]
        for v, name in enumerate(VARIANCE_NAMES):
            draws[name] = self.variances[:, :, v]
        return draws


def find_map(
    model: LatentEigenmodel,
    steps: int = 300,
    lr: float = 0.05,
    verbose: bool = False,
) -> List[float]:
    """
    Maximise the log posterior with the prior variances held fixed.

    Returns:
        Negative log posterior per step
    """
    optimizer = torch.optim.AdamW(model.parameters(), lr=lr, weight_decay=0.0)
    history = []
    for step in range(steps):
        optimizer.zero_grad()
        loss = -model.log_posterior()
        loss.backward()
        torch.nn.utils.clip_grad_norm_(model.parameters(), max_norm=10.0)
        optimizer.step()
        history.append(loss.item())

        if verbose and (step + 1) % 100 == 0:
            print(f"  MAP step {step+1:4d}: -log posterior={loss.item():.3f}")
    return history


def _potential_and_grad(model: LatentEigenmodel, q: torch.Tensor) -> Tuple[float, torch.Tensor]:
    vector_to_parameters(q, model.parameters())
    model.zero_grad()
    potential = -model.log_posterior()
    potential.backward()
    grad = parameters_to_vector([
        p.grad if p.grad is not None else torch.zeros_like(p)
        for p in model.parameters()
    ])
    return potential.item(), grad.detach().clone()


def hmc_step(
    model: LatentEigenmodel,
    step_size: float,
    n_leapfrog: int,
) -> Tuple[bool, float]:
    """
    One HMC transition of the model's parameters, in place.

    The step size is jittered by +/-20% per transition to avoid periodic
    trajectories.

    Returns:
        (accepted, acceptance probability)
    """
    q0 = parameters_to_vector(model.parameters()).detach().clone()
    u0, grad = _potential_and_grad(model, q0)
    p0 = torch.randn_like(q0)

    eps = step_size * (0.8 + 0.4 * torch.rand(()).item())
    q = q0.clone()
    p = p0 - 0.5 * eps * grad
    u = u0
    for i in range(n_leapfrog):
        q = q + eps * p
        u, grad = _potential_and_grad(model, q)
        if i < n_leapfrog - 1:
            p = p - eps * grad
    p = p - 0.5 * eps * grad

    h0 = u0 + 0.5 * p0.dot(p0).item()
    h1 = u + 0.5 * p.dot(p).item()
    log_ratio = h0 - h1
    if math.isnan(log_ratio):
        accept_prob = 0.0
    else:
        accept_prob = math.exp(min(0.0, log_ratio))

    accepted = torch.rand(()).item() < accept_prob
    if not accepted:
        vector_to_parameters(q0, model.parameters())
    model.zero_grad()
    return accepted, accept_prob


def run_chain(
    payload: ModelPayload,
    config: SamplerConfig,
    chain: int = 0,
    verbose: bool = True,
) -> Dict:
    """Run a single chain; returns its draws and acceptance statistics."""
    torch.manual_seed(config.seed + chain)

    model = LatentEigenmodel.from_payload(payload)
    model.reset_parameters()
    map_history = find_map(model, steps=config.map_steps, lr=config.map_lr, verbose=False)
    log.debug("Chain %d: MAP -log posterior %.3f", chain, map_history[-1] if map_history else float("nan"))

    # Disperse starting points so R-hat can detect chains stuck in different modes
    with torch.no_grad():
        for param in model.parameters():
            param.add_(0.1 * torch.randn_like(param))

    step_size = config.step_size
    total = config.warmup + config.draws * config.thin
    report_every = max(1, total // 10)
    draws = []
    accepted_count = 0

    for it in range(total):
        model.sample_variances()
        accepted, accept_prob = hmc_step(model, step_size, config.leapfrog_steps)

        if it < config.warmup:
            # Robbins-Monro adaptation of log step size toward the target rate
            rate = (it + 1) ** -0.6
            step_size *= math.exp(rate * (accept_prob - config.target_accept))
        else:
            accepted_count += int(accepted)
            if (it - config.warmup) % config.thin == 0:
                draws.append(model.snapshot())

        if verbose and (it + 1) % report_every == 0:
            phase = "warmup" if it < config.warmup else "sampling"
            print(f"  Chain {chain+1}: iter {it+1:5d}/{total} ({phase}), step={step_size:.4f}")

    kept_iters = total - config.warmup
    acceptance = accepted_count / kept_iters if kept_iters else float("nan")
    log.debug("Chain %d: acceptance %.2f, step size %.4f", chain, acceptance, step_size)

    return {
        "draws": draws,
        "acceptance": acceptance,
        "step_size": step_size,
        "map_history": map_history,
    }


def fit_eigenmodel(
    payload: ModelPayload,
    config: SamplerConfig,
    verbose: bool = True,
) -> Posterior:
    """
    Sample the posterior of the latent eigenmodel for one network.

    Returns:
        Posterior with draws from ``config.chains`` chains
    """
    chains = []
    for c in range(config.chains):
        if verbose:
            print(f"Chain {c+1}/{config.chains}")
        chains.append(run_chain(payload, config, chain=c, verbose=verbose))

    def stack(key):
        return np.stack([np.stack([d[key] for d in ch["draws"]]) for ch in chains])

    posterior = Posterior(
        intercept=stack("intercept"),
        weights=stack("weights"),
        embeddings=stack("embeddings"),
        eigenvalues=stack("eigenvalues"),
        variances=stack("variances"),
        edge_prob=stack("edge_prob"),
        acceptance=np.array([ch["acceptance"] for ch in chains]),
        step_sizes=np.array([ch["step_size"] for ch in chains]),
        map_history=[ch["map_history"] for ch in chains],
    )

    low = posterior.acceptance < 0.2
    if low.any():
        log.warning(
            "Low HMC acceptance in chain(s) %s: %s",
            ", ".join(str(i + 1) for i in np.flatnonzero(low)),
            ", ".join(f"{a:.2f}" for a in posterior.acceptance[low]),
        )
    return posterior
