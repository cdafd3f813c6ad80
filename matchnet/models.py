"""Covariate-augmented latent eigenmodel for binary matchup networks."""

import torch
import torch.nn as nn
import numpy as np
from pathlib import Path
from typing import Dict, Optional
from torch.distributions import Gamma, Normal

from .config import PriorConfig
from .features import ModelPayload, dyad_covariates


class LatentEigenmodel(nn.Module):
    """
    Latent eigenmodel with dyadic covariates.

    For teams i < j the probability of an "over" edge is

        logit P(y_ij = 1) = b0 + x_ij . beta + u_i' diag(lambda) u_j

    where x_ij are pairwise covariates built from the team covariates,
    u_i are K-dimensional latent positions and lambda the K eigenvalues.

    The continuous block (b0, beta, U, lambda) lives in nn.Parameters so
    gradients come from autograd. The three prior variances are buffers,
    updated by conjugate inverse-gamma draws.
    """

    def __init__(
        self,
        adjacency: np.ndarray,
        dyad_x: np.ndarray,
        latent_dim: int,
        priors: PriorConfig,
        mask: Optional[np.ndarray] = None,
    ):
        super().__init__()

        n = adjacency.shape[0]
        p = dyad_x.shape[-1]
        self.n_teams = n
        self.latent_dim = latent_dim
        self.n_covariates = p
        self.priors = priors

        upper = torch.triu(torch.ones(n, n, dtype=torch.bool), diagonal=1)
        if mask is not None:
            upper = upper & torch.as_tensor(mask, dtype=torch.bool)

        self.register_buffer("adjacency", torch.as_tensor(adjacency, dtype=torch.float64))
        self.register_buffer("dyad_x", torch.as_tensor(dyad_x, dtype=torch.float64).reshape(n, n, p))
        self.register_buffer("mask", upper)

        # Prior variances: eigenvalues, embeddings, covariate weights
        self.register_buffer("eigen_var", torch.tensor(1.0, dtype=torch.float64))
        self.register_buffer("embedding_var", torch.tensor(1.0, dtype=torch.float64))
        self.register_buffer("weight_var", torch.tensor(1.0, dtype=torch.float64))

        self.intercept = nn.Parameter(torch.zeros((), dtype=torch.float64))
        self.weights = nn.Parameter(torch.zeros(p, dtype=torch.float64))
        self.embeddings = nn.Parameter(torch.zeros(n, latent_dim, dtype=torch.float64))
        self.eigenvalues = nn.Parameter(torch.zeros(latent_dim, dtype=torch.float64))

    @classmethod
    def from_payload(cls, payload: ModelPayload) -> "LatentEigenmodel":
        dyad_x = dyad_covariates(payload.covariates, payload.dyad_covariate)
        return cls(
            payload.adjacency,
            dyad_x,
            payload.latent_dim,
            payload.priors,
            mask=payload.mask,
        )

    def reset_parameters(self, scale: float = 0.1):
        """Small random start for the latent block, zeros elsewhere."""
        with torch.no_grad():
            self.intercept.zero_()
            self.weights.zero_()
            self.embeddings.normal_(0.0, scale)
            self.eigenvalues.normal_(0.0, scale)

    def forward(self) -> torch.Tensor:
        """
        Edge logits.

        Returns:
            Logits [N, N]; only entries under ``mask`` enter the likelihood
        """
        latent = (self.embeddings * self.eigenvalues) @ self.embeddings.T
        covariate = self.dyad_x @ self.weights
        return self.intercept + covariate + latent

    def log_likelihood(self) -> torch.Tensor:
        logits = self.forward()[self.mask]
        y = self.adjacency[self.mask]
        # Bernoulli log-likelihood in logit form
        return (y * logits - nn.functional.softplus(logits)).sum()

    def log_prior(self) -> torch.Tensor:
        """Log density of the continuous block given the current prior variances."""
        lp = Normal(0.0, self.priors.intercept_scale, validate_args=False).log_prob(self.intercept)
        lp = lp + Normal(0.0, self.eigen_var.sqrt(), validate_args=False).log_prob(self.eigenvalues).sum()
        lp = lp + Normal(0.0, self.embedding_var.sqrt(), validate_args=False).log_prob(self.embeddings).sum()
        if self.n_covariates:
            lp = lp + Normal(0.0, self.weight_var.sqrt(), validate_args=False).log_prob(self.weights).sum()
        return lp

    def log_posterior(self) -> torch.Tensor:
        return self.log_likelihood() + self.log_prior()

    def edge_prob(self) -> torch.Tensor:
        """Edge probabilities [N, N], symmetric with a zero diagonal."""
        with torch.no_grad():
            prob = torch.sigmoid(self.forward())
            prob = torch.triu(prob, diagonal=1)
            return prob + prob.T

    @staticmethod
    def _inverse_gamma(shape: float, rate: torch.Tensor) -> torch.Tensor:
        g = Gamma(torch.as_tensor(shape, dtype=torch.float64), rate).sample()
        return 1.0 / g

    def sample_variances(self):
        """Conjugate Gibbs update of the three prior variances."""
        pr = self.priors
        with torch.no_grad():
            self.eigen_var.copy_(self._inverse_gamma(
                pr.variance_shape + self.latent_dim / 2,
                pr.variance_rate + 0.5 * self.eigenvalues.pow(2).sum(),
            ))
            self.embedding_var.copy_(self._inverse_gamma(
                pr.embedding_shape + self.embeddings.numel() / 2,
                pr.embedding_rate + 0.5 * self.embeddings.pow(2).sum(),
            ))
            self.weight_var.copy_(self._inverse_gamma(
                pr.weight_shape + self.n_covariates / 2,
                pr.weight_rate + 0.5 * self.weights.pow(2).sum(),
            ))

    def snapshot(self) -> Dict[str, np.ndarray]:
        """Current state as numpy arrays, eigen-components in canonical order."""
        with torch.no_grad():
            order = torch.argsort(self.eigenvalues, descending=True)
            return {
                "intercept": self.intercept.detach().cpu().numpy().copy(),
                "weights": self.weights.detach().cpu().numpy().copy(),
                "embeddings": self.embeddings[:, order].detach().cpu().numpy().copy(),
                "eigenvalues": self.eigenvalues[order].detach().cpu().numpy().copy(),
                "variances": torch.stack(
                    [self.eigen_var, self.embedding_var, self.weight_var]
                ).cpu().numpy(),
                "edge_prob": self.edge_prob().cpu().numpy(),
            }

    def save(self, path: Path):
        torch.save(self.state_dict(), path)

    def load(self, path: Path):
        self.load_state_dict(torch.load(path, weights_only=True))
