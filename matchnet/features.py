"""Team covariates and the payload handed to the latent eigenmodel."""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

import numpy as np
import pandas as pd

from .adjacency import AdjacencyStack
from .config import Config, PriorConfig, DYAD_COVARIATES
from .data import ConfigurationError
from .registry import TeamRegistry

log = logging.getLogger(__name__)


class CovariateNormalizer:
    """Put every covariate column on a per-team z-score scale.

    Works on the aligned team-by-covariate frame so the fitted centre and
    scale stay keyed by covariate name. A column that barely varies across
    teams (a league-wide constant, say) is centred but left unscaled.
    """

    MIN_SCALE = 1e-3

    def __init__(self):
        self.center: Optional[pd.Series] = None
        self.scale: Optional[pd.Series] = None

    def fit(self, table: pd.DataFrame) -> "CovariateNormalizer":
        self.center = table.mean(axis=0)
        spread = table.std(axis=0, ddof=0)
        self.scale = spread.where(spread >= self.MIN_SCALE, 1.0)
        return self

    def transform(self, table: pd.DataFrame) -> pd.DataFrame:
        if self.center is None:
            raise ValueError("CovariateNormalizer.transform called before fit")
        missing = [c for c in self.center.index if c not in table.columns]
        if missing:
            raise ConfigurationError(f"Covariate column(s) {', '.join(map(str, missing))} not in table")
        return (table[self.center.index] - self.center) / self.scale

    def fit_transform(self, table: pd.DataFrame) -> pd.DataFrame:
        return self.fit(table).transform(table)


def align_covariates(
    table: pd.DataFrame,
    registry: TeamRegistry,
    strict: bool = False,
) -> pd.DataFrame:
    """Reorder covariate rows to registry order.

    Every registry team must have a row. With ``strict``, rows for teams
    that never appear in the match log are an error too; otherwise they
    are dropped.
    """
    missing = [t for t in registry if t not in table.index]
    if missing:
        raise ConfigurationError(
            f"{len(missing)} team(s) in the match log have no covariates: "
            f"{', '.join(missing)}"
        )
    extra = [t for t in table.index if t not in registry]
    if extra:
        if strict:
            raise ConfigurationError(
                f"{len(extra)} covariate row(s) match no team in the match log: "
                f"{', '.join(map(str, extra))}"
            )
        log.info("Dropping covariates for teams absent from the match log: %s", ", ".join(map(str, extra)))
    return table.loc[list(registry.names)]


def dyad_covariates(X: np.ndarray, mode: str = "sum") -> np.ndarray:
    """Pairwise covariates [N, N, P] from team covariates [N, P].

    ``sum`` adds the two teams' values (combined offence drives the total);
    ``product`` multiplies them.
    """
    if mode == "sum":
        return X[:, None, :] + X[None, :, :]
    if mode == "product":
        return X[:, None, :] * X[None, :, :]
    raise ConfigurationError(f"Unknown dyad covariate '{mode}'. Available: {', '.join(DYAD_COVARIATES)}")


@dataclass(frozen=True, eq=False)
class ModelPayload:
    """Everything the eigenmodel needs for one fit."""
    n_teams: int
    latent_dim: int
    n_covariates: int
    adjacency: np.ndarray          # [N, N] 0/1
    covariates: np.ndarray         # [N, P]
    priors: PriorConfig
    registry: TeamRegistry
    covariate_names: List[str]
    meeting: int = 1
    dyad_covariate: str = "sum"
    mask: Optional[np.ndarray] = None  # [N, N] bool, dyads counted in the likelihood

    def likelihood_mask(self) -> np.ndarray:
        """Upper-triangle dyads that enter the likelihood."""
        upper = np.triu(np.ones((self.n_teams, self.n_teams), dtype=bool), k=1)
        if self.mask is None:
            return upper
        return upper & self.mask

    def with_mask(self, mask: np.ndarray) -> "ModelPayload":
        return replace(self, mask=mask)


def _check_adjacency(adjacency: np.ndarray, n: int):
    if adjacency.ndim != 2 or adjacency.shape[0] != adjacency.shape[1]:
        raise ConfigurationError(f"Adjacency matrix must be square, got shape {adjacency.shape}")
    if adjacency.shape[0] != n:
        raise ConfigurationError(
            f"Adjacency matrix is {adjacency.shape[0]}x{adjacency.shape[0]} "
            f"but the registry has {n} teams"
        )
    if not np.array_equal(adjacency, adjacency.T):
        raise ConfigurationError("Adjacency matrix is not symmetric")
    if not np.isin(adjacency, (0, 1)).all():
        raise ConfigurationError("Adjacency matrix has entries other than 0 and 1")


def build_payload(
    stack: AdjacencyStack,
    covariates: pd.DataFrame,
    config: Config,
    meeting: Optional[int] = None,
) -> ModelPayload:
    """Select one meeting's network and pair it with aligned covariates.

    Raises ConfigurationError if teams, shapes or the meeting number do
    not line up, before anything is fitted.
    """
    meeting = meeting if meeting is not None else config.model.meeting
    if meeting not in stack:
        raise ConfigurationError(
            f"Meeting {meeting} not available; the match log has at most "
            f"{stack.max_meetings} meeting(s) per pair"
        )

    registry = stack.registry
    aligned = align_covariates(covariates, registry)
    if len(aligned) != len(registry):
        raise ConfigurationError(
            f"Covariate matrix has {len(aligned)} rows for {len(registry)} teams"
        )
    if config.model.standardize and aligned.size:
        aligned = CovariateNormalizer().fit_transform(aligned)
    X = aligned.to_numpy(dtype=np.float64)

    adjacency = np.asarray(stack[meeting])
    _check_adjacency(adjacency, len(registry))

    met = stack.observed_mask(meeting)
    unplayed = int(np.triu(~met, k=1).sum())
    mask = None
    if config.model.mask_unplayed:
        mask = met
        log.info("Excluding %d unplayed pair(s) from the likelihood", unplayed)
    elif unplayed:
        log.warning(
            "%d pair(s) have fewer than %d meeting(s); their zeros are modelled "
            "as 'under' results", unplayed, meeting,
        )

    return ModelPayload(
        n_teams=len(registry),
        latent_dim=config.model.latent_dim,
        n_covariates=X.shape[1],
        adjacency=adjacency.astype(np.float64),
        covariates=X,
        priors=config.priors,
        registry=registry,
        covariate_names=[str(c) for c in aligned.columns],
        meeting=meeting,
        dyad_covariate=config.model.dyad_covariate,
        mask=mask,
    )
