"""Latent-space network analysis of matchup betting outcomes."""

from .data import (
    MatchnetError,
    DataError,
    ConfigurationError,
    MatchRecord,
    load_matches,
    load_covariates,
    match_frame,
)
from .registry import TeamRegistry, pair_key
from .adjacency import AdjacencyStack, Meeting, build_adjacency_stack, number_meetings
from .features import CovariateNormalizer, ModelPayload, align_covariates, build_payload
from .models import LatentEigenmodel
from .sampling import Posterior, fit_eigenmodel
from .diagnostics import (
    ConvergenceReport,
    convergence_report,
    compare_predictions,
    classify,
    classification_metrics,
    threshold_sweep,
    edges_above,
)
from .config import Config

__all__ = [
    'Config',
    'MatchnetError',
    'DataError',
    'ConfigurationError',
    'MatchRecord',
    'load_matches',
    'load_covariates',
    'match_frame',
    'TeamRegistry',
    'pair_key',
    'AdjacencyStack',
    'Meeting',
    'build_adjacency_stack',
    'number_meetings',
    'CovariateNormalizer',
    'ModelPayload',
    'align_covariates',
    'build_payload',
    'LatentEigenmodel',
    'Posterior',
    'fit_eigenmodel',
    'ConvergenceReport',
    'convergence_report',
    'compare_predictions',
    'classify',
    'classification_metrics',
    'threshold_sweep',
    'edges_above',
]
