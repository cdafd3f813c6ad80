"""Shared test fixtures."""

import pytest
import numpy as np
import pandas as pd
from datetime import datetime
from matchnet.adjacency import build_adjacency_stack
from matchnet.config import Config, SamplerConfig
from matchnet.data import MatchRecord
from matchnet.registry import TeamRegistry


def make_match(date_str, team_a, team_b, margin):
    """Helper to create a MatchRecord."""
    return MatchRecord(
        date=datetime.strptime(date_str, "%Y-%m-%d"),
        team_a=team_a,
        team_b=team_b,
        margin=margin,
    )


@pytest.fixture
def sample_matches():
    """A small season with repeated meetings, listed out of date order."""
    return [
        make_match("2023-11-05", "Bills", "Jets", 7.5),
        make_match("2023-09-10", "Jets", "Bills", -3.0),
        make_match("2023-09-17", "Dolphins", "Patriots", 10.0),
        make_match("2023-09-24", "Bills", "Dolphins", 0.0),
        make_match("2023-10-01", "Patriots", "Jets", -6.5),
        make_match("2023-10-08", "Dolphins", "Jets", 4.0),
        make_match("2023-12-17", "Patriots", "Dolphins", -2.5),
        make_match("2023-12-31", "Dolphins", "Bills", 12.0),
        make_match("2024-01-07", "Bills", "Patriots", 1.5),
        make_match("2023-10-22", "Patriots", "Bills", -14.0),
        make_match("2023-12-03", "Jets", "Patriots", 3.0),
    ]


@pytest.fixture
def sample_stack(sample_matches):
    return build_adjacency_stack(sample_matches, TeamRegistry.from_matches(sample_matches))


@pytest.fixture
def sample_covariates():
    return pd.DataFrame(
        {
            "points_per_game": [26.5, 23.1, 17.4, 16.8],
            "yards_per_play": [5.9, 6.2, 4.6, 4.4],
        },
        index=pd.Index(["Bills", "Dolphins", "Jets", "Patriots"], name="team"),
    )


@pytest.fixture
def matches_csv(tmp_path, sample_matches):
    """Write the sample matches in the raw spreadsheet column layout."""
    path = tmp_path / "matches.csv"
    pd.DataFrame(
        {
            "date": [m.date.strftime("%Y-%m-%d") for m in sample_matches],
            "team": [m.team_a for m in sample_matches],
            "opponent": [m.team_b for m in sample_matches],
            "margin": [m.margin for m in sample_matches],
        }
    ).to_csv(path, index=False)
    return path


@pytest.fixture
def covariates_csv(tmp_path, sample_covariates):
    path = tmp_path / "team_stats.csv"
    sample_covariates.reset_index().to_csv(path, index=False)
    return path


@pytest.fixture
def fast_config():
    """Config small enough for sampler tests to run in seconds."""
    config = Config.default()
    config.sampler = SamplerConfig(
        chains=2, warmup=20, draws=20, step_size=0.05,
        leapfrog_steps=5, map_steps=30, seed=7,
    )
    return config


def random_network(n, seed=0, density=0.4):
    """Symmetric 0/1 matrix with zero diagonal."""
    rng = np.random.default_rng(seed)
    upper = np.triu((rng.random((n, n)) < density).astype(np.int8), k=1)
    return upper + upper.T
