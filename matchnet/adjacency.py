"""Repeated-meeting adjacency matrices built from a match log.

Matches between the same two teams are numbered chronologically (1st
meeting, 2nd meeting, ...). Meeting ``m`` of every pair is written into
matrix ``m``, giving one symmetric 0/1 network per meeting number.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from functools import reduce
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from .data import DataError, MatchRecord
from .registry import TeamRegistry, pair_key


@dataclass(frozen=True)
class Meeting:
    """A match tagged with its 1-based meeting number within its pair."""
    number: int
    match: MatchRecord

    @property
    def pair(self) -> Tuple[str, str]:
        return pair_key(self.match.team_a, self.match.team_b)


def sort_chronologically(matches: Iterable[MatchRecord]) -> List[MatchRecord]:
    """Global date order; matches on the same date keep their input order."""
    return sorted(matches, key=lambda m: m.date)


def number_meetings(matches: Iterable[MatchRecord]) -> Tuple[Meeting, ...]:
    """Assign meeting numbers 1..k per pair, in global chronological order."""

    def step(acc, match):
        counts, numbered = acc
        key = pair_key(match.team_a, match.team_b)
        n = counts.get(key, 0) + 1
        return {**counts, key: n}, numbered + (Meeting(n, match),)

    _, numbered = reduce(step, sort_chronologically(matches), ({}, ()))
    return numbered


def _freeze(matrix: np.ndarray) -> np.ndarray:
    np.fill_diagonal(matrix, 0)
    matrix.setflags(write=False)
    return matrix


class AdjacencyStack(Mapping):
    """Read-only mapping of meeting number (1-based) to an N x N 0/1 matrix.

    Every matrix is indexed by the same ``registry``. A pair with fewer
    than ``m`` meetings has a zero in matrix ``m``, which cannot be told
    apart from an "under" result; ``observed_mask`` recovers the difference.
    """

    def __init__(
        self,
        matrices: Dict[int, np.ndarray],
        registry: TeamRegistry,
        meeting_counts: Dict[Tuple[str, str], int],
    ):
        self._matrices = MappingProxyType(dict(matrices))
        self.registry = registry
        self.meeting_counts = MappingProxyType(dict(meeting_counts))

    def __getitem__(self, meeting: int) -> np.ndarray:
        try:
            return self._matrices[meeting]
        except KeyError:
            raise KeyError(
                f"No meeting {meeting}; stack holds meetings 1..{len(self)}"
            ) from None

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._matrices))

    def __len__(self) -> int:
        return len(self._matrices)

    @property
    def n_teams(self) -> int:
        return len(self.registry)

    @property
    def max_meetings(self) -> int:
        return len(self)

    def as_array(self) -> np.ndarray:
        """Stacked copy with shape (M, N, N); position 0 is the first meeting."""
        n = self.n_teams
        if not self._matrices:
            return np.zeros((0, n, n), dtype=np.int8)
        return np.stack([self._matrices[m] for m in self])

    def meetings_between(self, team_a: str, team_b: str) -> int:
        return self.meeting_counts.get(pair_key(team_a, team_b), 0)

    def observed_mask(self, meeting: int) -> np.ndarray:
        """Boolean N x N mask of pairs that actually met at least ``meeting`` times."""
        n = self.n_teams
        mask = np.zeros((n, n), dtype=bool)
        for (a, b), count in self.meeting_counts.items():
            if count >= meeting:
                i, j = self.registry.pair_indices(a, b)
                mask[i, j] = mask[j, i] = True
        return mask

    def summary(self) -> pd.DataFrame:
        """Per-meeting counts of pairs that met and of over edges."""
        rows = []
        for m in self:
            upper = np.triu_indices(self.n_teams, k=1)
            observed = self.observed_mask(m)[upper]
            edges = self[m][upper]
            rows.append({
                "meeting": m,
                "pairs_met": int(observed.sum()),
                "over_edges": int(edges.sum()),
                "over_rate": float(edges[observed].mean()) if observed.any() else float("nan"),
            })
        return pd.DataFrame(rows, columns=["meeting", "pairs_met", "over_edges", "over_rate"])


def build_adjacency_stack(
    matches: Iterable[MatchRecord],
    registry: Optional[TeamRegistry] = None,
) -> AdjacencyStack:
    """Fold a match log into one adjacency matrix per meeting number.

    The number of matrices is the largest meeting count of any pair. Each
    match writes its edge value (1 for a positive margin, else 0) into both
    (a, b) and (b, a) of the matrix for its meeting number.
    """
    matches = list(matches)
    if registry is None:
        registry = TeamRegistry.from_matches(matches)
    n = len(registry)

    meetings = number_meetings(matches)

    def place(matrices, meeting):
        match = meeting.match
        if match.team_a == match.team_b:
            raise DataError(f"Team '{match.team_a}' listed against itself on {match.date:%Y-%m-%d}")
        i, j = registry.pair_indices(match.team_a, match.team_b)
        previous = matrices.get(meeting.number)
        matrix = previous.copy() if previous is not None else np.zeros((n, n), dtype=np.int8)
        matrix[i, j] = matrix[j, i] = match.edge
        return {**matrices, meeting.number: matrix}

    placed = reduce(place, meetings, {})
    counts = reduce(
        lambda acc, meeting: {**acc, meeting.pair: meeting.number},
        meetings,
        {},
    )

    return AdjacencyStack(
        {m: _freeze(matrix) for m, matrix in placed.items()},
        registry,
        counts,
    )
