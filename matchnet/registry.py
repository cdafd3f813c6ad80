"""Team ordering shared by every stage of the analysis."""

from typing import Dict, Iterable, Iterator, Tuple

from .data import DataError, MatchRecord


def pair_key(team_a: str, team_b: str) -> Tuple[str, str]:
    """Order-independent identity of a matchup (smaller name first)."""
    return (team_a, team_b) if team_a <= team_b else (team_b, team_a)


class TeamRegistry:
    """Fixed bijection between team names and matrix positions.

    Built once per run and passed to every stage that indexes by team, so
    the adjacency matrices, covariate rows and plots all agree on ordering.
    """

    __slots__ = ("_names", "_index")

    def __init__(self, names: Iterable[str]):
        names = tuple(names)
        index: Dict[str, int] = {}
        for i, name in enumerate(names):
            if name in index:
                raise DataError(f"Duplicate team name in registry: '{name}'")
            index[name] = i
        self._names = names
        self._index = index

    @classmethod
    def from_matches(cls, matches: Iterable[MatchRecord]) -> "TeamRegistry":
        """Registry of every team appearing in the log, sorted by name."""
        teams = set()
        for m in matches:
            teams.add(m.team_a)
            teams.add(m.team_b)
        return cls(sorted(teams))

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise DataError(f"Unknown team '{name}'") from None

    def name(self, i: int) -> str:
        return self._names[i]

    def pair_indices(self, team_a: str, team_b: str) -> Tuple[int, int]:
        return self.index(team_a), self.index(team_b)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __contains__(self, name) -> bool:
        return name in self._index

    def __eq__(self, other) -> bool:
        if not isinstance(other, TeamRegistry):
            return NotImplemented
        return self._names == other._names

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"TeamRegistry({len(self)} teams)"
