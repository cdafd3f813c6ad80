"""Tests for matchnet.adjacency module."""

import random

import pytest
import numpy as np
from matchnet.adjacency import (
    AdjacencyStack, build_adjacency_stack, number_meetings, sort_chronologically,
)
from matchnet.data import DataError
from matchnet.registry import TeamRegistry, pair_key
from conftest import make_match, random_network


class TestNumberMeetings:
    def test_numbers_follow_date_not_input_order(self, sample_matches):
        meetings = number_meetings(sample_matches)
        bills_jets = [m for m in meetings if m.pair == ("Bills", "Jets")]
        assert [m.number for m in bills_jets] == [1, 2]
        assert bills_jets[0].match.date < bills_jets[1].match.date

    def test_global_sort(self, sample_matches):
        meetings = number_meetings(sample_matches)
        dates = [m.match.date for m in meetings]
        assert dates == sorted(dates)

    def test_same_date_keeps_input_order(self):
        matches = [
            make_match("2023-09-10", "A", "B", 1.0),
            make_match("2023-09-10", "B", "A", -1.0),
        ]
        meetings = number_meetings(matches)
        assert meetings[0].match.margin == 1.0
        assert meetings[0].number == 1
        assert meetings[1].number == 2

    def test_empty(self):
        assert number_meetings([]) == ()


class TestBuildAdjacencyStack:
    def test_single_positive_match(self):
        stack = build_adjacency_stack([make_match("2024-01-01", "A", "B", 3.0)])
        reg = stack.registry
        assert len(stack) == 1
        m = stack[1]
        assert m[reg.index("A"), reg.index("B")] == 1
        assert m[reg.index("B"), reg.index("A")] == 1
        assert m.sum() == 2

    def test_two_meetings_regardless_of_row_order(self):
        later = make_match("2024-02-01", "B", "A", 5.0)
        earlier = make_match("2024-01-01", "A", "B", -5.0)
        stack = build_adjacency_stack([later, earlier])
        i, j = stack.registry.pair_indices("A", "B")
        assert len(stack) == 2
        assert stack[1][i, j] == 0
        assert stack[2][i, j] == 1
        assert stack.as_array()[0][i, j] == 0
        assert stack.as_array()[1][i, j] == 1

    def test_sample_matrices(self, sample_stack):
        reg = sample_stack.registry
        assert reg.names == ("Bills", "Dolphins", "Jets", "Patriots")
        first = np.zeros((4, 4), dtype=np.int8)
        for a, b in [("Dolphins", "Patriots"), ("Dolphins", "Jets")]:
            i, j = reg.pair_indices(a, b)
            first[i, j] = first[j, i] = 1
        second = np.zeros((4, 4), dtype=np.int8)
        for a, b in [("Bills", "Jets"), ("Jets", "Patriots"), ("Bills", "Dolphins"), ("Bills", "Patriots")]:
            i, j = reg.pair_indices(a, b)
            second[i, j] = second[j, i] = 1
        np.testing.assert_array_equal(sample_stack[1], first)
        np.testing.assert_array_equal(sample_stack[2], second)

    def test_matrix_count_is_max_meetings(self, sample_stack):
        assert sample_stack.max_meetings == max(sample_stack.meeting_counts.values()) == 2

    def test_zero_margin_is_not_over(self, sample_stack):
        i, j = sample_stack.registry.pair_indices("Bills", "Dolphins")
        assert sample_stack[1][i, j] == 0

    def test_missing_meetings_stay_zero(self, sample_stack):
        assert sample_stack.meetings_between("Jets", "Dolphins") == 1
        i, j = sample_stack.registry.pair_indices("Dolphins", "Jets")
        assert sample_stack[2][i, j] == 0
        assert not sample_stack.observed_mask(2)[i, j]
        assert sample_stack.observed_mask(1)[i, j]

    def test_matrices_read_only(self, sample_stack):
        with pytest.raises(ValueError):
            sample_stack[1][0, 1] = 1

    def test_unknown_meeting(self, sample_stack):
        with pytest.raises(KeyError):
            sample_stack[3]
        assert 3 not in sample_stack

    def test_team_not_in_registry(self):
        reg = TeamRegistry(["A", "B"])
        with pytest.raises(DataError):
            build_adjacency_stack([make_match("2024-01-01", "A", "C", 1.0)], reg)

    def test_registry_shared(self, sample_matches):
        reg = TeamRegistry.from_matches(sample_matches)
        stack = build_adjacency_stack(sample_matches, reg)
        assert stack.registry is reg
        assert all(stack[m].shape == (len(reg), len(reg)) for m in stack)

    def test_empty_log(self):
        stack = build_adjacency_stack([], TeamRegistry(["A", "B"]))
        assert len(stack) == 0
        assert stack.as_array().shape == (0, 2, 2)

    def test_summary(self, sample_stack):
        summary = sample_stack.summary()
        assert list(summary["meeting"]) == [1, 2]
        assert list(summary["pairs_met"]) == [6, 5]
        assert list(summary["over_edges"]) == [2, 4]


class TestInvariants:
    """Symmetry, zero diagonal and chronological numbering on random logs."""

    @pytest.mark.parametrize("seed", range(5))
    def test_random_logs(self, seed):
        rng = random.Random(seed)
        teams = [f"T{i}" for i in range(8)]
        matches = []
        for _ in range(60):
            a, b = rng.sample(teams, 2)
            day = rng.randint(1, 28)
            month = rng.randint(1, 12)
            matches.append(make_match(f"2023-{month:02d}-{day:02d}", a, b, rng.choice([-3.0, 0.0, 2.5])))

        stack = build_adjacency_stack(matches)
        counts = {}
        for m in matches:
            key = pair_key(m.team_a, m.team_b)
            counts[key] = counts.get(key, 0) + 1

        assert len(stack) == max(counts.values())
        for m in stack:
            mat = stack[m]
            np.testing.assert_array_equal(mat, mat.T)
            assert np.all(np.diag(mat) == 0)
            assert set(np.unique(mat)) <= {0, 1}

        # Entries beyond a pair's meeting count are zero
        for (a, b), k in counts.items():
            i, j = stack.registry.pair_indices(a, b)
            for m in range(k + 1, len(stack) + 1):
                assert stack[m][i, j] == 0

        # Meeting m holds the m-th chronological result of each pair
        ordered = sorted(matches, key=lambda r: r.date)
        seen = {}
        for r in ordered:
            key = pair_key(r.team_a, r.team_b)
            seen[key] = seen.get(key, 0) + 1
            i, j = stack.registry.pair_indices(r.team_a, r.team_b)
            assert stack[seen[key]][i, j] == r.edge

    def test_sort_chronologically_stable(self):
        matches = [make_match("2023-01-02", "A", "B", 1.0), make_match("2023-01-01", "C", "D", 1.0),
                   make_match("2023-01-02", "C", "A", 1.0)]
        ordered = sort_chronologically(matches)
        assert [m.team_a for m in ordered] == ["C", "A", "C"]

    def test_stack_wraps_random_network(self):
        net = random_network(5, seed=3)
        reg = TeamRegistry([f"T{i}" for i in range(5)])
        net.setflags(write=False)
        stack = AdjacencyStack({1: net}, reg, {})
        assert stack.n_teams == 5
        assert len(list(stack)) == 1
