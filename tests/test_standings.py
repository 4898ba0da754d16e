"""
Unit tests for pool standings and pool completeness.
"""
import pytest

from competition.models import (
    Match, Pool, PoolMembership, STATUS_COMPLETED, STATUS_PENDING,
)
from competition.round_robin import PositionCounter, generate_round_robin_matches
from competition.standings import (
    calculate_pool_standings,
    is_pool_complete,
    pool_matches,
    pool_progress,
)


def make_pool(participants, advance_count=2):
    pool = Pool(id='pool1', tournament_id='t1', name='Pool A', category='singles',
                size=len(participants), advance_count=advance_count)
    memberships = [PoolMembership(pool.id, p, i) for i, p in enumerate(participants)]
    matches = generate_round_robin_matches(participants, pool.id, 't1', PositionCounter())
    return pool, memberships, matches


def complete(match, score1, score2):
    match.set_scores = [[score1, score2]]
    match.winner = match.participant1 if score1 > score2 else match.participant2
    match.status = STATUS_COMPLETED


class TestStandings:
    """Tests for calculate_pool_standings."""

    def test_pool_of_four_strict_order(self, players):
        """p1 beats everyone, p2 beats p3 and p4, p3 beats p4."""
        pool, memberships, matches = make_pool(players[:4])
        for match in matches:
            complete(match, 11, 5)
        standings = calculate_pool_standings(pool, memberships, matches)

        assert len(matches) == 6
        assert [s.participant for s in standings] == players[:4]
        assert [s.rank for s in standings] == [1, 2, 3, 4]
        assert [s.wins for s in standings] == [3, 2, 1, 0]
        assert [s.advances for s in standings] == [True, True, False, False]

    def test_points_and_percentages(self, players):
        pool, memberships, matches = make_pool(players[:3])
        complete(matches[0], 11, 9)   # p1 v p2
        complete(matches[1], 7, 11)   # p1 v p3
        complete(matches[2], 11, 3)   # p2 v p3
        by_id = {s.participant.id: s for s in calculate_pool_standings(pool, memberships, matches)}

        p1 = by_id['p1']
        assert (p1.wins, p1.losses, p1.matches_played) == (1, 1, 2)
        assert (p1.points_for, p1.points_against) == (18, 20)
        assert p1.point_differential == -2
        assert p1.win_percentage == 50.0

    def test_tie_broken_by_point_differential(self, players):
        """Everyone 1-1: differential decides."""
        pool, memberships, matches = make_pool(players[:3])
        complete(matches[0], 11, 2)   # p1 beats p2 by 9
        complete(matches[1], 9, 11)   # p3 beats p1 by 2
        complete(matches[2], 11, 6)   # p2 beats p3 by 5
        standings = calculate_pool_standings(pool, memberships, matches)
        # differentials: p1 +7, p3 -3, p2 -4
        assert [s.participant.id for s in standings] == ['p1', 'p3', 'p2']

    def test_tie_broken_by_points_for(self, players):
        pool, memberships, matches = make_pool(players[:3])
        complete(matches[0], 11, 9)   # p1 +2
        complete(matches[1], 13, 15)  # p3 +2
        complete(matches[2], 11, 9)   # p2 +2
        standings = calculate_pool_standings(pool, memberships, matches)
        # all 1-1 with zero differential: p1 24, p3 24, p2 20 points for
        assert standings[-1].participant.id == 'p2'
        # p1 and p3 tie on every key; seed position decides
        assert [s.participant.id for s in standings[:2]] == ['p1', 'p3']

    def test_no_results_falls_back_to_seed_position(self, players):
        pool, memberships, matches = make_pool(players[:4])
        standings = calculate_pool_standings(pool, memberships, matches)
        assert [s.participant for s in standings] == players[:4]
        assert all(s.matches_played == 0 for s in standings)

    def test_only_completed_matches_count(self, players):
        pool, memberships, matches = make_pool(players[:3])
        complete(matches[0], 11, 4)
        matches[1].set_scores = [[11, 0]]  # entered but still pending
        standings = calculate_pool_standings(pool, memberships, matches)
        assert sum(s.matches_played for s in standings) == 2

    def test_idempotent(self, players):
        pool, memberships, matches = make_pool(players[:4])
        for i, match in enumerate(matches):
            complete(match, 11, i)
        first = [s.to_dict() for s in calculate_pool_standings(pool, memberships, matches)]
        second = [s.to_dict() for s in calculate_pool_standings(pool, memberships, matches)]
        assert first == second

    def test_slot_two_points_credited(self, players):
        """Points follow the slot the participant occupied."""
        pool, memberships, matches = make_pool(players[:2])
        complete(matches[0], 4, 11)
        by_id = {s.participant.id: s for s in calculate_pool_standings(pool, memberships, matches)}
        assert by_id['p2'].points_for == 11
        assert by_id['p2'].wins == 1


class TestPoolCompleteness:
    """A pool is complete iff every one of its matches is completed."""

    def test_complete_when_all_done(self, players):
        pool, memberships, matches = make_pool(players[:3])
        for match in matches:
            complete(match, 11, 3)
        assert is_pool_complete(matches)
        assert pool_progress(matches) == (3, 3)

    def test_one_more_pending_match_flips(self, players):
        pool, memberships, matches = make_pool(players[:3])
        for match in matches:
            complete(match, 11, 3)
        extra = Match(tournament_id='t1', round=1, bracket_position=99, pool_id=pool.id,
                      participant1=players[0], participant2=players[1], status=STATUS_PENDING)
        assert not is_pool_complete(matches + [extra])

    def test_empty_pool_is_not_complete(self):
        assert not is_pool_complete([])

    def test_pool_matches_filters_by_pool(self, players):
        pool, memberships, matches = make_pool(players[:3])
        other = Match(tournament_id='t1', round=1, bracket_position=0, pool_id='other',
                      participant1=players[4], participant2=players[5])
        assert pool_matches(pool, matches + [other]) == matches
