"""
Pool standings from completed round-robin matches.
"""
from typing import List, Tuple

from competition.models import (
    Match, Pool, PoolMembership, Standing, MATCH_TYPE_POOL, STATUS_COMPLETED,
)
from competition.scoring import points_by_slot


def pool_matches(pool: Pool, matches: List[Match]) -> List[Match]:
    """Matches belonging to ``pool``, whatever their status."""
    return [m for m in matches if m.match_type == MATCH_TYPE_POOL and m.pool_id == pool.id]


def is_pool_complete(matches: List[Match]) -> bool:
    """True when the pool has matches and every one of them is completed."""
    return bool(matches) and all(m.status == STATUS_COMPLETED for m in matches)


def pool_progress(matches: List[Match]) -> Tuple[int, int]:
    """(completed, total) match counts."""
    completed = sum(1 for m in matches if m.status == STATUS_COMPLETED)
    return completed, len(matches)


def standing_sort_key(standing: Standing):
    # wins -> point differential -> points for -> seed position
    return (-standing.wins, -standing.point_differential, -standing.points_for, standing.position)


def calculate_pool_standings(pool: Pool, memberships: List[PoolMembership],
                             matches: List[Match]) -> List[Standing]:
    """
    Calculate ranked standings for one pool.

    Only completed pool matches of this pool count. Points come from the set
    scores of whichever slot the participant occupied.

    Ranking: wins -> point differential -> points for -> seed position.
    The top ``pool.advance_count`` are flagged as advancing.
    """
    members = sorted(
        (m for m in memberships if m.pool_id == pool.id),
        key=lambda m: m.position,
    )
    stats = {m.participant: Standing(m.participant, m.position) for m in members}

    for match in pool_matches(pool, matches):
        if match.status != STATUS_COMPLETED:
            continue
        slot1_points, slot2_points = points_by_slot(match.set_scores)
        for slot, points_for, points_against in ((1, slot1_points, slot2_points),
                                                 (2, slot2_points, slot1_points)):
            participant = match.get_slot(slot)
            standing = stats.get(participant)
            if standing is None:
                continue
            standing.matches_played += 1
            standing.points_for += points_for
            standing.points_against += points_against
            if match.winner is None:
                continue
            if match.winner == participant:
                standing.wins += 1
            else:
                standing.losses += 1

    ranked = sorted(stats.values(), key=standing_sort_key)
    for rank, standing in enumerate(ranked, start=1):
        standing.rank = rank
        standing.advances = rank <= pool.advance_count
    return ranked
