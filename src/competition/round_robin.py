"""
Pool play: splitting a category into pools and generating round-robin matches.
"""
import math
import string
from itertools import combinations
from typing import List, Dict, Optional

from competition.errors import ValidationError
from competition.models import (
    Match, Participant, DEFAULT_ADVANCE_COUNT, MATCH_TYPE_POOL, STATUS_PENDING,
)

MIN_POOL_SIZE = 3
MAX_POOL_SIZE = 6
IDEAL_POOL_SIZE = 4
SINGLE_POOL_LIMIT = 6


class PositionCounter:
    """Hands out increasing bracket positions for one generation run.

    Passed through the pipeline instead of living in module state, so two
    tournaments generated at the same time never share a counter.
    """

    def __init__(self, start: int = 0):
        self._next = start

    def take(self) -> int:
        value = self._next
        self._next += 1
        return value

    @property
    def value(self) -> int:
        return self._next


def calculate_optimal_pools(participant_count: int, advance_per_pool: int = DEFAULT_ADVANCE_COUNT) -> Dict:
    """Pick a pool count giving pools of 3-6 participants, as close to 4 as possible.

    Returns dict with 'number_of_pools', 'pool_size' and 'advance_per_pool'.
    """
    if participant_count <= SINGLE_POOL_LIMIT:
        return {
            'number_of_pools': 1,
            'pool_size': participant_count,
            'advance_per_pool': min(advance_per_pool, participant_count // 2),
        }

    best_pools = 2
    best_diff = None
    max_pools = math.ceil(participant_count / MIN_POOL_SIZE)
    for num_pools in range(2, max_pools + 1):
        avg_size = participant_count / num_pools
        if MIN_POOL_SIZE <= avg_size <= MAX_POOL_SIZE:
            diff = abs(avg_size - IDEAL_POOL_SIZE)
            if best_diff is None or diff < best_diff:
                best_diff = diff
                best_pools = num_pools

    pool_size = math.ceil(participant_count / best_pools)
    return {
        'number_of_pools': best_pools,
        'pool_size': pool_size,
        'advance_per_pool': min(advance_per_pool, pool_size // 2),
    }


def get_pool_name(index: int) -> str:
    """Pool A, Pool B, ... then Pool 27, Pool 28 past the alphabet."""
    if index < len(string.ascii_uppercase):
        return f"Pool {string.ascii_uppercase[index]}"
    return f"Pool {index + 1}"


def split_into_pools(participants: List[Participant], number_of_pools: Optional[int] = None,
                     advance_per_pool: int = DEFAULT_ADVANCE_COUNT) -> List[Dict]:
    """Split participants into contiguous pools whose sizes differ by at most one.

    Without ``number_of_pools`` the count comes from calculate_optimal_pools.
    Each pool advances at most ``size - 1`` participants.

    Returns list of {'name', 'participants', 'advance_count'} dicts.
    """
    count = len(participants)
    if count < 2:
        raise ValidationError(
            f"Need at least 2 participants for pool play, got {count}", participant_count=count)
    if isinstance(advance_per_pool, bool) or not isinstance(advance_per_pool, int) or advance_per_pool < 1:
        raise ValidationError("advance_per_pool must be at least 1", advance_per_pool=str(advance_per_pool))

    if number_of_pools is None:
        config = calculate_optimal_pools(count, advance_per_pool)
        number_of_pools = config['number_of_pools']
        advance_per_pool = max(1, config['advance_per_pool'])
    else:
        if isinstance(number_of_pools, bool) or not isinstance(number_of_pools, int) or number_of_pools < 1:
            raise ValidationError("number_of_pools must be at least 1", number_of_pools=str(number_of_pools))
        number_of_pools = min(number_of_pools, count // 2)

    base_size, extra = divmod(count, number_of_pools)
    pools = []
    start = 0
    for i in range(number_of_pools):
        size = base_size + (1 if i < extra else 0)
        chunk = participants[start:start + size]
        start += size
        if len(chunk) < 2:
            continue
        pools.append({
            'name': get_pool_name(len(pools)),
            'participants': list(chunk),
            'advance_count': min(advance_per_pool, len(chunk) - 1),
        })
    return pools


def generate_round_robin_matches(participants: List[Participant], pool_id, tournament_id,
                                 counter: PositionCounter, category: str = None) -> List[Match]:
    """Generate one match per unordered pair, in input order (i < j).

    Fewer than 2 participants yields no matches; callers reject such pools.
    """
    if len(participants) < 2:
        return []
    kinds = {p.kind for p in participants}
    if len(kinds) > 1:
        raise ValidationError("A pool cannot mix teams and individual players", pool_id=pool_id)

    matches = []
    for first, second in combinations(participants, 2):
        matches.append(Match(
            tournament_id=tournament_id,
            category=category,
            pool_id=pool_id,
            match_type=MATCH_TYPE_POOL,
            round=1,
            bracket_position=counter.take(),
            participant1=first,
            participant2=second,
            status=STATUS_PENDING,
        ))
    return matches
