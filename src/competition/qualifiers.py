"""
Selecting pool finishers for the knockout bracket and seeding them.
"""
import random
from typing import List, Dict, Optional

from competition.errors import PreconditionError, ValidationError
from competition.models import Qualifier

SEED_POOL_RANK = 'pool_rank'
SEED_POINT_DIFF = 'point_diff'
SEED_RANDOM = 'random'
SEED_STRATEGIES = (SEED_POOL_RANK, SEED_POINT_DIFF, SEED_RANDOM)


def seed_by_pool_rank(qualifiers: List[Qualifier]) -> List[Qualifier]:
    """
    Order qualifiers by pool finish position: every pool winner first, then
    every runner-up, and so on. Within one finish position pools keep their
    input order.
    """
    return sorted(qualifiers, key=lambda q: q.pool_rank)


def seed_by_point_differential(qualifiers: List[Qualifier]) -> List[Qualifier]:
    """Best pool point differential first; ties keep pool rank order."""
    return sorted(seed_by_pool_rank(qualifiers), key=lambda q: -q.point_differential)


def seed_qualifiers(qualifiers: List[Qualifier], seed_strategy: str = SEED_POOL_RANK,
                    rng: Optional[random.Random] = None) -> List[Qualifier]:
    """Order qualifiers with ``seed_strategy`` and assign seeds 1..n."""
    if not isinstance(seed_strategy, str) or seed_strategy not in SEED_STRATEGIES:
        raise ValidationError(f"Unknown seed strategy: {seed_strategy}", seed_strategy=str(seed_strategy))

    if seed_strategy == SEED_POINT_DIFF:
        seeded = seed_by_point_differential(qualifiers)
    elif seed_strategy == SEED_RANDOM:
        seeded = list(qualifiers)
        (rng or random.Random()).shuffle(seeded)
    else:
        seeded = seed_by_pool_rank(qualifiers)

    for seed, qualifier in enumerate(seeded, start=1):
        qualifier.seed = seed
    return seeded


def select_qualifiers(pool_results: List[Dict], existing_knockout_matches: int = 0,
                      seed_strategy: str = SEED_POOL_RANK,
                      rng: Optional[random.Random] = None) -> List[Qualifier]:
    """
    Take the top ``advance_count`` finishers of each pool and seed them.

    ``pool_results`` is a list of {'pool': Pool, 'standings': [Standing...],
    'is_complete': bool} in pool order.

    Raises PreconditionError when a pool still has unfinished matches or the
    category already has knockout matches, and ValidationError when fewer
    than 2 participants qualify or the seed strategy is unknown.
    """
    if not pool_results:
        raise PreconditionError("No pools found for this category")

    incomplete = [r['pool'].name for r in pool_results if not r['is_complete']]
    if incomplete:
        raise PreconditionError(
            "Pools not complete. Finish all pool matches first.",
            incomplete_pools=incomplete,
        )

    if existing_knockout_matches:
        raise PreconditionError(
            "Knockout fixtures already exist for this category. Delete existing fixtures first.",
            existing_matches=existing_knockout_matches,
        )

    qualifiers = []
    for result in pool_results:
        pool = result['pool']
        for standing in sorted(result['standings'], key=lambda s: s.rank):
            if standing.rank > pool.advance_count:
                break
            qualifiers.append(Qualifier(
                participant=standing.participant,
                pool_rank=standing.rank,
                pool_name=pool.name,
                pool_id=pool.id,
                point_differential=standing.point_differential,
            ))

    if len(qualifiers) < 2:
        raise ValidationError(
            f"Not enough qualifiers ({len(qualifiers)}) to generate knockout fixtures",
            qualifiers=len(qualifiers),
        )

    return seed_qualifiers(qualifiers, seed_strategy, rng)
