"""
Fixture operations for one tournament, backed by the YAML store.

Every public method loads fresh data from the store, so the service holds no
tournament state between calls. Operations that change fixtures run inside
the tournament's file lock and re-check what already exists once the lock is
held.
"""
import logging
import random
from datetime import datetime
from typing import List, Dict, Optional

import yaml

from competition.advancement import propagate_byes, record_result
from competition.categories import (
    category_display_name, normalize_category, partition_registrations,
)
from competition.elimination import (
    apply_links, calculate_bracket_size, calculate_byes, generate_single_elimination,
    get_round_name,
)
from competition.errors import NotFoundError, PreconditionError, ValidationError
from competition.models import (
    Match, Participant, Pool, PoolMembership, Qualifier, Registration,
    DEFAULT_ADVANCE_COUNT, MATCH_TYPE_KNOCKOUT, STATUS_COMPLETED, STATUS_IN_PROGRESS,
)
from competition.qualifiers import SEED_POOL_RANK, SEED_STRATEGIES, select_qualifiers
from competition.round_robin import PositionCounter, generate_round_robin_matches, split_into_pools
from competition.scoring import DEFAULT_MATCH_FORMAT, DEFAULT_SCORING_RULE
from competition.standings import calculate_pool_standings, is_pool_complete, pool_progress
from competition.store import Fixtures, FixtureStore, new_id

logger = logging.getLogger(__name__)

FIXTURE_TYPE_POOL_KNOCKOUT = 'pool_knockout'
FIXTURE_TYPE_SINGLE_ELIM = 'single_elim'
FIXTURE_TYPES = (FIXTURE_TYPE_POOL_KNOCKOUT, FIXTURE_TYPE_SINGLE_ELIM)

SEED_ORDER_REGISTERED = 'registered'
SEED_ORDER_RANDOM = 'random'
SEED_ORDERS = (SEED_ORDER_REGISTERED, SEED_ORDER_RANDOM)


def _now() -> str:
    return datetime.now().isoformat()


class FixtureService:
    """Pool generation, standings, knockout generation, scoring and deletion."""

    def __init__(self, store: FixtureStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    def __repr__(self):
        return f"FixtureService(data_dir={self.store.data_dir})"

    # -- helpers -------------------------------------------------------------

    def _rng_for(self, seed) -> random.Random:
        if seed is None:
            return self.rng
        if isinstance(seed, bool) or not isinstance(seed, (int, str)):
            raise ValidationError("seed must be an integer or a string", seed=str(seed))
        return random.Random(seed)

    def _audit(self, tournament_id, action: str, metadata: Dict = None, actor=None):
        """Append to the audit log. Failures are logged, never raised."""
        try:
            self.store.append_audit(tournament_id, action, metadata, actor)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Audit write failed for %s (%s): %s", tournament_id, action, e)

    def _check_existing(self, tournament_id, fixtures: Fixtures, replace_existing: bool):
        if fixtures.is_empty or replace_existing:
            return
        raise PreconditionError(
            "Fixtures already exist for this tournament. Pass replace_existing to regenerate.",
            tournament_id=str(tournament_id),
            existing_pools=len(fixtures.pools),
            existing_matches=len(fixtures.matches),
        )

    def _save_replacing(self, tournament_id, existing: Fixtures, fresh: Fixtures):
        """Swap ``existing`` for ``fresh``. Only called once ``fresh`` is fully built."""
        if not existing.is_empty:
            deleted = self.store.delete_fixtures(tournament_id)
            logger.info("Replacing fixtures for %s: removed %d matches and %d pools",
                        tournament_id, deleted['deleted_matches'], deleted['deleted_pools'])
        self.store.save_fixtures(tournament_id, fresh)

    def _add_pools(self, fixtures: Fixtures, tournament_id, pool_specs: List[Dict],
                   counter: PositionCounter) -> List[Pool]:
        created = []
        for pool_spec in pool_specs:
            participants = list(pool_spec.get('participants') or [])
            category = pool_spec.get('category')
            if not category:
                raise ValidationError("Every pool needs a category", pool=pool_spec.get('name'))
            advance_count = pool_spec.get('advance_count', DEFAULT_ADVANCE_COUNT)
            if isinstance(advance_count, bool) or not isinstance(advance_count, int) or advance_count < 1:
                raise ValidationError("advance_count must be an integer of at least 1",
                                      pool=pool_spec.get('name'), advance_count=str(advance_count))
            if len(participants) < 2:
                raise ValidationError(
                    f"{pool_spec.get('name', 'Pool')} needs at least 2 participants, got {len(participants)}",
                    pool=pool_spec.get('name'), participant_count=len(participants),
                )
            if len(set(participants)) != len(participants):
                raise ValidationError("A participant appears more than once in a pool", pool=pool_spec.get('name'))

            pool = Pool(
                id=new_id(),
                tournament_id=str(tournament_id),
                name=pool_spec['name'],
                category=normalize_category(category),
                size=len(participants),
                advance_count=min(advance_count, len(participants)),
                status=STATUS_IN_PROGRESS,
            )
            fixtures.pools.append(pool)
            for position, participant in enumerate(participants):
                fixtures.memberships.append(PoolMembership(pool.id, participant, position))
            for match in generate_round_robin_matches(participants, pool.id, str(tournament_id),
                                                      counter, pool.category):
                match.id = new_id()
                fixtures.matches.append(match)
            created.append(pool)
        return created

    def _add_bracket(self, fixtures: Fixtures, tournament_id, participants: List[Participant],
                     category: str) -> List[Match]:
        matches = generate_single_elimination(participants, str(tournament_id), category)
        for match in matches:
            match.id = new_id()
            if match.is_bye and match.completed_at is None:
                match.completed_at = _now()
        apply_links(matches)
        propagate_byes(matches)
        fixtures.matches.extend(matches)
        return matches

    def _pool_results(self, fixtures: Fixtures, category: str) -> List[Dict]:
        results = []
        for pool in fixtures.pools_for(category):
            matches = fixtures.matches_for_pool(pool.id)
            results.append({
                'pool': pool,
                'standings': calculate_pool_standings(pool, fixtures.memberships_for(pool.id), matches),
                'is_complete': is_pool_complete(matches),
            })
        return results

    def _match_dict(self, match: Match, total_rounds: Dict[str, int]) -> Dict:
        data = match.to_dict()
        if match.match_type == MATCH_TYPE_KNOCKOUT:
            data['round_name'] = get_round_name(match.round, total_rounds.get(match.category, match.round))
        return data

    # -- registrations and categories ----------------------------------------

    def add_registrations(self, tournament_id, rows: List[Dict], tournament_name: str = None) -> List[Registration]:
        """Store registrations supplied by the registration system."""
        if not isinstance(rows, list):
            raise ValidationError("Registrations must be a list")
        added = []
        for row in rows:
            if not isinstance(row, dict) or 'id' not in row:
                raise ValidationError("Each registration needs an id")
            added.append(Registration.from_dict(row))

        self.store.create_tournament(tournament_id, tournament_name)
        with self.store.locked(tournament_id):
            registrations = self.store.load_registrations(tournament_id)
            known = {r.id for r in registrations}
            for registration in added:
                if registration.id in known:
                    registrations = [registration if r.id == registration.id else r for r in registrations]
                else:
                    registrations.append(registration)
                    known.add(registration.id)
            self.store.save_registrations(tournament_id, registrations)
        logger.info("Stored %d registrations for %s", len(added), tournament_id)
        return added

    def detect_categories(self, tournament_id) -> List[Dict]:
        """Categories with their participant counts, largest first."""
        groups = partition_registrations(self.store.load_registrations(tournament_id))
        groups.sort(key=lambda g: -g.participant_count)
        return [g.to_dict() for g in groups]

    # -- pool fixtures -------------------------------------------------------

    def generate_pool_fixtures(self, tournament_id, pools: List[Dict],
                               replace_existing: bool = False) -> Dict:
        """
        Create the given pools and every round-robin match within them.

        ``pools`` is a list of {'name', 'category', 'participants',
        'advance_count'?} dicts. Returns {'pools', 'matches'}.
        """
        if not pools:
            raise ValidationError("No pools given")
        self.store.require_tournament(tournament_id)
        with self.store.locked(tournament_id):
            existing = self.store.load_fixtures(tournament_id)
            self._check_existing(tournament_id, existing, replace_existing)
            fixtures = Fixtures()
            created = self._add_pools(fixtures, tournament_id, pools, PositionCounter())
            self._save_replacing(tournament_id, existing, fixtures)

        pool_ids = {p.id for p in created}
        matches = [m for m in fixtures.matches if m.pool_id in pool_ids]
        logger.info("Generated %d pools with %d matches for %s", len(created), len(matches), tournament_id)
        self._audit(tournament_id, 'generate_pool_fixtures',
                    {'pools': len(created), 'matches': len(matches)})
        return {'pools': created, 'matches': matches}

    def generate_fixtures(self, tournament_id, fixture_type: str = FIXTURE_TYPE_POOL_KNOCKOUT,
                          categories: Optional[List[str]] = None,
                          number_of_pools: Optional[int] = None,
                          advance_per_pool: int = DEFAULT_ADVANCE_COUNT,
                          seed_order: str = SEED_ORDER_REGISTERED,
                          replace_existing: bool = False, seed=None,
                          actor=None) -> Dict:
        """
        Generate fixtures for every eligible category from the registrations.

        ``pool_knockout`` creates pools now and leaves the knockout for later;
        ``single_elim`` creates one bracket per category straight away.

        Returns {'categories': [{category, pools, matches, ...}], 'total_matches'}.
        """
        if not isinstance(fixture_type, str) or fixture_type not in FIXTURE_TYPES:
            raise ValidationError(f"Unknown fixture type: {fixture_type}", fixture_type=str(fixture_type))
        if not isinstance(seed_order, str) or seed_order not in SEED_ORDERS:
            raise ValidationError(f"Unknown seed order: {seed_order}", seed_order=str(seed_order))

        groups = [g for g in partition_registrations(self.store.load_registrations(tournament_id))
                  if g.eligible]
        if categories is not None and not isinstance(categories, list):
            raise ValidationError("categories must be a list of category names")
        if categories:
            wanted = [normalize_category(c) for c in categories]
            missing = [c for c in wanted if c not in {g.category for g in groups}]
            if missing:
                raise ValidationError(
                    "Some categories do not have enough participants", categories=missing)
            groups = [g for g in groups if g.category in wanted]
        if not groups:
            raise ValidationError("No category has at least 2 participants", tournament_id=str(tournament_id))

        rng = self._rng_for(seed)
        summary = []
        with self.store.locked(tournament_id):
            existing = self.store.load_fixtures(tournament_id)
            self._check_existing(tournament_id, existing, replace_existing)
            fixtures = Fixtures()
            counter = PositionCounter()

            for group in groups:
                participants = list(group.participants)
                if seed_order == SEED_ORDER_RANDOM:
                    rng.shuffle(participants)

                if fixture_type == FIXTURE_TYPE_SINGLE_ELIM:
                    matches = self._add_bracket(fixtures, tournament_id, participants, group.category)
                    summary.append({
                        'category': group.category,
                        'display_name': group.display_name,
                        'participants': len(participants),
                        'pools': 0,
                        'matches': len(matches),
                        'byes': sum(1 for m in matches if m.is_bye),
                    })
                    continue

                pool_specs = split_into_pools(participants, number_of_pools, advance_per_pool)
                for spec in pool_specs:
                    spec['category'] = group.category
                    if len(groups) > 1:
                        spec['name'] = f"{group.display_name} {spec['name']}"
                created = self._add_pools(fixtures, tournament_id, pool_specs, counter)
                pool_ids = {p.id for p in created}
                summary.append({
                    'category': group.category,
                    'display_name': group.display_name,
                    'participants': len(participants),
                    'pools': len(created),
                    'matches': sum(1 for m in fixtures.matches if m.pool_id in pool_ids),
                    'byes': 0,
                })

            self._save_replacing(tournament_id, existing, fixtures)

        total = sum(s['matches'] for s in summary)
        logger.info("Generated %s fixtures for %s: %d categories, %d matches",
                    fixture_type, tournament_id, len(summary), total)
        self._audit(tournament_id, 'generate_fixtures', {
            'fixture_type': fixture_type,
            'seed_order': seed_order,
            'categories': [s['category'] for s in summary],
            'total_matches': total,
        }, actor)
        return {'fixture_type': fixture_type, 'categories': summary, 'total_matches': total}

    # -- standings -----------------------------------------------------------

    def compute_standings(self, tournament_id, pool_id) -> Dict:
        """Ranked standings of one pool. Returns {'pool', 'standings', 'is_complete', ...}."""
        fixtures = self.store.load_fixtures(tournament_id)
        pool = fixtures.get_pool(pool_id)
        if pool is None:
            raise NotFoundError(f"Pool {pool_id} not found", pool_id=pool_id)
        matches = fixtures.matches_for_pool(pool.id)
        completed, total = pool_progress(matches)
        return {
            'pool': pool,
            'standings': calculate_pool_standings(pool, fixtures.memberships_for(pool.id), matches),
            'is_complete': is_pool_complete(matches),
            'completed_matches': completed,
            'total_matches': total,
        }

    def all_standings(self, tournament_id, category: Optional[str] = None) -> List[Dict]:
        fixtures = self.store.load_fixtures(tournament_id)
        return [self.compute_standings(tournament_id, pool.id) for pool in fixtures.pools_for(category)]

    # -- knockout fixtures ---------------------------------------------------

    def knockout_status(self, tournament_id) -> List[Dict]:
        """Per category: whether every pool is finished and a knockout can be generated."""
        fixtures = self.store.load_fixtures(tournament_id)
        status = []
        for category in fixtures.categories():
            pools = fixtures.pools_for(category)
            complete = [p for p in pools if is_pool_complete(fixtures.matches_for_pool(p.id))]
            knockout = fixtures.knockout_matches(category)
            qualifiers = sum(min(p.advance_count, p.size) for p in pools)
            status.append({
                'category': category,
                'display_name': category_display_name(category),
                'pools': len(pools),
                'pools_complete': len(complete),
                'incomplete_pools': [p.name for p in pools if p not in complete],
                'knockout_exists': bool(knockout),
                'knockout_matches': len(knockout),
                'qualifiers': qualifiers,
                'ready': bool(pools) and len(complete) == len(pools) and not knockout and qualifiers >= 2,
            })
        return status

    def generate_knockout_fixtures(self, tournament_id, category: str,
                                   qualifiers: Optional[List] = None,
                                   seed_strategy: str = SEED_POOL_RANK, seed=None,
                                   actor=None) -> Dict:
        """
        Build the knockout bracket for ``category`` from its pool finishers.

        Without explicit ``qualifiers`` they are selected from the category's
        pools, which must all be complete, and ordered by ``seed_strategy``
        (``pool_rank``, ``point_diff`` or ``random``). Returns {'category',
        'qualifiers', 'matches', 'bracket_size', 'byes'}.
        """
        if not category or not str(category).strip():
            raise ValidationError("Category is required to generate knockout fixtures")
        if not isinstance(seed_strategy, str) or seed_strategy not in SEED_STRATEGIES:
            raise ValidationError(f"Unknown seed strategy: {seed_strategy}", seed_strategy=str(seed_strategy))
        category = normalize_category(category)
        rng = self._rng_for(seed)
        self.store.require_tournament(tournament_id)

        with self.store.locked(tournament_id):
            fixtures = self.store.load_fixtures(tournament_id)
            existing = len(fixtures.knockout_matches(category))
            if qualifiers is None:
                qualifiers = select_qualifiers(self._pool_results(fixtures, category), existing,
                                               seed_strategy, rng)
            elif existing:
                raise PreconditionError(
                    "Knockout fixtures already exist for this category. Delete existing fixtures first.",
                    existing_matches=existing,
                )
            participants = [q.participant if isinstance(q, Qualifier) else q for q in qualifiers]

            matches = self._add_bracket(fixtures, tournament_id, participants, category)
            for pool in fixtures.pools_for(category):
                pool.status = STATUS_COMPLETED
            self.store.save_fixtures(tournament_id, fixtures)

        logger.info("Generated %d knockout matches for %s/%s from %d qualifiers",
                    len(matches), tournament_id, category, len(participants))
        self._audit(tournament_id, 'generate_knockout_fixtures', {
            'category': category,
            'qualifiers': len(participants),
            'seed_strategy': seed_strategy,
            'matches': len(matches),
        }, actor)
        return {
            'category': category,
            'qualifiers': qualifiers,
            'matches': matches,
            'bracket_size': calculate_bracket_size(len(participants)),
            'byes': calculate_byes(len(participants)),
        }

    # -- scoring -------------------------------------------------------------

    def record_score(self, tournament_id, match_id, set_scores,
                     match_format: str = DEFAULT_MATCH_FORMAT,
                     scoring_rule: str = DEFAULT_SCORING_RULE, entered_by=None) -> Dict:
        """Score a match and advance its winner. Returns the record_result dict plus the match."""
        self.store.require_tournament(tournament_id)
        with self.store.locked(tournament_id):
            fixtures = self.store.load_fixtures(tournament_id)
            match = fixtures.get_match(match_id)
            if match is None:
                raise NotFoundError(f"Match {match_id} not found", match_id=match_id)
            if match.match_type == MATCH_TYPE_KNOCKOUT:
                bracket = fixtures.knockout_matches(match.category)
            else:
                bracket = [match]
            result = record_result(match, set_scores, match_format, scoring_rule,
                                   bracket_matches=bracket, entered_by=entered_by)
            self.store.save_fixtures(tournament_id, fixtures)

        logger.info("Recorded %s for match %s (%s), winner %s",
                    result['score_summary'], match_id, tournament_id, result['winner'].id)
        self._audit(tournament_id, 'record_score', {
            'match_id': match_id,
            'score_summary': result['score_summary'],
            'winner': result['winner'].id,
        }, entered_by)
        result['match'] = match
        return result

    def match_history(self, tournament_id, match_id) -> List[Dict]:
        match = self.store.load_fixtures(tournament_id).get_match(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found", match_id=match_id)
        return list(match.score_history)

    # -- listing and deletion ------------------------------------------------

    def get_fixtures(self, tournament_id, category: Optional[str] = None) -> Dict:
        fixtures = self.store.load_fixtures(tournament_id)
        if category is not None:
            category = normalize_category(category)
        pools = fixtures.pools_for(category)
        matches = [m for m in fixtures.matches
                   if category is None or (m.category or '').lower() == category]
        matches.sort(key=lambda m: (m.match_type == MATCH_TYPE_KNOCKOUT, m.category or '',
                                    m.round, m.bracket_position))
        total_rounds = {}
        for m in matches:
            if m.match_type == MATCH_TYPE_KNOCKOUT:
                total_rounds[m.category] = max(total_rounds.get(m.category, 0), m.round)

        pool_dicts = []
        for pool in pools:
            data = pool.to_dict()
            data['members'] = [m.to_dict() for m in
                               sorted(fixtures.memberships_for(pool.id), key=lambda m: m.position)]
            pool_dicts.append(data)
        return {
            'pools': pool_dicts,
            'matches': [self._match_dict(m, total_rounds) for m in matches],
        }

    def delete_fixtures(self, tournament_id, actor=None) -> Dict:
        """Remove every pool, pool membership and match of the tournament."""
        self.store.require_tournament(tournament_id)
        with self.store.locked(tournament_id):
            deleted = self.store.delete_fixtures(tournament_id)
        logger.info("Deleted %d matches and %d pools for %s",
                    deleted['deleted_matches'], deleted['deleted_pools'], tournament_id)
        self._audit(tournament_id, 'delete_fixtures', deleted, actor)
        return {'deleted_matches': deleted['deleted_matches'], 'deleted_pools': deleted['deleted_pools']}
