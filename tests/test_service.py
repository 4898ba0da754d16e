"""
Integration tests for FixtureService against a temporary YAML store.
"""
import pytest

from competition.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from competition.models import (
    Participant, MATCH_TYPE_POOL, STATUS_COMPLETED, STATUS_PENDING,
)


def register(service, tournament_id, count, category='singles'):
    rows = [{'id': f"{category}-r{i}", 'category': category, 'player_id': f"{category}-p{i}"}
            for i in range(1, count + 1)]
    service.add_registrations(tournament_id, rows)


def finish_pools(service, tournament_id, category=None):
    """Slot 1 wins every pending pool match 11-5."""
    fixtures = service.store.load_fixtures(tournament_id)
    for match in fixtures.matches:
        if match.match_type == MATCH_TYPE_POOL and match.status == STATUS_PENDING:
            if category is None or match.category == category:
                service.record_score(tournament_id, match.id, [[11, 5]])


class TestGenerateFixtures:
    """Pool generation from registrations."""

    def test_pool_knockout(self, service):
        register(service, 't1', 12)
        result = service.generate_fixtures('t1', number_of_pools=3)
        assert result['total_matches'] == 18
        fixtures = service.store.load_fixtures('t1')
        assert [p.name for p in fixtures.pools] == ['Pool A', 'Pool B', 'Pool C']
        assert all(p.status == 'in_progress' for p in fixtures.pools)
        assert sorted(m.bracket_position for m in fixtures.matches) == list(range(18))
        assert len(fixtures.memberships) == 12

    def test_existing_fixtures_need_replace(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1')
        with pytest.raises(PreconditionError) as exc:
            service.generate_fixtures('t1')
        assert exc.value.context['existing_matches'] == 6

        service.generate_fixtures('t1', replace_existing=True)
        assert len(service.store.load_fixtures('t1').matches) == 6

    def test_single_elim(self, service):
        register(service, 't1', 5)
        result = service.generate_fixtures('t1', fixture_type='single_elim')
        assert result['categories'][0]['matches'] == 6
        knockout = service.store.load_fixtures('t1').knockout_matches('singles')
        assert len(knockout) == 6
        assert all(m.id for m in knockout)
        final = [m for m in knockout if m.next_match_id is None]
        assert len(final) == 1 and final[0].round == 3

    def test_multiple_categories(self, service):
        register(service, 't1', 4, 'singles')
        service.add_registrations('t1', [
            {'id': f"d{i}", 'category': 'doubles', 'team_id': f"team{i}"} for i in range(3)
        ])
        result = service.generate_fixtures('t1')
        assert [c['category'] for c in result['categories']] == ['singles', 'doubles']
        names = [p.name for p in service.store.load_fixtures('t1').pools]
        assert names == ['Singles Pool A', 'Doubles Pool A']

    def test_ineligible_category_requested(self, service):
        register(service, 't1', 4)
        with pytest.raises(ValidationError):
            service.generate_fixtures('t1', categories=['mixed'])

    def test_random_seed_order_is_reproducible(self, service):
        register(service, 't1', 8)
        service.generate_fixtures('t1', seed_order='random', seed=7)
        first = [m.participant.id for m in service.store.load_fixtures('t1').memberships]
        service.generate_fixtures('t1', seed_order='random', seed=7, replace_existing=True)
        second = [m.participant.id for m in service.store.load_fixtures('t1').memberships]
        assert first == second
        assert sorted(first) == sorted(f"singles-p{i}" for i in range(1, 9))

    def test_unknown_tournament(self, service):
        with pytest.raises(NotFoundError):
            service.generate_fixtures('nope')

    def test_concurrent_generation_conflicts(self, service):
        register(service, 't1', 4)
        with service.store.locked('t1'):
            with pytest.raises(ConflictError):
                service.generate_fixtures('t1')
        assert service.store.load_fixtures('t1').is_empty


class TestGeneratePoolFixtures:
    def test_explicit_pools(self, service, players):
        service.store.create_tournament('t1')
        result = service.generate_pool_fixtures('t1', [
            {'name': 'Pool A', 'category': 'singles', 'participants': players[:4]},
            {'name': 'Pool B', 'category': 'singles', 'participants': players[4:7], 'advance_count': 1},
        ])
        assert len(result['pools']) == 2
        assert len(result['matches']) == 6 + 3
        assert result['pools'][1].advance_count == 1

    def test_pool_needs_two(self, service, players):
        service.store.create_tournament('t1')
        with pytest.raises(ValidationError):
            service.generate_pool_fixtures('t1', [{'name': 'Pool A', 'category': 'singles',
                                                   'participants': players[:1]}])
        assert service.store.load_fixtures('t1').is_empty


class TestStandingsAndKnockout:
    """Standings, knockout status and knockout generation."""

    def test_standings(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1')
        pool = service.store.load_fixtures('t1').pools[0]
        before = service.compute_standings('t1', pool.id)
        assert not before['is_complete']
        assert before['total_matches'] == 6

        finish_pools(service, 't1')
        after = service.compute_standings('t1', pool.id)
        assert after['is_complete']
        assert [s.rank for s in after['standings']] == [1, 2, 3, 4]
        assert [s.wins for s in after['standings']] == [3, 2, 1, 0]

    def test_unknown_pool(self, service):
        register(service, 't1', 4)
        with pytest.raises(NotFoundError):
            service.compute_standings('t1', 'missing')

    def test_knockout_rejected_while_pool_pending(self, service):
        register(service, 't1', 12)
        service.generate_fixtures('t1', number_of_pools=3)
        fixtures = service.store.load_fixtures('t1')
        # leave the last match of Pool C pending
        for match in fixtures.matches[:-1]:
            service.record_score('t1', match.id, [[11, 5]])

        assert not service.knockout_status('t1')[0]['ready']
        with pytest.raises(PreconditionError) as exc:
            service.generate_knockout_fixtures('t1', 'singles')
        assert exc.value.context['incomplete_pools'] == ['Pool C']
        assert service.store.load_fixtures('t1').knockout_matches() == []

    def test_knockout_seeding_three_pools(self, service):
        register(service, 't1', 12)
        service.generate_fixtures('t1', number_of_pools=3, advance_per_pool=2)
        finish_pools(service, 't1')

        status = service.knockout_status('t1')[0]
        assert status['ready'] and status['qualifiers'] == 6

        result = service.generate_knockout_fixtures('t1', 'Singles')
        seeds = [q.participant.id for q in result['qualifiers']]
        # pool A holds p1-p4, pool B p5-p8, pool C p9-p12; slot 1 always wins
        assert seeds == ['singles-p1', 'singles-p5', 'singles-p9',
                         'singles-p2', 'singles-p6', 'singles-p10']
        assert result['bracket_size'] == 8 and result['byes'] == 2
        assert len(result['matches']) == 3 + 2 + 1

        fixtures = service.store.load_fixtures('t1')
        assert all(p.status == STATUS_COMPLETED for p in fixtures.pools)
        with pytest.raises(PreconditionError):
            service.generate_knockout_fixtures('t1', 'singles')

    def test_knockout_requires_category(self, service):
        register(service, 't1', 4)
        with pytest.raises(ValidationError):
            service.generate_knockout_fixtures('t1', '')

    def test_explicit_qualifiers(self, service):
        register(service, 't1', 4)
        entrants = [Participant.individual(f"singles-p{i}") for i in range(1, 5)]
        result = service.generate_knockout_fixtures('t1', 'singles', qualifiers=entrants)
        assert len(result['matches']) == 3


class TestScoring:
    """Scores recorded through the service advance bracket winners."""

    def test_knockout_progression(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1', fixture_type='single_elim')
        knockout = sorted(service.store.load_fixtures('t1').knockout_matches('singles'),
                          key=lambda m: (m.round, m.bracket_position))
        first, second, final = knockout

        result = service.record_score('t1', first.id, [[11, 7], [11, 9]], 'best_of_3', 'golden_point',
                                      entered_by='ref')
        assert result['advanced_match_id'] == final.id
        service.record_score('t1', second.id, [[5, 11]])

        final = service.store.load_fixtures('t1').get_match(final.id)
        assert final.participant1.id == 'singles-p1'
        assert final.participant2.id == 'singles-p4'

        history = service.match_history('t1', first.id)
        assert history[0]['new_score_summary'] == '11-7, 11-9'
        assert history[0]['entered_by'] == 'ref'

    def test_unknown_match(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1')
        with pytest.raises(NotFoundError):
            service.record_score('t1', 'missing', [[11, 2]])

    def test_invalid_score_not_saved(self, service):
        register(service, 't1', 2)
        service.generate_fixtures('t1')
        match = service.store.load_fixtures('t1').matches[0]
        with pytest.raises(ValidationError):
            service.record_score('t1', match.id, [[11, 11]])
        assert service.store.load_fixtures('t1').matches[0].status == STATUS_PENDING


class TestDeleteAndAudit:
    def test_delete_isolated(self, service):
        register(service, 't1', 4)
        register(service, 't2', 4)
        service.generate_fixtures('t1')
        service.generate_fixtures('t2')

        assert service.delete_fixtures('t1') == {'deleted_matches': 6, 'deleted_pools': 1}
        assert service.store.load_fixtures('t1').is_empty
        other = service.store.load_fixtures('t2')
        assert len(other.matches) == 6 and len(other.pools) == 1 and len(other.memberships) == 4

    def test_audit_records_actions(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1', actor='organizer')
        service.delete_fixtures('t1')
        actions = [e['action'] for e in service.store.load_audit('t1')]
        assert actions == ['generate_fixtures', 'delete_fixtures']

    def test_audit_failure_does_not_fail_operation(self, service, monkeypatch):
        register(service, 't1', 4)

        def broken(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(service.store, 'append_audit', broken)
        result = service.generate_fixtures('t1')
        assert result['total_matches'] == 6

    def test_detect_categories(self, service):
        register(service, 't1', 2, 'singles')
        register(service, 't1', 3, 'mixed')
        categories = service.detect_categories('t1')
        assert [c['category'] for c in categories] == ['mixed', 'singles']
        assert categories[0]['display_name'] == 'Mixed Doubles'
        assert categories[0]['placeholders'] == ['mixed-p1', 'mixed-p2', 'mixed-p3']


def finish_pools_with_margins(service, tournament_id, margins):
    """Slot 1 wins every pool match, 11 to the loser score given per pool index."""
    fixtures = service.store.load_fixtures(tournament_id)
    loser_score = {pool.id: margins[i] for i, pool in enumerate(fixtures.pools)}
    for match in fixtures.matches:
        if match.match_type == MATCH_TYPE_POOL and match.status == STATUS_PENDING:
            service.record_score(tournament_id, match.id, [[11, loser_score[match.pool_id]]])


class TestReplaceExisting:
    """Replacing fixtures only discards the old ones once the new ones are built."""

    def test_invalid_advance_keeps_old_fixtures(self, service):
        register(service, 't1', 4)
        service.generate_fixtures('t1')
        before = sorted(m.id for m in service.store.load_fixtures('t1').matches)

        with pytest.raises(ValidationError):
            service.generate_fixtures('t1', advance_per_pool=0, replace_existing=True)

        fixtures = service.store.load_fixtures('t1')
        assert sorted(m.id for m in fixtures.matches) == before
        assert len(fixtures.pools) == 1 and len(fixtures.memberships) == 4

    def test_invalid_pool_keeps_old_pools(self, service, players):
        service.store.create_tournament('t1')
        service.generate_pool_fixtures('t1', [
            {'name': 'Pool A', 'category': 'singles', 'participants': players[:4]},
        ])
        with pytest.raises(ValidationError):
            service.generate_pool_fixtures('t1', [
                {'name': 'Pool Z', 'category': 'singles', 'participants': players[:1]},
            ], replace_existing=True)

        fixtures = service.store.load_fixtures('t1')
        assert [p.name for p in fixtures.pools] == ['Pool A']
        assert len(fixtures.matches) == 6

    def test_valid_replacement_swaps_pools(self, service, players):
        service.store.create_tournament('t1')
        service.generate_pool_fixtures('t1', [
            {'name': 'Pool A', 'category': 'singles', 'participants': players[:4]},
        ])
        service.generate_pool_fixtures('t1', [
            {'name': 'Pool B', 'category': 'singles', 'participants': players[4:7]},
        ], replace_existing=True)

        fixtures = service.store.load_fixtures('t1')
        assert [p.name for p in fixtures.pools] == ['Pool B']
        assert len(fixtures.matches) == 3
        assert len(fixtures.memberships) == 3


class TestPoolValidation:
    @pytest.mark.parametrize('advance_count', [-1, 0, '2', 1.5, True])
    def test_bad_advance_count_rejected(self, service, players, advance_count):
        service.store.create_tournament('t1')
        with pytest.raises(ValidationError) as exc:
            service.generate_pool_fixtures('t1', [
                {'name': 'Pool A', 'category': 'singles', 'participants': players[:4],
                 'advance_count': advance_count},
            ])
        assert exc.value.context['advance_count'] == str(advance_count)
        assert service.store.load_fixtures('t1').is_empty

    def test_categories_must_be_a_list(self, service):
        register(service, 't1', 4)
        with pytest.raises(ValidationError):
            service.generate_fixtures('t1', categories='singles')

    @pytest.mark.parametrize('field', ['fixture_type', 'seed_order'])
    def test_non_string_options_rejected(self, service, field):
        register(service, 't1', 4)
        with pytest.raises(ValidationError):
            service.generate_fixtures('t1', **{field: ['pool_knockout']})


class TestKnockoutSeedStrategies:
    """Knockout seeding by point differential and at random."""

    def _two_finished_pools(self, service, tournament_id):
        register(service, tournament_id, 8)
        service.generate_fixtures(tournament_id, number_of_pools=2, advance_per_pool=2)
        # pool A margins are narrow, pool B wins are lopsided
        finish_pools_with_margins(service, tournament_id, [9, 0])

    def test_point_diff(self, service):
        self._two_finished_pools(service, 't1')
        result = service.generate_knockout_fixtures('t1', 'singles', seed_strategy='point_diff')
        # A: p1 +6, p2 +2. B: p5 +33, p6 +11
        assert [q.participant.id for q in result['qualifiers']] == [
            'singles-p5', 'singles-p6', 'singles-p1', 'singles-p2']
        assert [q.seed for q in result['qualifiers']] == [1, 2, 3, 4]
        actions = service.store.load_audit('t1')
        assert actions[-1]['metadata']['seed_strategy'] == 'point_diff'

    def test_pool_rank_is_default(self, service):
        self._two_finished_pools(service, 't1')
        result = service.generate_knockout_fixtures('t1', 'singles')
        assert [q.participant.id for q in result['qualifiers']] == [
            'singles-p1', 'singles-p5', 'singles-p2', 'singles-p6']

    def test_random_with_seed_is_reproducible(self, service):
        self._two_finished_pools(service, 't1')
        self._two_finished_pools(service, 't2')
        first = service.generate_knockout_fixtures('t1', 'singles', seed_strategy='random', seed=11)
        second = service.generate_knockout_fixtures('t2', 'singles', seed_strategy='random', seed=11)
        assert ([q.participant.id for q in first['qualifiers']]
                == [q.participant.id for q in second['qualifiers']])

    def test_unknown_strategy_rejected_before_any_change(self, service):
        self._two_finished_pools(service, 't1')
        with pytest.raises(ValidationError):
            service.generate_knockout_fixtures('t1', 'singles', seed_strategy='fastest')
        assert service.store.load_fixtures('t1').knockout_matches() == []

    @pytest.mark.parametrize('seed', [[1], {'a': 1}, 1.5, True])
    def test_bad_seed_type_rejected(self, service, seed):
        self._two_finished_pools(service, 't1')
        with pytest.raises(ValidationError):
            service.generate_knockout_fixtures('t1', 'singles', seed_strategy='random', seed=seed)
