"""
Flask JSON API for pickleball fixture generation.
"""
import os
import logging
from flask import Flask, request, jsonify

from competition.errors import FixtureError, ValidationError
from competition.service import FixtureService
from competition.store import FixtureStore, DEFAULT_LOCK_TIMEOUT

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))
FIXTURE_LOCK_TIMEOUT = float(os.environ.get('FIXTURE_LOCK_TIMEOUT', DEFAULT_LOCK_TIMEOUT))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
app.logger.setLevel(LOG_LEVEL)


def get_service() -> FixtureService:
    """Build a service over the current data directory. Nothing is cached between requests."""
    return FixtureService(FixtureStore(DATA_DIR, lock_timeout=FIXTURE_LOCK_TIMEOUT))


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _int_or_none(value, name):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer', **{name: value}) from None


def _bool_or_default(value, name, default=False) -> bool:
    """Accept a JSON boolean or the strings "true"/"false"."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise ValidationError(f'{name} must be true or false', **{name: str(value)})


def _standings_dict(result: dict) -> dict:
    return {
        'pool': result['pool'].to_dict(),
        'standings': [s.to_dict() for s in result['standings']],
        'is_complete': result['is_complete'],
        'completed_matches': result['completed_matches'],
        'total_matches': result['total_matches'],
    }


@app.errorhandler(FixtureError)
def handle_fixture_error(error):
    if error.status_code >= 500:
        app.logger.error(f'{request.path}: {error.message}')
    else:
        app.logger.info(f'{request.path} rejected ({error.status_code}): {error.message}')
    return jsonify(error.to_dict()), error.status_code


@app.route('/api/tournaments/<tournament_id>/registrations', methods=['POST'])
def api_add_registrations(tournament_id):
    """Store registrations for a tournament, creating it if needed."""
    data = _json_body()
    rows = data.get('registrations')
    if rows is None:
        return jsonify({'success': False, 'error': 'registrations are required'}), 400
    added = get_service().add_registrations(tournament_id, rows, data.get('name'))
    return jsonify({'success': True, 'added': len(added)})


@app.route('/api/tournaments/<tournament_id>/detect-categories')
def api_detect_categories(tournament_id):
    categories = get_service().detect_categories(tournament_id)
    return jsonify({'success': True, 'categories': categories})


@app.route('/api/tournaments/<tournament_id>/generate-fixtures', methods=['POST'])
def api_generate_fixtures(tournament_id):
    """Generate pool or single elimination fixtures for every eligible category."""
    data = _json_body()
    advance = _int_or_none(data.get('advance_per_pool'), 'advance_per_pool')
    result = get_service().generate_fixtures(
        tournament_id,
        fixture_type=data.get('fixture_type', 'pool_knockout'),
        categories=data.get('categories'),
        number_of_pools=_int_or_none(data.get('number_of_pools'), 'number_of_pools'),
        advance_per_pool=advance if advance is not None else 2,
        seed_order=data.get('seed_order', 'registered'),
        replace_existing=_bool_or_default(data.get('replace_existing'), 'replace_existing'),
        seed=data.get('seed'),
        actor=data.get('user_id'),
    )
    app.logger.info(f'Generated fixtures for {tournament_id}: {result["total_matches"]} matches')
    return jsonify({'success': True, **result})


@app.route('/api/tournaments/<tournament_id>/pools/standings')
def api_pool_standings(tournament_id):
    service = get_service()
    pool_id = request.args.get('pool_id')
    if pool_id:
        return jsonify({'success': True, **_standings_dict(service.compute_standings(tournament_id, pool_id))})
    results = service.all_standings(tournament_id, request.args.get('category'))
    return jsonify({'success': True, 'pools': [_standings_dict(r) for r in results]})


@app.route('/api/tournaments/<tournament_id>/knockouts/status')
def api_knockout_status(tournament_id):
    return jsonify({'success': True, 'categories': get_service().knockout_status(tournament_id)})


@app.route('/api/tournaments/<tournament_id>/knockouts/generate', methods=['POST'])
def api_generate_knockouts(tournament_id):
    """Generate the knockout bracket for one category from its pool results."""
    data = _json_body()
    result = get_service().generate_knockout_fixtures(
        tournament_id, data.get('category'),
        seed_strategy=data.get('seed_strategy', 'pool_rank'),
        seed=data.get('seed'),
        actor=data.get('user_id'),
    )
    return jsonify({
        'success': True,
        'category': result['category'],
        'qualifiers': [q.to_dict() for q in result['qualifiers']],
        'matches': [m.to_dict() for m in result['matches']],
        'bracket_size': result['bracket_size'],
        'byes': result['byes'],
    })


@app.route('/api/tournaments/<tournament_id>/fixtures')
def api_get_fixtures(tournament_id):
    fixtures = get_service().get_fixtures(tournament_id, request.args.get('category'))
    return jsonify({'success': True, **fixtures})


@app.route('/api/tournaments/<tournament_id>/fixtures', methods=['DELETE'])
def api_delete_fixtures(tournament_id):
    deleted = get_service().delete_fixtures(tournament_id, actor=request.args.get('user_id'))
    return jsonify({'success': True, **deleted})


@app.route('/api/matches/<match_id>/score', methods=['POST'])
def api_record_score(match_id):
    """Record set scores for a match and advance the winner."""
    data = _json_body()
    tournament_id = data.get('tournament_id')
    if not tournament_id:
        return jsonify({'success': False, 'error': 'tournament_id is required'}), 400
    if 'set_scores' not in data:
        return jsonify({'success': False, 'error': 'set_scores are required'}), 400

    result = get_service().record_score(
        tournament_id, match_id, data['set_scores'],
        match_format=data.get('match_format', 'single_set'),
        scoring_rule=data.get('scoring_rule', 'golden_point'),
        entered_by=data.get('user_id'),
    )
    return jsonify({
        'success': True,
        'winner': result['winner'].to_dict(),
        'winner_slot': result['winner_slot'],
        'score_summary': result['score_summary'],
        'set_wins': result['set_wins'],
        'advanced_match_id': result['advanced_match_id'],
        'match': result['match'].to_dict(),
    })


@app.route('/api/matches/<match_id>/history')
def api_match_history(match_id):
    tournament_id = request.args.get('tournament_id')
    if not tournament_id:
        return jsonify({'success': False, 'error': 'tournament_id is required'}), 400
    history = get_service().match_history(tournament_id, match_id)
    return jsonify({'success': True, 'history': history})


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1', port=int(os.environ.get('PORT', 5000)))
