"""
YAML file storage for registrations, pools and matches.

Each tournament lives in its own directory:

    <data_dir>/tournaments/<tournament_id>/
        tournament.yaml      name and creation time
        registrations.yaml   entries supplied by the registration system
        fixtures.yaml        pools, pool_players and matches
        audit.yaml           append-only action log
        .fixtures.lock       file lock serializing fixture changes

Participants are stored in the player/team columns here and nowhere else.
"""
import logging
import os
import re
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import List, Dict, Optional

import yaml
from filelock import FileLock, Timeout

from competition.errors import ConflictError, NotFoundError, ValidationError
from competition.models import (
    Match, Participant, Pool, PoolMembership, Registration, INDIVIDUAL, TEAM,
    MATCH_TYPE_KNOCKOUT, MATCH_TYPE_POOL,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10
_TOURNAMENT_ID_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')


def new_id() -> str:
    return str(uuid.uuid4())


def _slot_to_row(participant: Optional[Participant], player_key: str, team_key: str) -> Dict:
    if participant is None:
        return {player_key: None, team_key: None}
    if participant.is_team:
        return {player_key: None, team_key: participant.id}
    return {player_key: participant.id, team_key: None}


def _slot_from_row(row: Dict, player_key: str, team_key: str) -> Optional[Participant]:
    if row.get(team_key) is not None:
        return Participant(row[team_key], TEAM)
    if row.get(player_key) is not None:
        return Participant(row[player_key], INDIVIDUAL)
    return None


def match_to_row(match: Match) -> Dict:
    row = {
        'id': match.id,
        'tournament_id': match.tournament_id,
        'category': match.category,
        'pool_id': match.pool_id,
        'match_type': match.match_type,
        'round': match.round,
        'bracket_pos': match.bracket_position,
        'status': match.status,
        'next_match_id': match.next_match_id,
        'set_scores': match.set_scores,
        'score_summary': match.score_summary,
        'match_format': match.match_format,
        'scoring_rule': match.scoring_rule,
        'score_history': match.score_history,
        'completed_at': match.completed_at,
        'entered_by': match.entered_by,
    }
    row.update(_slot_to_row(match.participant1, 'player1_id', 'team1_id'))
    row.update(_slot_to_row(match.participant2, 'player2_id', 'team2_id'))
    row.update(_slot_to_row(match.winner, 'winner_player_id', 'winner_team_id'))
    return row


def match_from_row(row: Dict) -> Match:
    return Match(
        id=row['id'],
        tournament_id=row['tournament_id'],
        category=row.get('category'),
        pool_id=row.get('pool_id'),
        match_type=row.get('match_type', MATCH_TYPE_POOL),
        round=row.get('round', 1),
        bracket_position=row.get('bracket_pos', 0),
        participant1=_slot_from_row(row, 'player1_id', 'team1_id'),
        participant2=_slot_from_row(row, 'player2_id', 'team2_id'),
        winner=_slot_from_row(row, 'winner_player_id', 'winner_team_id'),
        status=row.get('status', 'pending'),
        next_match_id=row.get('next_match_id'),
        set_scores=row.get('set_scores'),
        score_summary=row.get('score_summary'),
        match_format=row.get('match_format'),
        scoring_rule=row.get('scoring_rule'),
        score_history=row.get('score_history'),
        completed_at=row.get('completed_at'),
        entered_by=row.get('entered_by'),
    )


def membership_to_row(membership: PoolMembership) -> Dict:
    row = {'pool_id': membership.pool_id, 'position': membership.position}
    row.update(_slot_to_row(membership.participant, 'player_id', 'team_id'))
    return row


def membership_from_row(row: Dict) -> PoolMembership:
    return PoolMembership(
        pool_id=row['pool_id'],
        participant=_slot_from_row(row, 'player_id', 'team_id'),
        position=row.get('position', 0),
    )


def pool_from_row(row: Dict) -> Pool:
    return Pool(
        id=row['id'],
        tournament_id=row['tournament_id'],
        name=row['name'],
        category=row.get('category'),
        size=row.get('size', 0),
        advance_count=row.get('advance_count', 2),
        status=row.get('status', 'pending'),
    )


class Fixtures:
    """Everything generated for one tournament: pools, pool players and matches."""

    def __init__(self, pools=None, memberships=None, matches=None):
        self.pools: List[Pool] = pools or []
        self.memberships: List[PoolMembership] = memberships or []
        self.matches: List[Match] = matches or []

    def __repr__(self):
        return f"Fixtures(pools={len(self.pools)}, matches={len(self.matches)})"

    @property
    def is_empty(self) -> bool:
        return not self.pools and not self.matches

    def get_match(self, match_id) -> Optional[Match]:
        return next((m for m in self.matches if m.id == match_id), None)

    def get_pool(self, pool_id) -> Optional[Pool]:
        return next((p for p in self.pools if p.id == pool_id), None)

    def pools_for(self, category: Optional[str] = None) -> List[Pool]:
        if category is None:
            return list(self.pools)
        return [p for p in self.pools if (p.category or '').lower() == category.lower()]

    def memberships_for(self, pool_id) -> List[PoolMembership]:
        return [m for m in self.memberships if m.pool_id == pool_id]

    def matches_for_pool(self, pool_id) -> List[Match]:
        return [m for m in self.matches if m.pool_id == pool_id]

    def knockout_matches(self, category: Optional[str] = None) -> List[Match]:
        return [
            m for m in self.matches
            if m.match_type == MATCH_TYPE_KNOCKOUT
            and (category is None or (m.category or '').lower() == category.lower())
        ]

    def categories(self) -> List[str]:
        seen = []
        for item in list(self.pools) + list(self.matches):
            if item.category and item.category not in seen:
                seen.append(item.category)
        return seen


class FixtureStore:
    """Reads and writes tournament data under ``data_dir``."""

    def __init__(self, data_dir: str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.data_dir = data_dir
        self.lock_timeout = lock_timeout

    # -- paths -------------------------------------------------------------

    def tournament_dir(self, tournament_id) -> str:
        tournament_id = str(tournament_id)
        if not _TOURNAMENT_ID_RE.match(tournament_id):
            raise ValidationError(f"Invalid tournament id: {tournament_id!r}")
        return os.path.join(self.data_dir, 'tournaments', tournament_id)

    def _file(self, tournament_id, filename: str) -> str:
        return os.path.join(self.tournament_dir(tournament_id), filename)

    def tournament_exists(self, tournament_id) -> bool:
        return os.path.isdir(self.tournament_dir(tournament_id))

    def require_tournament(self, tournament_id):
        if not self.tournament_exists(tournament_id):
            raise NotFoundError(f"Tournament {tournament_id} not found", tournament_id=tournament_id)

    def list_tournaments(self) -> List[str]:
        root = os.path.join(self.data_dir, 'tournaments')
        if not os.path.isdir(root):
            return []
        return sorted(d for d in os.listdir(root) if os.path.isdir(os.path.join(root, d)))

    # -- yaml helpers --------------------------------------------------------

    def _load_yaml(self, path: str, default):
        if not os.path.exists(path):
            return default
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data if data is not None else default

    def _save_yaml(self, path: str, data):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    # -- locking -------------------------------------------------------------

    @contextmanager
    def locked(self, tournament_id):
        """Hold the tournament's fixture lock; ConflictError if it stays busy."""
        lock_path = self._file(tournament_id, '.fixtures.lock')
        os.makedirs(os.path.dirname(lock_path), exist_ok=True)
        lock = FileLock(lock_path, timeout=self.lock_timeout)
        try:
            lock.acquire()
        except Timeout:
            raise ConflictError(
                "Another fixture operation is running for this tournament. Try again shortly.",
                tournament_id=str(tournament_id),
            ) from None
        try:
            yield
        finally:
            lock.release()

    # -- tournaments ---------------------------------------------------------

    def create_tournament(self, tournament_id, name: str = None) -> Dict:
        path = self._file(tournament_id, 'tournament.yaml')
        data = self._load_yaml(path, None)
        if data is None:
            data = {
                'id': str(tournament_id),
                'name': name or str(tournament_id),
                'created': datetime.now().isoformat(),
            }
            self._save_yaml(path, data)
            logger.info("Created tournament %s", tournament_id)
        return data

    # -- registrations -------------------------------------------------------

    def load_registrations(self, tournament_id) -> List[Registration]:
        self.require_tournament(tournament_id)
        rows = self._load_yaml(self._file(tournament_id, 'registrations.yaml'), {})
        return [Registration.from_dict(r) for r in rows.get('registrations', [])]

    def save_registrations(self, tournament_id, registrations: List[Registration]):
        self._save_yaml(self._file(tournament_id, 'registrations.yaml'),
                        {'registrations': [r.to_dict() for r in registrations]})

    # -- fixtures ------------------------------------------------------------

    def load_fixtures(self, tournament_id) -> Fixtures:
        self.require_tournament(tournament_id)
        data = self._load_yaml(self._file(tournament_id, 'fixtures.yaml'), {})
        return Fixtures(
            pools=[pool_from_row(r) for r in data.get('pools', [])],
            memberships=[membership_from_row(r) for r in data.get('pool_players', [])],
            matches=[match_from_row(r) for r in data.get('matches', [])],
        )

    def save_fixtures(self, tournament_id, fixtures: Fixtures):
        for match in fixtures.matches:
            if match.id is None:
                match.id = new_id()
        for pool in fixtures.pools:
            if pool.id is None:
                pool.id = new_id()
        self._save_yaml(self._file(tournament_id, 'fixtures.yaml'), {
            'pools': [p.to_dict() for p in fixtures.pools],
            'pool_players': [membership_to_row(m) for m in fixtures.memberships],
            'matches': [match_to_row(m) for m in fixtures.matches],
        })

    def delete_fixtures(self, tournament_id) -> Dict:
        """Remove pool players, then matches, then pools. Returns deleted counts."""
        fixtures = self.load_fixtures(tournament_id)
        pool_ids = {p.id for p in fixtures.pools if p.tournament_id == str(tournament_id)}

        deleted_memberships = [m for m in fixtures.memberships if m.pool_id in pool_ids]
        fixtures.memberships = [m for m in fixtures.memberships if m.pool_id not in pool_ids]

        deleted_matches = [m for m in fixtures.matches if m.tournament_id == str(tournament_id)]
        fixtures.matches = [m for m in fixtures.matches if m.tournament_id != str(tournament_id)]

        deleted_pools = [p for p in fixtures.pools if p.id in pool_ids]
        fixtures.pools = [p for p in fixtures.pools if p.id not in pool_ids]

        self.save_fixtures(tournament_id, fixtures)
        return {
            'deleted_memberships': len(deleted_memberships),
            'deleted_matches': len(deleted_matches),
            'deleted_pools': len(deleted_pools),
        }

    # -- audit ---------------------------------------------------------------

    def append_audit(self, tournament_id, action: str, metadata: Dict = None, actor=None):
        path = self._file(tournament_id, 'audit.yaml')
        data = self._load_yaml(path, {})
        entries = data.get('entries', [])
        entries.append({
            'action': action,
            'actor': actor,
            'at': datetime.now().isoformat(),
            'metadata': metadata or {},
        })
        self._save_yaml(path, {'entries': entries})

    def load_audit(self, tournament_id) -> List[Dict]:
        return self._load_yaml(self._file(tournament_id, 'audit.yaml'), {}).get('entries', [])
