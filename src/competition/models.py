"""
Domain records for fixtures: participants, pools, matches and standings.

Match slots always hold a ``Participant``; whether that participant is stored
as a player or a team column is decided by the persistence adapter.
"""
from typing import List, Optional, Dict

from competition.errors import PreconditionError

INDIVIDUAL = 'individual'
TEAM = 'team'

MATCH_TYPE_POOL = 'pool'
MATCH_TYPE_KNOCKOUT = 'knockout'

STATUS_PENDING = 'pending'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'

# Legal match status transitions. Byes go straight from pending to completed.
ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_IN_PROGRESS: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}

POOL_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)

DEFAULT_ADVANCE_COUNT = 2


class Participant:
    """A player or a team, treated as one atomic entrant by the scheduler."""

    def __init__(self, id, kind=INDIVIDUAL, player_ids=None):
        if kind not in (INDIVIDUAL, TEAM):
            raise ValueError(f"Unknown participant kind: {kind}")
        self.id = str(id)
        self.kind = kind
        self.player_ids = list(player_ids) if player_ids else []

    @classmethod
    def individual(cls, id):
        return cls(id, INDIVIDUAL)

    @classmethod
    def team(cls, id, player_ids=None):
        return cls(id, TEAM, player_ids)

    @property
    def is_team(self) -> bool:
        return self.kind == TEAM

    def __eq__(self, other):
        if not isinstance(other, Participant):
            return NotImplemented
        return self.kind == other.kind and self.id == other.id

    def __hash__(self):
        return hash((self.kind, self.id))

    def __repr__(self):
        return f"Participant(id={self.id}, kind={self.kind})"

    def to_dict(self) -> Dict:
        data = {'id': self.id, 'type': self.kind}
        if self.player_ids:
            data['player_ids'] = list(self.player_ids)
        return data


class Registration:
    """A tournament entry as supplied by the registration system."""

    def __init__(self, id, category=None, status='confirmed', player_id=None,
                 team_id=None, team_player_ids=None):
        self.id = str(id)
        self.category = category
        self.status = status
        self.player_id = player_id
        self.team_id = team_id
        self.team_player_ids = list(team_player_ids) if team_player_ids else []

    @property
    def is_team(self) -> bool:
        return self.team_id is not None

    def __repr__(self):
        return (f"Registration(id={self.id}, category={self.category}, "
                f"player_id={self.player_id}, team_id={self.team_id})")

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'category': self.category,
            'status': self.status,
            'player_id': self.player_id,
            'team_id': self.team_id,
            'team_player_ids': list(self.team_player_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Registration':
        category = data.get('category')
        if category is None:
            category = (data.get('metadata') or {}).get('category')
        return cls(
            id=data['id'],
            category=category,
            status=data.get('status', 'confirmed'),
            player_id=data.get('player_id'),
            team_id=data.get('team_id'),
            team_player_ids=data.get('team_player_ids'),
        )


class Pool:
    def __init__(self, id, tournament_id, name, category, size=0,
                 advance_count=DEFAULT_ADVANCE_COUNT, status=STATUS_PENDING):
        if status not in POOL_STATUSES:
            raise ValueError(f"Unknown pool status: {status}")
        self.id = id
        self.tournament_id = tournament_id
        self.name = name
        self.category = category
        self.size = size
        self.advance_count = advance_count
        self.status = status

    def __repr__(self):
        return f"Pool(name={self.name}, category={self.category}, size={self.size})"

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'name': self.name,
            'category': self.category,
            'size': self.size,
            'advance_count': self.advance_count,
            'status': self.status,
        }


class PoolMembership:
    """A participant's place in a pool. ``position`` is the seed order, not a result."""

    def __init__(self, pool_id, participant: Participant, position: int):
        self.pool_id = pool_id
        self.participant = participant
        self.position = position

    def __repr__(self):
        return f"PoolMembership(pool_id={self.pool_id}, participant={self.participant}, position={self.position})"

    def to_dict(self) -> Dict:
        return {
            'pool_id': self.pool_id,
            'participant': self.participant.to_dict(),
            'position': self.position,
        }


class Match:
    def __init__(self, tournament_id, round, bracket_position, match_type=MATCH_TYPE_POOL,
                 participant1: Optional[Participant] = None,
                 participant2: Optional[Participant] = None,
                 pool_id=None, category=None, id=None, status=STATUS_PENDING,
                 winner: Optional[Participant] = None, next_match_id=None,
                 set_scores=None, score_summary=None, match_format=None,
                 scoring_rule=None, score_history=None, completed_at=None,
                 entered_by=None):
        self.id = id
        self.tournament_id = tournament_id
        self.category = category
        self.pool_id = pool_id
        self.match_type = match_type
        self.round = round
        self.bracket_position = bracket_position
        self.participant1 = participant1
        self.participant2 = participant2
        self.status = status
        self.winner = winner
        self.next_match_id = next_match_id
        # Index of the next match within a freshly generated bracket, used
        # until ids are assigned by the store.
        self.next_match_index = None
        self.set_scores = set_scores
        self.score_summary = score_summary
        self.match_format = match_format
        self.scoring_rule = scoring_rule
        self.score_history = list(score_history) if score_history else []
        self.completed_at = completed_at
        self.entered_by = entered_by

    def __repr__(self):
        return (f"Match(id={self.id}, type={self.match_type}, round={self.round}, "
                f"pos={self.bracket_position}, p1={self.participant1}, "
                f"p2={self.participant2}, status={self.status})")

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def is_bye(self) -> bool:
        """Completed with a single participant and no score."""
        return (self.is_completed and not self.set_scores
                and (self.participant1 is None) != (self.participant2 is None))

    @property
    def participants(self) -> List[Participant]:
        return [p for p in (self.participant1, self.participant2) if p is not None]

    @property
    def loser(self) -> Optional[Participant]:
        if self.winner is None or self.is_bye:
            return None
        return self.participant2 if self.winner == self.participant1 else self.participant1

    def slot_of(self, participant: Participant) -> Optional[int]:
        if participant is None:
            return None
        if self.participant1 == participant:
            return 1
        if self.participant2 == participant:
            return 2
        return None

    def get_slot(self, slot: int) -> Optional[Participant]:
        if slot == 1:
            return self.participant1
        if slot == 2:
            return self.participant2
        raise ValueError(f"Slot must be 1 or 2, got {slot}")

    def set_slot(self, slot: int, participant: Optional[Participant]):
        if slot == 1:
            self.participant1 = participant
        elif slot == 2:
            self.participant2 = participant
        else:
            raise ValueError(f"Slot must be 1 or 2, got {slot}")

    def transition_to(self, status: str):
        """Move to ``status``, rejecting transitions the state machine forbids."""
        if status not in ALLOWED_TRANSITIONS:
            raise PreconditionError(f"Unknown match status: {status}", match_id=self.id)
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise PreconditionError(
                f"Illegal status change {self.status} -> {status}",
                match_id=self.id, current_status=self.status, requested_status=status,
            )
        self.status = status

    def complete_as_bye(self, completed_at=None):
        lone = self.participants
        if len(lone) != 1:
            raise PreconditionError(
                "A bye needs exactly one participant",
                match_id=self.id, participants=len(lone),
            )
        self.transition_to(STATUS_COMPLETED)
        self.winner = lone[0]
        self.completed_at = completed_at

    def reopen_bye(self):
        """Undo an auto-completed bye so a replaced participant can be re-seated.

        The only way back from completed; scored matches never reopen.
        """
        if not self.is_bye:
            raise PreconditionError(
                "Only auto-completed byes can be reopened",
                match_id=self.id, current_status=self.status,
            )
        self.status = STATUS_PENDING
        self.winner = None
        self.completed_at = None

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'category': self.category,
            'pool_id': self.pool_id,
            'match_type': self.match_type,
            'round': self.round,
            'bracket_position': self.bracket_position,
            'participant1': self.participant1.to_dict() if self.participant1 else None,
            'participant2': self.participant2.to_dict() if self.participant2 else None,
            'status': self.status,
            'winner': self.winner.to_dict() if self.winner else None,
            'next_match_id': self.next_match_id,
            'set_scores': self.set_scores,
            'score_summary': self.score_summary,
            'match_format': self.match_format,
            'scoring_rule': self.scoring_rule,
            'completed_at': self.completed_at,
            'is_bye': self.is_bye,
        }


class Standing:
    """A participant's record within one pool. Computed, never stored."""

    def __init__(self, participant: Participant, position: int = 0):
        self.participant = participant
        self.position = position
        self.wins = 0
        self.losses = 0
        self.matches_played = 0
        self.points_for = 0
        self.points_against = 0
        self.rank = 0
        self.advances = False

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    @property
    def win_percentage(self) -> float:
        if self.matches_played == 0:
            return 0.0
        return self.wins / self.matches_played * 100

    def __repr__(self):
        return (f"Standing(participant={self.participant}, rank={self.rank}, "
                f"wins={self.wins}, losses={self.losses})")

    def to_dict(self) -> Dict:
        return {
            'participant': self.participant.to_dict(),
            'position': self.position,
            'wins': self.wins,
            'losses': self.losses,
            'matches_played': self.matches_played,
            'points_for': self.points_for,
            'points_against': self.points_against,
            'point_differential': self.point_differential,
            'win_percentage': self.win_percentage,
            'rank': self.rank,
            'advances': self.advances,
        }


class Qualifier:
    """A pool finisher heading into the knockout bracket."""

    def __init__(self, participant: Participant, pool_rank: int, pool_name: str,
                 pool_id=None, seed: int = 0, point_differential: int = 0):
        self.participant = participant
        self.pool_rank = pool_rank
        self.pool_name = pool_name
        self.pool_id = pool_id
        self.seed = seed
        self.point_differential = point_differential

    def __repr__(self):
        return f"Qualifier(#{self.pool_rank} {self.pool_name}: {self.participant.id})"

    def to_dict(self) -> Dict:
        return {
            'participant': self.participant.to_dict(),
            'pool_rank': self.pool_rank,
            'pool_name': self.pool_name,
            'pool_id': self.pool_id,
            'seed': self.seed,
            'point_differential': self.point_differential,
        }
