"""
Grouping registrations into independent competition categories.
"""
from typing import List, Dict, Optional

from competition.models import Participant, Registration

DEFAULT_CATEGORY = 'singles'
TEAM_CATEGORIES = ('doubles', 'mixed')
EXCLUDED_STATUSES = ('withdrawn', 'cancelled', 'rejected')
MIN_PARTICIPANTS = 2


def normalize_category(name: Optional[str]) -> str:
    if not name or not str(name).strip():
        return DEFAULT_CATEGORY
    return str(name).strip().lower()


def category_display_name(category: str) -> str:
    if category == 'mixed':
        return 'Mixed Doubles'
    return category[:1].upper() + category[1:]


def is_team_category(category: str) -> bool:
    return category in TEAM_CATEGORIES


class CategoryGroup:
    """Participants of one category, ready for fixture generation."""

    def __init__(self, category: str):
        self.category = category
        self.display_name = category_display_name(category)
        self.is_team_based = is_team_category(category)
        self.participants: List[Participant] = []
        # Players standing in for a team until a partner is assigned
        self.placeholders: List[str] = []
        self.unresolved: List[str] = []
        # Registrations whose participant already entered another category
        self.conflicts: List[str] = []

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def eligible(self) -> bool:
        return self.participant_count >= MIN_PARTICIPANTS

    @property
    def reason(self) -> Optional[str]:
        if self.eligible:
            return None
        count = self.participant_count
        return f"Only {count} participant{'' if count == 1 else 's'} (minimum {MIN_PARTICIPANTS} required)"

    def __repr__(self):
        return f"CategoryGroup(category={self.category}, participants={self.participant_count})"

    def to_dict(self) -> Dict:
        return {
            'category': self.category,
            'display_name': self.display_name,
            'is_team_based': self.is_team_based,
            'participant_count': self.participant_count,
            'participants': [p.to_dict() for p in self.participants],
            'placeholders': list(self.placeholders),
            'unresolved_registrations': list(self.unresolved),
            'conflicting_registrations': list(self.conflicts),
            'eligible': self.eligible,
            'reason': self.reason,
        }


def resolve_participant(registration: Registration, team_based: bool) -> Optional[Participant]:
    """Turn a registration into the participant it enters.

    Team categories use the team, or the lone player as a placeholder team
    while unpaired. Other categories always use the player.
    """
    if team_based:
        if registration.team_id is not None:
            return Participant.team(registration.team_id, registration.team_player_ids)
        if registration.player_id is not None:
            return Participant.team(registration.player_id, [registration.player_id])
        return None
    if registration.player_id is not None:
        return Participant.individual(registration.player_id)
    return None


def partition_registrations(registrations: List[Registration]) -> List[CategoryGroup]:
    """
    Group registrations by category, in first-seen order.

    Withdrawn, cancelled and rejected registrations are ignored, as are
    registrations with neither a player nor a team. A participant registered
    twice in the same category is counted once; one already entered in
    another category stays in the first and is reported as a conflict.
    """
    groups: Dict[str, CategoryGroup] = {}
    entered_in: Dict[Participant, str] = {}

    for registration in registrations:
        if (registration.status or '').lower() in EXCLUDED_STATUSES:
            continue
        category = normalize_category(registration.category)
        group = groups.get(category)
        if group is None:
            group = groups[category] = CategoryGroup(category)

        participant = resolve_participant(registration, group.is_team_based)
        if participant is None:
            group.unresolved.append(registration.id)
            continue
        if participant in entered_in:
            if entered_in[participant] != category:
                group.conflicts.append(registration.id)
            continue
        entered_in[participant] = category
        if group.is_team_based and registration.team_id is None:
            group.placeholders.append(participant.id)
        group.participants.append(participant)

    return list(groups.values())


def eligible_categories(registrations: List[Registration]) -> List[CategoryGroup]:
    return [g for g in partition_registrations(registrations) if g.eligible]
