"""
Single elimination bracket generation.

Round 1 pairs consecutive entries of the seeded list. An odd entrant out gets
a match of its own that completes immediately as a bye. Later rounds start as
empty placeholders and are filled as winners advance: the winner of round r,
position p plays on in round r+1, position p // 2.
"""
import math
from typing import List, Dict, Tuple, Optional

from competition.errors import ValidationError
from competition.models import (
    Match, Participant, MATCH_TYPE_KNOCKOUT, STATUS_CANCELLED, STATUS_PENDING,
)


def get_round_name(round_number: int, total_rounds: int) -> str:
    """Get the name of a round from how far it is from the final."""
    teams_in_round = 2 ** (total_rounds - round_number + 1)
    if teams_in_round == 2:
        return "Final"
    elif teams_in_round == 4:
        return "Semifinal"
    elif teams_in_round == 8:
        return "Quarterfinal"
    else:
        return f"Round of {teams_in_round}"


def calculate_total_rounds(num_participants: int) -> int:
    if num_participants < 2:
        return 0
    return math.ceil(math.log2(num_participants))


def calculate_bracket_size(num_participants: int) -> int:
    """Calculate the bracket size (next power of 2)."""
    if num_participants <= 0:
        return 0
    return 2 ** calculate_total_rounds(num_participants)


def calculate_byes(num_participants: int) -> int:
    """Calculate number of byes needed."""
    return calculate_bracket_size(num_participants) - num_participants


def bracket_map(matches: List[Match]) -> Dict[Tuple[int, int], Match]:
    """Index one bracket's matches by (round, bracket_position)."""
    return {(m.round, m.bracket_position): m for m in matches}


def feeder_of(bracket: Dict[Tuple[int, int], Match], match: Match, slot: int) -> Optional[Match]:
    """The previous-round match whose winner fills ``slot`` of ``match``."""
    if match.round <= 1:
        return None
    return bracket.get((match.round - 1, 2 * match.bracket_position + slot - 1))


def is_slot_dead(bracket: Dict[Tuple[int, int], Match], match: Match, slot: int) -> bool:
    """True when ``slot`` is empty and nothing will ever fill it."""
    if match.get_slot(slot) is not None:
        return False
    if match.round <= 1:
        return True
    feeder = feeder_of(bracket, match, slot)
    return feeder is None or feeder.status == STATUS_CANCELLED


def link_bracket(matches: List[Match]):
    """Point each match at the next-round match its winner moves into.

    Sets ``next_match_index`` (position in ``matches``). Final round matches
    keep None.
    """
    index_of = {(m.round, m.bracket_position): i for i, m in enumerate(matches)}
    for match in matches:
        match.next_match_index = index_of.get((match.round + 1, match.bracket_position // 2))


def apply_links(matches: List[Match]):
    """Copy ``next_match_index`` links into ``next_match_id`` once ids exist."""
    for match in matches:
        if match.next_match_index is None:
            match.next_match_id = None
            continue
        target = matches[match.next_match_index]
        if target.id is None:
            raise ValueError("Matches must be saved before links can be applied")
        match.next_match_id = target.id


def generate_single_elimination(participants: List[Participant], tournament_id,
                                category: str = None) -> List[Match]:
    """
    Build every match of a single elimination bracket.

    Returns round 1 matches first (positions 0..), then each later round's
    placeholders. Round 1 byes are already completed; links are set through
    ``next_match_index``.
    """
    count = len(participants)
    if count < 2:
        raise ValidationError(
            f"Single elimination needs at least 2 participants, got {count}",
            participant_count=count,
        )
    if len({p.kind for p in participants}) > 1:
        raise ValidationError("A bracket cannot mix teams and individual players", category=category)
    if len(set(participants)) != count:
        raise ValidationError("A participant appears more than once in the bracket", category=category)

    total_rounds = calculate_total_rounds(count)
    matches = []

    for position in range(math.ceil(count / 2)):
        first = participants[2 * position]
        second = participants[2 * position + 1] if 2 * position + 1 < count else None
        match = Match(
            tournament_id=tournament_id,
            category=category,
            match_type=MATCH_TYPE_KNOCKOUT,
            round=1,
            bracket_position=position,
            participant1=first,
            participant2=second,
            status=STATUS_PENDING,
        )
        if second is None:
            match.complete_as_bye()
        matches.append(match)

    for round_number in range(2, total_rounds + 1):
        for position in range(2 ** (total_rounds - round_number)):
            matches.append(Match(
                tournament_id=tournament_id,
                category=category,
                match_type=MATCH_TYPE_KNOCKOUT,
                round=round_number,
                bracket_position=position,
                status=STATUS_PENDING,
            ))

    link_bracket(matches)
    return matches
