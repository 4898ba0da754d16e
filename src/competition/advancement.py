"""
Recording match results and moving knockout winners forward.
"""
import logging
from datetime import datetime
from typing import List, Optional, Dict

from competition.elimination import bracket_map, is_slot_dead
from competition.errors import PreconditionError
from competition.models import (
    Match, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_PENDING,
)
from competition.scoring import (
    determine_winner, normalize_set_scores, score_summary,
    DEFAULT_MATCH_FORMAT, DEFAULT_SCORING_RULE,
)

logger = logging.getLogger(__name__)


def winner_slot_in_next(match: Match) -> int:
    """Even bracket positions feed slot 1 of the next match, odd ones slot 2."""
    return 1 if match.bracket_position % 2 == 0 else 2


def find_next_match(match: Match, bracket_matches: List[Match]) -> Optional[Match]:
    if match.next_match_id is not None:
        for candidate in bracket_matches:
            if candidate.id == match.next_match_id:
                return candidate
        return None
    if match.next_match_index is not None:
        return bracket_matches[match.next_match_index]
    return None


def resolve_lone_participant(match: Match, bracket_matches: List[Match]) -> Optional[Match]:
    """Auto-complete ``match`` as a bye when its only opponent can never arrive.

    Cascades the winner onward. Returns the match if it was completed.
    """
    if match.status != STATUS_PENDING or len(match.participants) != 1:
        return None
    bracket = bracket_map(bracket_matches)
    empty_slot = 2 if match.participant2 is None else 1
    if not is_slot_dead(bracket, match, empty_slot):
        return None

    match.complete_as_bye(datetime.now().isoformat())
    logger.info("Match %s auto-completed as a bye for %s", match.id, match.winner.id)
    advance_winner(match, bracket_matches)
    return match


def advance_winner(match: Match, bracket_matches: List[Match]) -> Optional[Match]:
    """Place the winner of a completed match into its next match's slot.

    Returns the next match, or None for the final and for pool matches.
    """
    if match.status != STATUS_COMPLETED or match.winner is None:
        raise PreconditionError("Only completed matches with a winner can advance", match_id=match.id)

    next_match = find_next_match(match, bracket_matches)
    if next_match is None:
        return None

    slot = winner_slot_in_next(match)
    current = next_match.get_slot(slot)
    if current == match.winner:
        return next_match
    if current is not None and next_match.status != STATUS_PENDING:
        raise PreconditionError(
            "Next match has already started; its participants cannot change",
            match_id=match.id, next_match_id=next_match.id, next_status=next_match.status,
        )

    next_match.set_slot(slot, match.winner)
    logger.info("Advanced %s from match %s into slot %d of match %s",
                match.winner.id, match.id, slot, next_match.id)
    resolve_lone_participant(next_match, bracket_matches)
    return next_match


def propagate_byes(bracket_matches: List[Match]) -> List[Match]:
    """Settle a freshly created bracket.

    Placeholders that no feeder can ever reach are cancelled, then every
    round 1 bye advances its winner (cascading further byes). Returns the
    matches that were auto-completed or cancelled.
    """
    ordered = sorted(bracket_matches, key=lambda m: (m.round, m.bracket_position))
    bracket = bracket_map(bracket_matches)
    touched = []

    for match in ordered:
        if match.round > 1 and match.status == STATUS_PENDING and not match.participants:
            if is_slot_dead(bracket, match, 1) and is_slot_dead(bracket, match, 2):
                match.transition_to(STATUS_CANCELLED)
                touched.append(match)

    for match in ordered:
        if match.round == 1 and match.is_bye:
            touched.append(match)
            next_match = advance_winner(match, bracket_matches)
            while next_match is not None and next_match.is_bye:
                touched.append(next_match)
                next_match = find_next_match(next_match, bracket_matches)
    return touched


def record_result(match: Match, set_scores, match_format: str = DEFAULT_MATCH_FORMAT,
                  scoring_rule: str = DEFAULT_SCORING_RULE,
                  bracket_matches: Optional[List[Match]] = None,
                  entered_by=None) -> Dict:
    """
    Score a match, complete it and advance its winner.

    Re-scoring a completed match keeps the latest score. Advancement happens
    once: an unchanged winner is not advanced again, and a changed winner
    replaces the old one only while the next match is still pending. Byes
    the old winner passed through are reopened and resolved again.

    Returns {'winner', 'winner_slot', 'score_summary', 'set_wins',
    'advanced_match_id'}.
    """
    if match.status == STATUS_CANCELLED:
        raise PreconditionError("Cancelled matches cannot be scored", match_id=match.id)
    if match.participant1 is None or match.participant2 is None:
        raise PreconditionError(
            "Both participants must be known before the match can be scored",
            match_id=match.id,
        )

    sets = normalize_set_scores(set_scores)
    winner_slot, set_wins = determine_winner(sets, match_format, scoring_rule)
    winner = match.get_slot(winner_slot)
    summary = score_summary(sets)
    bracket_matches = bracket_matches if bracket_matches is not None else [match]

    was_completed = match.status == STATUS_COMPLETED
    previous_winner = match.winner if was_completed else None
    winner_changed = was_completed and previous_winner != winner

    if winner_changed:
        next_match = find_next_match(match, bracket_matches)
        if next_match is not None and not _is_replaceable(next_match, bracket_matches):
            raise PreconditionError(
                "Winner changed but the next match has already been played",
                match_id=match.id, next_match_id=next_match.id,
            )

    now = datetime.now().isoformat()
    match.score_history.append({
        'entered_by': entered_by,
        'entered_at': now,
        'old_set_scores': match.set_scores,
        'old_score_summary': match.score_summary,
        'new_set_scores': sets,
        'new_score_summary': summary,
    })
    match.set_scores = sets
    match.score_summary = summary
    match.match_format = match_format
    match.scoring_rule = scoring_rule
    match.entered_by = entered_by
    match.winner = winner
    if not was_completed:
        match.transition_to(STATUS_COMPLETED)
        match.completed_at = now

    advanced = None
    if not was_completed or winner_changed:
        advanced = _replace_in_next(match, previous_winner, bracket_matches)

    return {
        'winner': winner,
        'winner_slot': winner_slot,
        'score_summary': summary,
        'set_wins': list(set_wins),
        'advanced_match_id': advanced.id if advanced is not None else None,
    }


def _is_replaceable(match: Match, bracket_matches: List[Match]) -> bool:
    """True while ``match`` is pending, or is a bye whose own onward match is replaceable."""
    if match.status == STATUS_PENDING:
        return True
    if not match.is_bye:
        return False
    next_match = find_next_match(match, bracket_matches)
    return next_match is None or _is_replaceable(next_match, bracket_matches)


def _withdraw(match: Match, slot: int, participant, bracket_matches: List[Match]):
    """Take ``participant`` out of ``slot``, reopening any byes it cascaded through."""
    if match.is_bye:
        next_match = find_next_match(match, bracket_matches)
        if next_match is not None:
            _withdraw(next_match, winner_slot_in_next(match), match.winner, bracket_matches)
        match.reopen_bye()
        logger.info("Reopened bye %s after its participant was replaced", match.id)
    if match.get_slot(slot) == participant:
        match.set_slot(slot, None)


def _replace_in_next(match: Match, previous_winner, bracket_matches: List[Match]) -> Optional[Match]:
    next_match = find_next_match(match, bracket_matches)
    if next_match is None:
        return None
    if previous_winner is not None:
        _withdraw(next_match, winner_slot_in_next(match), previous_winner, bracket_matches)
    return advance_winner(match, bracket_matches)
