"""
Set-score validation and winner determination.

Set scores are lists of ``[slot1_points, slot2_points]``. The dict form used by
score entry forms (``{'score1': 11, 'score2': 7}``) is accepted too.
"""
from typing import List, Tuple

from competition.errors import ValidationError

SINGLE_SET = 'single_set'
BEST_OF_3 = 'best_of_3'
BEST_OF_5 = 'best_of_5'

# Sets needed to win the match
MATCH_FORMATS = {
    SINGLE_SET: 1,
    BEST_OF_3: 2,
    BEST_OF_5: 3,
}

GOLDEN_POINT = 'golden_point'
DEUCE = 'deuce'
SCORING_RULES = (GOLDEN_POINT, DEUCE)

DEFAULT_MATCH_FORMAT = SINGLE_SET
DEFAULT_SCORING_RULE = GOLDEN_POINT

SET_POINTS = 11
MAX_SET_SCORE = 99


def _as_score(value, set_number: int) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Set {set_number}: scores must be integers", set=set_number)
    if value < 0 or value > MAX_SET_SCORE:
        raise ValidationError(
            f"Set {set_number}: scores must be between 0 and {MAX_SET_SCORE}", set=set_number)
    return value


def normalize_set_scores(set_scores) -> List[List[int]]:
    """Return set scores as ``[[a, b], ...]`` with trailing unplayed 0-0 sets removed."""
    if not isinstance(set_scores, (list, tuple)) or not set_scores:
        raise ValidationError("Set scores must be a non-empty list")

    normalized = []
    for i, set_score in enumerate(set_scores, start=1):
        if isinstance(set_score, dict):
            if 'score1' not in set_score or 'score2' not in set_score:
                raise ValidationError(f"Set {i}: expected score1 and score2", set=i)
            pair = (set_score['score1'], set_score['score2'])
        elif isinstance(set_score, (list, tuple)) and len(set_score) == 2:
            pair = tuple(set_score)
        else:
            raise ValidationError(f"Set {i}: each set must be [score1, score2]", set=i)
        normalized.append([_as_score(pair[0], i), _as_score(pair[1], i)])

    while normalized and normalized[-1] == [0, 0]:
        normalized.pop()
    if not normalized:
        raise ValidationError("No set has been played")
    return normalized


def validate_set(set_score: List[int], scoring_rule: str, set_number: int = 1):
    """Check that a single set is a legal finished set under ``scoring_rule``."""
    high, low = max(set_score), min(set_score)

    if high == low:
        raise ValidationError(f"Set {set_number}: scores cannot be tied", set=set_number)
    if high < SET_POINTS:
        raise ValidationError(
            f"Set {set_number}: winner must reach {SET_POINTS} points", set=set_number)

    if scoring_rule == GOLDEN_POINT:
        # At 10-10 the next point wins, so every set ends on exactly 11.
        if high != SET_POINTS:
            raise ValidationError(
                f"Set {set_number}: golden point sets end at {SET_POINTS}", set=set_number)
    elif scoring_rule == DEUCE:
        margin = high - low
        if margin < 2:
            raise ValidationError(
                f"Set {set_number}: deuce rule - must win by at least 2 points", set=set_number)
        if high > SET_POINTS and margin != 2:
            raise ValidationError(
                f"Set {set_number}: extended deuce sets end on a 2 point margin", set=set_number)
    else:
        raise ValidationError(f"Unknown scoring rule: {scoring_rule}", scoring_rule=scoring_rule)


def determine_winner(set_scores, match_format: str = DEFAULT_MATCH_FORMAT,
                     scoring_rule: str = DEFAULT_SCORING_RULE) -> Tuple[int, Tuple[int, int]]:
    """Determine the winning slot from set scores. Returns (winner_slot, set_wins).

    The winner is whoever first takes the majority of sets for the format.
    Raises ValidationError for malformed scores, unknown formats or rules,
    sets played after the match was decided, and undecided matches.
    """
    if not isinstance(match_format, str) or match_format not in MATCH_FORMATS:
        raise ValidationError(f"Unknown match format: {match_format}", match_format=str(match_format))
    if not isinstance(scoring_rule, str) or scoring_rule not in SCORING_RULES:
        raise ValidationError(f"Unknown scoring rule: {scoring_rule}", scoring_rule=str(scoring_rule))

    sets = normalize_set_scores(set_scores)
    sets_to_win = MATCH_FORMATS[match_format]

    wins = [0, 0]
    winner_slot = None
    for i, set_score in enumerate(sets, start=1):
        if winner_slot is not None:
            raise ValidationError(
                f"Set {i} was played after the match was already decided", set=i)
        validate_set(set_score, scoring_rule, i)
        if set_score[0] > set_score[1]:
            wins[0] += 1
        else:
            wins[1] += 1
        if wins[0] >= sets_to_win:
            winner_slot = 1
        elif wins[1] >= sets_to_win:
            winner_slot = 2

    if winner_slot is None:
        raise ValidationError(
            f"Cannot determine winner: {match_format} needs {sets_to_win} set wins",
            set_wins=list(wins),
        )
    return winner_slot, tuple(wins)


def score_summary(set_scores) -> str:
    """Format set scores as ``"11-7, 9-11, 11-5"``."""
    sets = normalize_set_scores(set_scores)
    return ', '.join(f"{a}-{b}" for a, b in sets)


def points_by_slot(set_scores) -> Tuple[int, int]:
    """Total points scored by slot 1 and slot 2 across all sets."""
    if not set_scores:
        return 0, 0
    slot1 = slot2 = 0
    for set_score in set_scores:
        if isinstance(set_score, dict):
            a, b = set_score.get('score1'), set_score.get('score2')
        else:
            a, b = set_score[0], set_score[1]
        slot1 += a or 0
        slot2 += b or 0
    return slot1, slot2
