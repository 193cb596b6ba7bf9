"""
Score grammars for ladder challenges and open matches.

Scores are ordered lists of sets, each ``{"team_a": int, "team_b": int}``.
For ladder challenges team_a is always the challenger; for open matches it is
side "A". Validators return ``None`` when the scores are acceptable, otherwise
the first rule that was broken as a human-readable message.
"""

from typing import Dict, List, Optional, Tuple

from clubladder.utils.constants import (
    KG_SET_WINNER_GAMES,
    KG_SET_LOSER_MAX_GAMES,
    SUPER_TIEBREAK_MIN_POINTS,
    SUPER_TIEBREAK_MIN_MARGIN,
)

INVALID_VALUES_MESSAGE = "Invalid set scores: must be non-negative integers"


def _is_non_negative_int(value) -> bool:
    # bool is a subclass of int; True/False are not game counts
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _pairs(scores: List[Dict]) -> Optional[List[Tuple[int, int]]]:
    """Extract (team_a, team_b) pairs, or None if any set is malformed."""
    pairs = []
    for set_score in scores:
        if not isinstance(set_score, dict):
            return None
        team_a = set_score.get("team_a")
        team_b = set_score.get("team_b")
        if not (_is_non_negative_int(team_a) and _is_non_negative_int(team_b)):
            return None
        pairs.append((team_a, team_b))
    return pairs


def count_set_wins(scores: List[Dict]) -> Tuple[int, int]:
    """Return (sets won by team_a, sets won by team_b); tied sets count for neither."""
    a_sets = sum(1 for s in scores if s["team_a"] > s["team_b"])
    b_sets = sum(1 for s in scores if s["team_b"] > s["team_a"])
    return a_sets, b_sets


def team_a_won(scores: List[Dict]) -> bool:
    """True if team_a won the majority of sets. Assumes validated scores."""
    a_sets, b_sets = count_set_wins(scores)
    return a_sets > b_sets


def validate_ladder_scores(scores) -> Optional[str]:
    """
    Validate ladder challenge scores against the KG rules.

    Sets 1 and 2 are first to 6 games (tiebreak at 5-5 is recorded as 6-5).
    A third set is a super tiebreak to 10, win by 2, and is played only when
    the first two sets are split.

    Args:
        scores: Ordered list of set dicts

    Returns:
        None if valid, otherwise the reason the scores were rejected
    """
    if not isinstance(scores, list) or len(scores) not in (2, 3):
        return "Must have 2 or 3 sets"

    pairs = _pairs(scores)
    if pairs is None:
        return INVALID_VALUES_MESSAGE

    for index, (team_a, team_b) in enumerate(pairs[:2], start=1):
        winner = max(team_a, team_b)
        loser = min(team_a, team_b)
        if winner != KG_SET_WINNER_GAMES:
            return f"Set {index}: winner must have exactly {KG_SET_WINNER_GAMES} games"
        if loser > KG_SET_LOSER_MAX_GAMES:
            return f"Set {index}: loser must have 0-5 games (tiebreak at 5-5 → 6-5)"
        if team_a == team_b:
            return f"Set {index}: cannot be a tie"

    first_two = [{"team_a": a, "team_b": b} for a, b in pairs[:2]]
    a_sets, b_sets = count_set_wins(first_two)
    split = a_sets == 1 and b_sets == 1

    if len(pairs) == 2 and split:
        return "Sets are split 1-1, a super tiebreak 3rd set is required"

    if len(pairs) == 3:
        if not split:
            return "Set 3 is only played if sets are split 1-1"
        team_a, team_b = pairs[2]
        winner = max(team_a, team_b)
        loser = min(team_a, team_b)
        if winner < SUPER_TIEBREAK_MIN_POINTS:
            return "Super tiebreak: winner must reach at least 10 points"
        if winner - loser < SUPER_TIEBREAK_MIN_MARGIN:
            return "Super tiebreak: must win by at least 2 points"
        if team_a == team_b:
            return "Super tiebreak: cannot be a tie"

    a_sets, b_sets = count_set_wins(scores)
    if a_sets == b_sets:
        return "Must have an overall match winner"

    return None


def validate_open_match_scores(scores) -> Optional[str]:
    """
    Validate open match scores: 2-3 sets, no cap on games, no tied sets,
    and a set-majority winner.
    """
    if not isinstance(scores, list) or len(scores) not in (2, 3):
        return "Must have 2 or 3 sets"

    pairs = _pairs(scores)
    if pairs is None:
        return INVALID_VALUES_MESSAGE

    for index, (team_a, team_b) in enumerate(pairs, start=1):
        if team_a == team_b:
            return f"Set {index}: cannot be a tie"

    a_sets, b_sets = count_set_wins(scores)
    if a_sets == b_sets:
        return "Must have a match winner"

    return None
