"""
Open-match rating engine.

Elo-style update for two 2-player teams. Skill levels live on a 1.0-7.0
scale and are mapped onto an Elo axis (x200) for the expectation step.
"""

from typing import Dict, Iterable, List, Optional

from clubladder.database.models import Player
from clubladder.services.score_validation import team_a_won
from clubladder.utils.constants import (
    RATING_K,
    RATING_ELO_SCALE,
    UPSET_MULTIPLIER,
    MAX_RATING_CHANGE,
    MIN_SKILL_LEVEL,
    MAX_SKILL_LEVEL,
    DEFAULT_SKILL_LEVEL,
    RELIABILITY_STEP,
    MAX_RELIABILITY,
)


# ============================================================================
# Helper Functions (ELO Calculations)
# ============================================================================

def expected_score(elo_a: float, elo_b: float) -> float:
    """
    Calculate expected score for team A against team B using ELO formula.

    Formula: P(A beats B) = 1 / (1 + 10^((elo_B - elo_A) / 400))
    If elo_A > elo_B, result > 0.5 (A is favored)
    """
    return 1 / (1 + 10**((elo_b - elo_a) / 400))


def elo_change(k: float, expected: float, actual: float) -> float:
    """Calculate ELO rating change."""
    return k * (actual - expected)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _skill(player: Dict) -> float:
    skill = player.get("skill_level")
    return DEFAULT_SKILL_LEVEL if skill is None else float(skill)


# ============================================================================
# Rating Updates
# ============================================================================

def compute_rating_updates(
    team_a: List[Dict], team_b: List[Dict], scores: List[Dict]
) -> List[Dict]:
    """
    Compute new skill levels for all four players of a verified open match.

    Args:
        team_a: Two dicts with ``player_id`` and ``skill_level`` (side "A")
        team_b: Two dicts with ``player_id`` and ``skill_level`` (side "B")
        scores: Validated set scores, team_a = side "A"

    Returns:
        One dict per player: ``player_id``, ``new_rating``, ``rating_change``, ``won``
    """
    a_won = team_a_won(scores)

    avg_a = sum(_skill(p) for p in team_a) / len(team_a)
    avg_b = sum(_skill(p) for p in team_b) / len(team_b)

    expected_a = expected_score(avg_a * RATING_ELO_SCALE, avg_b * RATING_ELO_SCALE)
    actual_a = 1.0 if a_won else 0.0

    change_a = elo_change(RATING_K, expected_a, actual_a) / RATING_ELO_SCALE
    change_b = elo_change(RATING_K, 1 - expected_a, 1 - actual_a) / RATING_ELO_SCALE

    # Lower-rated side won
    is_upset = (a_won and avg_a < avg_b) or (not a_won and avg_b < avg_a)
    if is_upset:
        change_a *= UPSET_MULTIPLIER
        change_b *= UPSET_MULTIPLIER

    updates = []
    for team, change, won in ((team_a, change_a, a_won), (team_b, change_b, not a_won)):
        clamped = clamp(change, -MAX_RATING_CHANGE, MAX_RATING_CHANGE)
        for player in team:
            new_rating = clamp(_skill(player) + clamped, MIN_SKILL_LEVEL, MAX_SKILL_LEVEL)
            updates.append(
                {
                    "player_id": player["player_id"],
                    "new_rating": round(new_rating, 1),
                    "rating_change": clamped,
                    "won": won,
                }
            )
    return updates


def apply_rating_updates(players: Iterable[Player], updates: List[Dict]) -> List[Dict]:
    """
    Write rating updates onto Player rows (caller flushes in its transaction).

    Every participant gets ``matches_played += 1`` and a reliability bump;
    winners also get ``matches_won += 1``.

    Returns:
        The updates with the applied ``matches_played`` / ``matches_won`` /
        ``reliability_percentage`` added
    """
    players_by_id = {p.id: p for p in players}
    applied = []
    for update in updates:
        player: Optional[Player] = players_by_id.get(update["player_id"])
        if player is None:
            continue
        player.skill_level = update["new_rating"]
        player.matches_played = (player.matches_played or 0) + 1
        if update["won"]:
            player.matches_won = (player.matches_won or 0) + 1
        player.reliability_percentage = min(
            MAX_RELIABILITY, (player.reliability_percentage or 0) + RELIABILITY_STEP
        )
        applied.append(
            {
                **update,
                "matches_played": player.matches_played,
                "matches_won": player.matches_won,
                "reliability_percentage": player.reliability_percentage,
            }
        )
    return applied
