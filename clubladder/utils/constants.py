"""
Constants used across the ladder and open-match result engines.
"""

# Ladder challenge rules
MAX_CHALLENGE_RANK_GAP = 3  # A team may challenge up to 3 places above it
CHALLENGE_EXPIRY_DAYS = 10  # Pending challenges lapse after this many days
CHALLENGER_WIN_POINTS = 5
DEFENDER_WIN_POINTS = 3
FORFEIT_SET_GAMES = 6  # Forfeits are recorded as two 6-0 sets

# KG scoring grammar (ladder challenges)
KG_SET_WINNER_GAMES = 6
KG_SET_LOSER_MAX_GAMES = 5
SUPER_TIEBREAK_MIN_POINTS = 10
SUPER_TIEBREAK_MIN_MARGIN = 2

# Open-match rating engine
RATING_K = 60
RATING_ELO_SCALE = 200  # Skill level x200 -> Elo axis
UPSET_MULTIPLIER = 1.3
MAX_RATING_CHANGE = 0.3  # Per-player clamp
MIN_SKILL_LEVEL = 1.0
MAX_SKILL_LEVEL = 7.0
DEFAULT_SKILL_LEVEL = 2.5
RELIABILITY_STEP = 5
MAX_RELIABILITY = 100

# Open-match verification
AUTO_VERIFY_HOURS = 24
DEFAULT_MAX_PLAYERS = 4

# Clubs running a ladder. Each (club_id, tier) pair is an independent ranking pool.
LADDER_CLUBS = {
    "kg": {
        "name": "Karachi Gymkhana",
        "short_name": "Gymkhana",
        "tiers": {
            "mens-elite": "Men's Elite",
            "womens-open": "Women's Open",
            "father-son": "Father & Son",
            "junior": "Junior",
        },
    },
}
