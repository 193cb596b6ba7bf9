"""
Tests for the ladder challenge workflow: registration, creation, defender
response, rescind/forfeit, score submission and verification.
"""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select, func

from clubladder.database.models import (
    LadderTeam,
    LadderChallenge,
    LadderHistory,
    Notification,
    NotificationType,
)
from clubladder.services import ladder_service, user_service
from clubladder.services.ladder_service import ChallengeAction, VerifyAction
from clubladder.services.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from clubladder.utils.datetime_utils import utcnow

CLUB = "kg"
TIER = "mens-elite"

CHALLENGER_WINS = [{"team_a": 6, "team_b": 3}, {"team_a": 6, "team_b": 4}]
DEFENDER_WINS = [{"team_a": 4, "team_b": 6}, {"team_a": 6, "team_b": 3}, {"team_a": 7, "team_b": 10}]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _unique_phone():
    return f"+1555{uuid.uuid4().int % 10**7:07d}"


async def _create_player(session, full_name):
    created = await user_service.create_user_with_player(
        session, phone_number=_unique_phone(), password_hash="hashed", full_name=full_name
    )
    return created["player_id"]


async def _register_teams(session, count, tier=TIER):
    """Register ``count`` teams; rank i+1 is teams[i]. Each dict gains player ids."""
    teams = []
    for i in range(count):
        captain = await _create_player(session, f"Captain{i} Player")
        partner = await _create_player(session, f"Partner{i} Player")
        team = await ladder_service.register_team(session, captain, partner, CLUB, tier)
        teams.append({**team, "captain": captain, "partner": partner})
    return teams


async def _team(session, team_id):
    return await session.get(LadderTeam, team_id)


async def _ranks(session, tier=TIER):
    standings = await ladder_service.get_standings(session, CLUB, tier)
    return {t["id"]: t["rank"] for t in standings}


async def _accepted_challenge(session, challenger, defender):
    challenge = await ladder_service.create_challenge(session, challenger["captain"], defender["id"])
    await ladder_service.accept_challenge(session, challenge["id"], defender["captain"])
    return challenge


# ─── Registration and standings ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_register_teams_fill_bottom_of_pool(db_session):
    teams = await _register_teams(db_session, 3)

    assert [t["rank"] for t in teams] == [1, 2, 3]
    assert teams[0]["team_name"] == "Captain0 & Partner0"
    assert teams[0]["status"] == "active"
    assert teams[0]["points"] == 0

    standings = await ladder_service.get_standings(db_session, CLUB, TIER)
    assert [t["id"] for t in standings] == [t["id"] for t in teams]


@pytest.mark.asyncio
async def test_register_team_rejects_player_already_in_pool(db_session):
    teams = await _register_teams(db_session, 1)
    newcomer = await _create_player(db_session, "New Comer")

    with pytest.raises(ConflictError):
        await ladder_service.register_team(db_session, newcomer, teams[0]["captain"], CLUB, TIER)


@pytest.mark.asyncio
async def test_register_team_same_player_allowed_in_other_tier(db_session):
    teams = await _register_teams(db_session, 1)

    other = await ladder_service.register_team(
        db_session, teams[0]["captain"], teams[0]["partner"], CLUB, "junior", team_name="Juniors"
    )

    assert other["rank"] == 1
    assert other["team_name"] == "Juniors"


@pytest.mark.asyncio
async def test_register_team_validation(db_session):
    player = await _create_player(db_session, "Solo Player")

    with pytest.raises(ValidationError):
        await ladder_service.register_team(db_session, player, player, CLUB, TIER)
    with pytest.raises(NotFoundError):
        await ladder_service.register_team(db_session, player, player + 1, "nowhere", TIER)
    with pytest.raises(NotFoundError):
        await ladder_service.register_team(db_session, player, player + 1, CLUB, "no-such-tier")
    with pytest.raises(NotFoundError):
        await ladder_service.register_team(db_session, player, 999999, CLUB, TIER)


# ─── Challenge creation ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_challenge_marks_both_teams_busy(db_session):
    teams = await _register_teams(db_session, 4)
    challenger, defender = teams[3], teams[0]

    challenge = await ladder_service.create_challenge(
        db_session, challenger["partner"], defender["id"], venue="Court 2"
    )

    assert challenge["status"] == "pending"
    assert challenge["challenger_team_id"] == challenger["id"]
    assert challenge["challenger_rank"] == 4
    assert challenge["defender_rank"] == 1
    assert challenge["venue"] == "Court 2"
    assert challenge["expires_at"] is not None
    assert (await _team(db_session, challenger["id"])).status == "challenging"
    assert (await _team(db_session, defender["id"])).status == "defending"

    result = await db_session.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.type == NotificationType.CHALLENGE_RECEIVED.value)
    )
    assert result.scalar_one() == 2


@pytest.mark.asyncio
async def test_create_challenge_rank_gap_limits(db_session):
    teams = await _register_teams(db_session, 5)

    with pytest.raises(ValidationError, match="ranked 1-3 places above"):
        await ladder_service.create_challenge(db_session, teams[4]["captain"], teams[0]["id"])
    with pytest.raises(ValidationError):
        await ladder_service.create_challenge(db_session, teams[0]["captain"], teams[1]["id"])


@pytest.mark.asyncio
async def test_create_challenge_rejects_own_team(db_session):
    teams = await _register_teams(db_session, 2)

    with pytest.raises(ValidationError):
        await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[1]["id"])


@pytest.mark.asyncio
async def test_create_challenge_requires_team_in_pool(db_session):
    teams = await _register_teams(db_session, 2)
    outsider = await _create_player(db_session, "Out Sider")

    with pytest.raises(NotFoundError):
        await ladder_service.create_challenge(db_session, outsider, teams[0]["id"])
    with pytest.raises(NotFoundError):
        await ladder_service.create_challenge(db_session, teams[1]["captain"], 999999)


@pytest.mark.asyncio
async def test_create_challenge_rejects_busy_teams(db_session):
    teams = await _register_teams(db_session, 4)
    await ladder_service.create_challenge(db_session, teams[2]["captain"], teams[1]["id"])

    # Challenger already challenging
    with pytest.raises(InvalidStateError, match="Your team is already in a challenge"):
        await ladder_service.create_challenge(db_session, teams[2]["captain"], teams[0]["id"])
    # Defender already defending
    with pytest.raises(InvalidStateError, match="Defending team is already in a challenge"):
        await ladder_service.create_challenge(db_session, teams[3]["captain"], teams[1]["id"])


# ─── Defender response ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_defender_can_accept(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])

    with pytest.raises(AuthorizationError):
        await ladder_service.accept_challenge(db_session, challenge["id"], teams[1]["captain"])

    accepted = await ladder_service.accept_challenge(db_session, challenge["id"], teams[0]["partner"])
    assert accepted["status"] == "accepted"

    with pytest.raises(InvalidStateError, match="current status: accepted"):
        await ladder_service.accept_challenge(db_session, challenge["id"], teams[0]["captain"])


@pytest.mark.asyncio
async def test_decline_frees_both_teams(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])

    declined = await ladder_service.decline_challenge(db_session, challenge["id"], teams[0]["captain"])

    assert declined["status"] == "declined"
    assert (await _team(db_session, teams[0]["id"])).status == "active"
    assert (await _team(db_session, teams[1]["id"])).status == "active"


@pytest.mark.asyncio
async def test_outsider_cannot_touch_challenge(db_session):
    teams = await _register_teams(db_session, 3)
    challenge = await ladder_service.create_challenge(db_session, teams[2]["captain"], teams[1]["id"])

    with pytest.raises(AuthorizationError, match="not a participant"):
        await ladder_service.accept_challenge(db_session, challenge["id"], teams[0]["captain"])


@pytest.mark.asyncio
async def test_missing_challenge(db_session):
    teams = await _register_teams(db_session, 1)

    with pytest.raises(NotFoundError):
        await ladder_service.accept_challenge(db_session, 424242, teams[0]["captain"])
    with pytest.raises(NotFoundError):
        await ladder_service.get_challenge(db_session, 424242)


@pytest.mark.asyncio
async def test_expired_challenge_cannot_be_accepted(db_session):
    teams = await _register_teams(db_session, 2)
    created = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])
    challenge = await db_session.get(LadderChallenge, created["id"])
    challenge.expires_at = utcnow() - timedelta(minutes=1)
    await db_session.flush()

    with pytest.raises(InvalidStateError, match="expired"):
        await ladder_service.accept_challenge(db_session, created["id"], teams[0]["captain"])


@pytest.mark.asyncio
async def test_expire_pending_challenges(db_session):
    teams = await _register_teams(db_session, 4)
    stale = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])
    fresh = await ladder_service.create_challenge(db_session, teams[3]["captain"], teams[2]["id"])
    challenge = await db_session.get(LadderChallenge, stale["id"])
    challenge.expires_at = utcnow() - timedelta(hours=1)
    await db_session.flush()

    assert await ladder_service.expire_pending_challenges(db_session) == 1

    assert (await ladder_service.get_challenge(db_session, stale["id"]))["status"] == "declined"
    assert (await ladder_service.get_challenge(db_session, fresh["id"]))["status"] == "pending"
    assert (await _team(db_session, teams[0]["id"])).status == "active"
    assert (await _team(db_session, teams[1]["id"])).status == "active"


# ─── Score submission and verification ───────────────────────────────────────


@pytest.mark.asyncio
async def test_submit_requires_accepted_challenge(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])

    with pytest.raises(InvalidStateError, match=r"current status: pending\)"):
        await ladder_service.submit_score(
            db_session, challenge["id"], teams[1]["captain"], CHALLENGER_WINS
        )


@pytest.mark.asyncio
async def test_submit_rejects_invalid_scores(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])

    with pytest.raises(ValidationError, match="super tiebreak 3rd set is required"):
        await ladder_service.submit_score(
            db_session,
            challenge["id"],
            teams[1]["captain"],
            [{"team_a": 6, "team_b": 4}, {"team_a": 3, "team_b": 6}],
        )
    stored = await ladder_service.get_challenge(db_session, challenge["id"])
    assert stored["status"] == "accepted"


@pytest.mark.asyncio
async def test_challenger_win_rotates_ranks_on_confirm(db_session):
    teams = await _register_teams(db_session, 4)
    challenger, defender = teams[3], teams[1]
    challenge = await _accepted_challenge(db_session, challenger, defender)

    submitted = await ladder_service.submit_score(
        db_session, challenge["id"], challenger["captain"], CHALLENGER_WINS
    )
    assert submitted["status"] == "pending_verification"
    assert submitted["result"] == "challenger_won"
    assert submitted["submitted_by"] == challenger["captain"]
    # Nothing moves until the result is confirmed
    assert (await _ranks(db_session))[challenger["id"]] == 4

    completed = await ladder_service.verify_score(
        db_session, challenge["id"], defender["partner"], VerifyAction.CONFIRM
    )

    assert completed["status"] == "completed"
    assert completed["new_ranks"] == {"challenger": 2, "defender": 3}
    ranks = await _ranks(db_session)
    assert ranks[teams[0]["id"]] == 1
    assert ranks[challenger["id"]] == 2
    assert ranks[defender["id"]] == 3
    assert ranks[teams[2]["id"]] == 4

    winner = await _team(db_session, challenger["id"])
    loser = await _team(db_session, defender["id"])
    assert winner.points == 5
    assert winner.matches_played == 1 and winner.matches_won == 1
    assert loser.points == 0
    assert loser.matches_played == 1 and loser.matches_won == 0


@pytest.mark.asyncio
async def test_overlapping_challenges_confirm_against_current_ranks(db_session):
    teams = await _register_teams(db_session, 7)
    upper = await _accepted_challenge(db_session, teams[4], teams[1])  # 5 vs 2
    lower = await _accepted_challenge(db_session, teams[6], teams[3])  # 7 vs 4
    await ladder_service.submit_score(db_session, upper["id"], teams[4]["captain"], CHALLENGER_WINS)
    await ladder_service.submit_score(db_session, lower["id"], teams[6]["captain"], CHALLENGER_WINS)

    await ladder_service.verify_score(db_session, lower["id"], teams[3]["captain"], VerifyAction.CONFIRM)
    # The lower rotation pushed the upper challenger from 5 to 6
    completed = await ladder_service.verify_score(
        db_session, upper["id"], teams[1]["captain"], VerifyAction.CONFIRM
    )

    assert completed["new_ranks"] == {"challenger": 2, "defender": 3}
    ranks = await _ranks(db_session)
    assert sorted(ranks.values()) == list(range(1, 8))
    assert [ranks[t["id"]] for t in teams] == [1, 3, 4, 6, 2, 7, 5]
    assert winner.status == "active" and loser.status == "active"

    history = await ladder_service.get_history(db_session, CLUB, TIER)
    assert len(history) == 1
    assert history[0]["old_challenger_rank"] == 4
    assert history[0]["new_challenger_rank"] == 2
    assert history[0]["old_defender_rank"] == 2
    assert history[0]["new_defender_rank"] == 3
    assert history[0]["scores"] == CHALLENGER_WINS


@pytest.mark.asyncio
async def test_defender_win_keeps_ranks_and_awards_points(db_session):
    teams = await _register_teams(db_session, 3)
    challenger, defender = teams[2], teams[0]
    challenge = await _accepted_challenge(db_session, challenger, defender)

    await ladder_service.submit_score(
        db_session, challenge["id"], defender["captain"], DEFENDER_WINS
    )
    completed = await ladder_service.verify_score(
        db_session, challenge["id"], challenger["captain"], VerifyAction.CONFIRM
    )

    assert completed["result"] == "defender_won"
    assert completed["new_ranks"] == {"challenger": 3, "defender": 1}
    assert (await _team(db_session, defender["id"])).points == 3
    assert (await _team(db_session, challenger["id"])).points == 0


@pytest.mark.asyncio
async def test_verify_twice_is_rejected_without_double_apply(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])
    await ladder_service.submit_score(db_session, challenge["id"], teams[1]["captain"], CHALLENGER_WINS)
    await ladder_service.verify_score(
        db_session, challenge["id"], teams[0]["captain"], VerifyAction.CONFIRM
    )

    for _ in range(2):
        with pytest.raises(InvalidStateError, match="current status: completed"):
            await ladder_service.verify_score(
                db_session, challenge["id"], teams[0]["captain"], VerifyAction.CONFIRM
            )

    winner = await _team(db_session, teams[1]["id"])
    assert winner.points == 5
    assert winner.rank == 1
    count = await db_session.execute(select(func.count()).select_from(LadderHistory))
    assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_dispute_frees_teams_without_moving_ranks(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])
    await ladder_service.submit_score(db_session, challenge["id"], teams[1]["captain"], CHALLENGER_WINS)

    disputed = await ladder_service.verify_score(
        db_session, challenge["id"], teams[0]["partner"], VerifyAction.DISPUTE
    )

    assert disputed["status"] == "disputed"
    assert await _ranks(db_session) == {teams[0]["id"]: 1, teams[1]["id"]: 2}
    assert (await _team(db_session, teams[0]["id"])).status == "active"
    assert (await _team(db_session, teams[1]["id"])).status == "active"
    assert (await _team(db_session, teams[1]["id"])).points == 0


@pytest.mark.asyncio
async def test_outsider_cannot_verify(db_session):
    teams = await _register_teams(db_session, 3)
    challenge = await _accepted_challenge(db_session, teams[2], teams[1])
    await ladder_service.submit_score(db_session, challenge["id"], teams[2]["captain"], CHALLENGER_WINS)

    with pytest.raises(AuthorizationError):
        await ladder_service.verify_score(
            db_session, challenge["id"], teams[0]["captain"], VerifyAction.CONFIRM
        )


@pytest.mark.asyncio
async def test_rematch_of_last_opponent_is_rejected(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])
    await ladder_service.submit_score(db_session, challenge["id"], teams[0]["captain"], DEFENDER_WINS)
    await ladder_service.verify_score(
        db_session, challenge["id"], teams[1]["captain"], VerifyAction.CONFIRM
    )

    with pytest.raises(ValidationError, match="same team twice in a row"):
        await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])


# ─── Rescind and forfeit ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rescind_drops_challenger_one_place(db_session):
    teams = await _register_teams(db_session, 4)
    challenger, defender = teams[2], teams[0]
    challenge = await _accepted_challenge(db_session, challenger, defender)

    rescinded = await ladder_service.respond_challenge(
        db_session, challenge["id"], challenger["partner"], ChallengeAction.RESCIND
    )

    assert rescinded["status"] == "declined"
    assert rescinded["rank_penalty_applied"] is True
    ranks = await _ranks(db_session)
    assert ranks[challenger["id"]] == 4
    assert ranks[teams[3]["id"]] == 3
    assert ranks[defender["id"]] == 1
    assert (await _team(db_session, challenger["id"])).status == "active"
    assert (await _team(db_session, defender["id"])).status == "active"


@pytest.mark.asyncio
async def test_rescind_by_last_team_has_no_penalty(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])

    rescinded = await ladder_service.respond_challenge(
        db_session, challenge["id"], teams[1]["captain"], ChallengeAction.RESCIND
    )

    assert rescinded["rank_penalty_applied"] is False
    assert await _ranks(db_session) == {teams[0]["id"]: 1, teams[1]["id"]: 2}


@pytest.mark.asyncio
async def test_defender_cannot_rescind(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])

    with pytest.raises(AuthorizationError, match="Only the challenging team"):
        await ladder_service.respond_challenge(
            db_session, challenge["id"], teams[0]["captain"], ChallengeAction.RESCIND
        )


@pytest.mark.asyncio
async def test_respond_requires_accepted(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await ladder_service.create_challenge(db_session, teams[1]["captain"], teams[0]["id"])

    with pytest.raises(InvalidStateError, match="Challenge must be accepted"):
        await ladder_service.respond_challenge(
            db_session, challenge["id"], teams[1]["captain"], ChallengeAction.FORFEIT
        )


@pytest.mark.asyncio
async def test_defender_forfeit_gives_challenger_full_win(db_session):
    teams = await _register_teams(db_session, 3)
    challenger, defender = teams[2], teams[0]
    challenge = await _accepted_challenge(db_session, challenger, defender)

    completed = await ladder_service.respond_challenge(
        db_session, challenge["id"], defender["captain"], ChallengeAction.FORFEIT
    )

    assert completed["status"] == "completed"
    assert completed["result"] == "challenger_won"
    assert completed["scores"] == [{"team_a": 6, "team_b": 0}, {"team_a": 6, "team_b": 0}]
    assert completed["new_ranks"] == {"challenger": 1, "defender": 2}
    assert (await _team(db_session, challenger["id"])).points == 5
    assert (await _ranks(db_session))[teams[1]["id"]] == 3


@pytest.mark.asyncio
async def test_challenger_forfeit_records_defender_win(db_session):
    teams = await _register_teams(db_session, 2)
    challenge = await _accepted_challenge(db_session, teams[1], teams[0])

    completed = await ladder_service.respond_challenge(
        db_session, challenge["id"], teams[1]["captain"], ChallengeAction.FORFEIT
    )

    assert completed["result"] == "defender_won"
    assert completed["scores"] == [{"team_a": 0, "team_b": 6}, {"team_a": 0, "team_b": 6}]
    assert (await _team(db_session, teams[0]["id"])).points == 3
    assert await _ranks(db_session) == {teams[0]["id"]: 1, teams[1]["id"]: 2}
