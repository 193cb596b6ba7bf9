"""
Unit tests for the ladder API routes.

Services are monkeypatched; these tests cover auth wiring, request parsing
and how service errors map onto HTTP responses.
"""
import pytest
from fastapi.testclient import TestClient

from clubladder.api.main import app
from clubladder.database.db import get_db_session
from clubladder.services import auth_service, user_service, player_service, ladder_service
from clubladder.services.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


# ============================================================================
# Test Fixtures and Helpers
# ============================================================================

class _FakePlayer:
    def __init__(self, player_id):
        self.id = player_id


def make_client_with_auth(monkeypatch, user_id=1, player_id=10, phone="+10000000000"):
    """Helper to create authenticated test client."""
    def fake_verify_token(token):
        return {"user_id": user_id, "phone_number": phone}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "phone_number": phone,
            "name": "Test User",
            "email": "test@example.com",
            "is_verified": True,
            "created_at": "2020-01-01T00:00:00Z"
        }

    async def fake_get_player_for_user(session, uid):
        return _FakePlayer(player_id) if player_id else None

    async def fake_get_db_session():
        yield object()

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)
    monkeypatch.setattr(player_service, "get_player_for_user", fake_get_player_for_user, raising=True)
    monkeypatch.setitem(app.dependency_overrides, get_db_session, fake_get_db_session)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def _challenge(**overrides):
    challenge = {
        "id": 5,
        "challenger_team_id": 3,
        "defender_team_id": 1,
        "club_id": "kg",
        "tier": "mens-elite",
        "challenger_rank": 4,
        "defender_rank": 2,
        "status": "pending",
        "result": None,
        "scores": None,
        "expires_at": "2026-01-08T00:00:00+00:00",
    }
    challenge.update(overrides)
    return challenge


def _team(**overrides):
    team = {
        "id": 3,
        "club_id": "kg",
        "tier": "mens-elite",
        "rank": 4,
        "points": 0,
        "status": "active",
        "matches_played": 0,
        "matches_won": 0,
        "player1_id": 10,
        "player2_id": 11,
        "team_name": "Ace & Partner",
    }
    team.update(overrides)
    return team


# ============================================================================
# Auth wiring
# ============================================================================

def test_create_challenge_requires_token(monkeypatch):
    async def fake_get_db_session():
        yield object()
    monkeypatch.setitem(app.dependency_overrides, get_db_session, fake_get_db_session)

    client = TestClient(app)
    response = client.post("/api/ladder/challenges", json={"defender_team_id": 1})

    assert response.status_code == 401
    assert response.json() == {"detail": "Missing authorization token"}


def test_invalid_token_rejected(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    monkeypatch.setattr(auth_service, "verify_token", lambda token: None)

    response = client.post("/api/ladder/challenges", json={"defender_team_id": 1}, headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication token"


def test_player_profile_required(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, player_id=None)

    response = client.post("/api/ladder/challenges", json={"defender_team_id": 1}, headers=headers)

    assert response.status_code == 403
    assert response.json()["detail"] == "Player profile required"


# ============================================================================
# Teams and standings
# ============================================================================

def test_register_team(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_register_team(session, player_id, partner_id, club_id, tier, team_name=None):
        calls.update(player_id=player_id, partner_id=partner_id, club_id=club_id, tier=tier)
        return _team(player1_id=player_id, player2_id=partner_id)

    monkeypatch.setattr(ladder_service, "register_team", fake_register_team)

    response = client.post(
        "/api/ladder/teams",
        json={"partner_id": 11, "club_id": "kg", "tier": "mens-elite"},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["rank"] == 4
    assert calls == {"player_id": 10, "partner_id": 11, "club_id": "kg", "tier": "mens-elite"}


def test_standings_unknown_pool_is_404(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_standings(session, club_id, tier):
        raise NotFoundError(f"Tier '{tier}' not found for club '{club_id}'")

    monkeypatch.setattr(ladder_service, "get_standings", fake_get_standings)

    response = client.get("/api/ladder/kg/nope", headers=headers)

    assert response.status_code == 404
    assert response.json() == {"detail": "Tier 'nope' not found for club 'kg'"}


def test_standings(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_standings(session, club_id, tier):
        return [_team(id=1, rank=1), _team(id=2, rank=2)]

    monkeypatch.setattr(ladder_service, "get_standings", fake_get_standings)

    response = client.get("/api/ladder/kg/mens-elite", headers=headers)

    assert response.status_code == 200
    assert [t["rank"] for t in response.json()] == [1, 2]


def test_get_challenge_route_is_not_shadowed_by_pool_route(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_challenge(session, challenge_id):
        return _challenge(id=challenge_id)

    monkeypatch.setattr(ladder_service, "get_challenge", fake_get_challenge)

    response = client.get("/api/ladder/challenges/5", headers=headers)

    assert response.status_code == 200
    assert response.json()["id"] == 5


# ============================================================================
# Challenge workflow
# ============================================================================

def test_create_challenge(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_create_challenge(session, player_id, defender_team_id, scheduled_date=None,
                                    scheduled_time=None, venue=None):
        calls.update(player_id=player_id, defender_team_id=defender_team_id, venue=venue)
        return _challenge()

    monkeypatch.setattr(ladder_service, "create_challenge", fake_create_challenge)

    response = client.post(
        "/api/ladder/challenges",
        json={"defender_team_id": 1, "venue": "Court 2"},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert calls == {"player_id": 10, "defender_team_id": 1, "venue": "Court 2"}


def test_create_challenge_out_of_range(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_create_challenge(session, player_id, defender_team_id, **kwargs):
        raise ValidationError("You can only challenge teams 1 to 3 places above you")

    monkeypatch.setattr(ladder_service, "create_challenge", fake_create_challenge)

    response = client.post("/api/ladder/challenges", json={"defender_team_id": 1}, headers=headers)

    assert response.status_code == 400
    assert "1 to 3 places" in response.json()["detail"]


def test_create_challenge_team_busy(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_create_challenge(session, player_id, defender_team_id, **kwargs):
        raise InvalidStateError("Defending team is already in a challenge", current_state="defending")

    monkeypatch.setattr(ladder_service, "create_challenge", fake_create_challenge)

    response = client.post("/api/ladder/challenges", json={"defender_team_id": 1}, headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == (
        "Defending team is already in a challenge (current status: defending)"
    )


def test_concurrent_rank_change_is_409(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_verify(session, challenge_id, player_id, action):
        raise ConflictError("Ladder ranks changed while this request was running; please retry")

    monkeypatch.setattr(ladder_service, "verify_score", fake_verify)

    response = client.post(
        "/api/ladder/challenges/5/verify", json={"action": "confirm"}, headers=headers
    )

    assert response.status_code == 409
    assert "please retry" in response.json()["detail"]


@pytest.mark.parametrize(
    "bad_set",
    [
        {"team_a": True, "team_b": 6},
        {"team_a": "6", "team_b": 4},
        {"team_a": 6.0, "team_b": 4},
    ],
)
def test_submit_score_rejects_non_integer_values(monkeypatch, bad_set):
    client, headers = make_client_with_auth(monkeypatch)
    calls = []

    async def fake_submit(session, challenge_id, player_id, scores):
        calls.append(scores)
        return _challenge()

    monkeypatch.setattr(ladder_service, "submit_score", fake_submit)

    response = client.post(
        "/api/ladder/challenges/5/score",
        json={"scores": [{"team_a": 6, "team_b": 4}, bad_set]},
        headers=headers,
    )

    assert response.status_code == 422
    assert calls == []


def test_accept_by_challenger_is_forbidden(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_accept(session, challenge_id, player_id):
        raise AuthorizationError("Only the defending team can accept this challenge")

    monkeypatch.setattr(ladder_service, "accept_challenge", fake_accept)

    response = client.post("/api/ladder/challenges/5/accept", headers=headers)

    assert response.status_code == 403
    assert response.json()["detail"] == "Only the defending team can accept this challenge"


def test_decline_challenge(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_decline(session, challenge_id, player_id):
        return _challenge(status="declined")

    monkeypatch.setattr(ladder_service, "decline_challenge", fake_decline)

    response = client.post("/api/ladder/challenges/5/decline", headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "declined"


def test_respond_rescind(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_respond(session, challenge_id, player_id, action):
        calls["action"] = action
        return _challenge(status="rescinded", rank_penalty_applied=True, new_ranks={"3": 5, "4": 4})

    monkeypatch.setattr(ladder_service, "respond_challenge", fake_respond)

    response = client.post(
        "/api/ladder/challenges/5/respond", json={"action": "rescind"}, headers=headers
    )

    assert response.status_code == 200
    assert response.json()["rank_penalty_applied"] is True
    assert calls["action"] == ladder_service.ChallengeAction.RESCIND


def test_respond_unknown_action_is_422(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    response = client.post(
        "/api/ladder/challenges/5/respond", json={"action": "surrender"}, headers=headers
    )

    assert response.status_code == 422


def test_submit_score_passes_plain_sets(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_submit(session, challenge_id, player_id, scores):
        calls["scores"] = scores
        return _challenge(status="accepted", result="pending_verification", scores=scores, submitted_by=player_id)

    monkeypatch.setattr(ladder_service, "submit_score", fake_submit)

    response = client.post(
        "/api/ladder/challenges/5/score",
        json={"scores": [{"team_a": 6, "team_b": 4}, {"team_a": 6, "team_b": 3}]},
        headers=headers,
    )

    assert response.status_code == 200
    assert calls["scores"] == [{"team_a": 6, "team_b": 4}, {"team_a": 6, "team_b": 3}]
    assert response.json()["submitted_by"] == 10


def test_submit_score_on_pending_challenge(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_submit(session, challenge_id, player_id, scores):
        raise InvalidStateError("Challenge must be accepted before submitting a score", current_state="pending")

    monkeypatch.setattr(ladder_service, "submit_score", fake_submit)

    response = client.post(
        "/api/ladder/challenges/5/score",
        json={"scores": [{"team_a": 6, "team_b": 4}, {"team_a": 6, "team_b": 3}]},
        headers=headers,
    )

    assert response.status_code == 400


def test_verify_confirm(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_verify(session, challenge_id, player_id, action):
        assert action == ladder_service.VerifyAction.CONFIRM
        return _challenge(status="completed", result="challenger_won", new_ranks={"3": 2, "1": 3})

    monkeypatch.setattr(ladder_service, "verify_score", fake_verify)

    response = client.post(
        "/api/ladder/challenges/5/verify", json={"action": "confirm"}, headers=headers
    )

    assert response.status_code == 200
    assert response.json()["new_ranks"] == {"3": 2, "1": 3}


def test_unexpected_error_is_500(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_verify(session, challenge_id, player_id, action):
        raise RuntimeError("boom")

    monkeypatch.setattr(ladder_service, "verify_score", fake_verify)

    response = client.post(
        "/api/ladder/challenges/5/verify", json={"action": "dispute"}, headers=headers
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Error verifying score"
