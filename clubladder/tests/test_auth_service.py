"""
Tests for auth_service helpers.
"""

from datetime import timedelta

import pytest

from clubladder.services import auth_service


def test_hash_and_verify_password():
    hashed = auth_service.hash_password("secret123")

    assert hashed != "secret123"
    assert auth_service.verify_password("secret123", hashed) is True
    assert auth_service.verify_password("wrong123", hashed) is False


def test_verify_password_with_bad_hash():
    assert auth_service.verify_password("secret123", "not-a-bcrypt-hash") is False
    assert auth_service.verify_password("", "anything") is False


def test_access_token_roundtrip():
    token = auth_service.create_access_token({"user_id": 42, "phone_number": "+15551234567"})

    payload = auth_service.verify_token(token)

    assert payload["user_id"] == 42
    assert payload["type"] == "access"
    assert "exp" in payload


def test_expired_token_is_rejected():
    token = auth_service.create_access_token({"user_id": 1}, expires_delta=timedelta(minutes=-5))
    assert auth_service.verify_token(token) is None


def test_garbage_token_is_rejected():
    assert auth_service.verify_token("not.a.token") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("5551234567", "+15551234567"),
        ("(555) 123-4567", "+15551234567"),
        ("+1 555 123 4567", "+15551234567"),
        ("+923001234567", "+923001234567"),
    ],
)
def test_normalize_phone_number(raw, expected):
    assert auth_service.normalize_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "12345", "+1234567890123456"])
def test_normalize_phone_number_invalid(raw):
    with pytest.raises(ValueError):
        auth_service.normalize_phone_number(raw)
