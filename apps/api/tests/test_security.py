"""Tests for session token signing and verification."""

import uuid

import jwt
import pytest

from cabin_rotation.core.config import settings
from cabin_rotation.core.security import create_session_token, decode_session_token


def test_round_trip_claims():
    user_id, org_id, group_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    token = create_session_token(user_id, org_id, "group_lead", group_id)

    payload = decode_session_token(token)
    assert payload["sub"] == str(user_id)
    assert payload["org_id"] == str(org_id)
    assert payload["role"] == "group_lead"
    assert payload["family_group_id"] == str(group_id)


def test_previous_secret_still_accepted(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "old-secret")
    token = create_session_token(uuid.uuid4(), uuid.uuid4(), "member")

    monkeypatch.setattr(settings, "JWT_SECRET", "new-secret")
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", "old-secret")
    assert decode_session_token(token)["role"] == "member"


def test_unknown_secret_rejected(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "issuer-secret")
    token = create_session_token(uuid.uuid4(), uuid.uuid4(), "admin")

    monkeypatch.setattr(settings, "JWT_SECRET", "other-secret")
    monkeypatch.setattr(settings, "JWT_SECRET_PREVIOUS", "")
    with pytest.raises(jwt.InvalidTokenError):
        decode_session_token(token)
