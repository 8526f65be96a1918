"""
Tests for token issuing and verification.
"""
from datetime import datetime, timedelta

import jwt
import pytest

from callhub.config import Settings
from callhub.services.auth_service import AuthenticationError, AuthService


@pytest.mark.unit
def test_token_round_trip(auth_service):
    token = auth_service.create_token("42", {"role": "agent"})

    payload = auth_service.verify_token(token)

    assert payload["sub"] == "42"
    assert payload["role"] == "agent"
    assert auth_service.identity_from_token(token) == "42"


@pytest.mark.unit
def test_identity_falls_back_to_id_claim(auth_service):
    token = jwt.encode({"id": 77}, auth_service.secret_key, algorithm="HS256")

    assert auth_service.identity_from_token(token) == "77"


@pytest.mark.unit
def test_missing_token(auth_service):
    with pytest.raises(AuthenticationError) as exc_info:
        auth_service.identity_from_token(None)

    assert exc_info.value.reason == "Authentication required"


@pytest.mark.unit
def test_expired_token(auth_service):
    token = jwt.encode(
        {"sub": "42", "exp": datetime.utcnow() - timedelta(minutes=5)},
        auth_service.secret_key,
        algorithm="HS256"
    )

    with pytest.raises(AuthenticationError) as exc_info:
        auth_service.verify_token(token)

    assert exc_info.value.reason == "Token has expired"


@pytest.mark.unit
def test_wrong_secret(auth_service):
    token = AuthService(secret_key="other-secret").create_token("42")

    with pytest.raises(AuthenticationError) as exc_info:
        auth_service.identity_from_token(token)

    assert exc_info.value.reason == "Invalid token"


@pytest.mark.unit
def test_token_without_identity(auth_service):
    token = jwt.encode({"role": "agent"}, auth_service.secret_key, algorithm="HS256")

    with pytest.raises(AuthenticationError):
        auth_service.identity_from_token(token)


@pytest.mark.unit
def test_from_settings():
    cfg = Settings(secret_key="from-settings", jwt_expiration_hours=2)

    service = AuthService.from_settings(cfg)

    assert service.secret_key == "from-settings"
    assert service.expiration_hours == 2
