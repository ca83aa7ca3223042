from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.models import TokenKind
from app.services import exceptions
from app.services.token_service import SessionClaims, TokenService

CLAIMS = SessionClaims(user_id=42, role="customer", session_id="sess_abc")


def test_issue_pair_round_trip(settings):
    service = TokenService(settings)

    pair = service.issue_pair(CLAIMS)
    access = service.verify(pair.access_token, TokenKind.ACCESS)
    refresh = service.verify(pair.refresh_token, TokenKind.REFRESH)

    assert access.session == CLAIMS
    assert refresh.session == CLAIMS
    assert access.kind is TokenKind.ACCESS
    assert refresh.kind is TokenKind.REFRESH
    assert (pair.access_expires_at - access.issued_at) <= timedelta(minutes=15, seconds=1)
    assert pair.refresh_expires_at - pair.access_expires_at > timedelta(days=6)


def test_tokens_carry_issuer_and_audience(settings):
    token = TokenService(settings).issue_access_token(CLAIMS)

    payload = jwt.decode(token, options={"verify_signature": False})

    assert payload["iss"] == "bareloft-api"
    assert payload["aud"] == "bareloft-client"
    assert payload["sub"] == "42"
    assert payload["sid"] == "sess_abc"


def test_access_token_is_not_accepted_as_refresh(settings):
    service = TokenService(settings)
    token = service.issue_access_token(CLAIMS)

    with pytest.raises(exceptions.InvalidToken):
        service.verify(token, TokenKind.REFRESH)


def test_refresh_token_is_not_accepted_as_access(settings):
    service = TokenService(settings)
    token = service.issue_refresh_token(CLAIMS)

    with pytest.raises(exceptions.InvalidToken):
        service.verify(token, TokenKind.ACCESS)


def test_expired_token_is_distinguished(settings):
    past = datetime.now(tz=timezone.utc) - timedelta(hours=1)
    service = TokenService(settings, clock=lambda: past)
    token = service.issue_access_token(CLAIMS)

    with pytest.raises(exceptions.ExpiredToken):
        service.verify(token, TokenKind.ACCESS)
    assert service.is_expired(token) is True


def test_tampered_token_is_invalid(settings):
    service = TokenService(settings)
    token = service.issue_access_token(CLAIMS)
    header, payload, signature = token.split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(exceptions.InvalidToken):
        service.verify(tampered, TokenKind.ACCESS)


def test_foreign_audience_is_rejected(settings):
    service = TokenService(settings)
    now = datetime.now(tz=timezone.utc)
    token = jwt.encode(
        {
            "sub": "42",
            "sid": "sess_abc",
            "typ": "access",
            "jti": "x",
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": "bareloft-api",
            "aud": "someone-else",
        },
        settings.JWT_SECRET_KEY,
        algorithm="HS256",
    )

    with pytest.raises(exceptions.InvalidToken):
        service.verify(token, TokenKind.ACCESS)


def test_rotation_always_produces_new_tokens(settings):
    frozen = datetime.now(tz=timezone.utc)
    service = TokenService(settings, clock=lambda: frozen)

    first = service.issue_pair(CLAIMS)
    second = service.issue_pair(CLAIMS)

    assert first.access_token != second.access_token
    assert first.refresh_token != second.refresh_token


def test_decode_and_expiry_helpers(settings):
    service = TokenService(settings)
    token = service.issue_access_token(CLAIMS)

    claims = service.decode(token)

    assert claims.user_id == 42
    assert service.expires_at(token) == claims.expires_at
    assert service.is_expired(token) is False
    assert service.is_expired("not-a-token") is True
    with pytest.raises(exceptions.InvalidToken):
        service.decode("not-a-token")
