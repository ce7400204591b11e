from datetime import datetime, timedelta, timezone
import pytest
from jose import jwt

from config import ConfigurationError
from services.token_service import (
    TokenExpired, TokenInvalid, build_attestation_link, issue_attestation_token,
    verify_attestation_token,
)


def test_round_trip_returns_note_id():
    token = issue_attestation_token("nota-123")
    assert verify_attestation_token(token) == "nota-123"


def test_token_older_than_thirty_days_is_expired():
    issued = datetime.now(timezone.utc) - timedelta(days=31)
    token = issue_attestation_token("nota-123", issued_at=issued)
    with pytest.raises(TokenExpired):
        verify_attestation_token(token)


def test_token_still_valid_on_day_twenty_nine():
    issued = datetime.now(timezone.utc) - timedelta(days=29)
    token = issue_attestation_token("nota-123", issued_at=issued)
    assert verify_attestation_token(token) == "nota-123"


def test_tampered_token_is_invalid():
    token = issue_attestation_token("nota-123")
    head, payload, sig = token.split(".")
    tampered = ".".join([head, payload, sig[:-4] + ("AAAA" if sig[-4:] != "AAAA" else "BBBB")])
    with pytest.raises(TokenInvalid):
        verify_attestation_token(tampered)


def test_token_signed_with_other_secret_is_invalid(monkeypatch):
    token = issue_attestation_token("nota-123")
    monkeypatch.setenv("AUTH_SECRET", "another-secret")
    with pytest.raises(TokenInvalid):
        verify_attestation_token(token)


def test_garbage_is_invalid():
    with pytest.raises(TokenInvalid):
        verify_attestation_token("not-a-jwt")


def test_payload_without_note_id_is_invalid():
    exp = datetime.now(timezone.utc) + timedelta(days=1)
    token = jwt.encode({"sub": "x", "exp": exp}, "test-auth-secret", algorithm="HS256")
    with pytest.raises(TokenInvalid):
        verify_attestation_token(token)


def test_missing_secret_fails_fast(monkeypatch):
    monkeypatch.delenv("AUTH_SECRET")
    with pytest.raises(ConfigurationError):
        issue_attestation_token("nota-123")
    with pytest.raises(ConfigurationError):
        verify_attestation_token("anything")


def test_link_points_at_public_attest_page():
    assert build_attestation_link("abc").endswith("/attest/abc")
