"""Token issuing and revocation tests."""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from imitra import security
from imitra.config import JWT_ALGORITHM, JWT_SECRET, now_utc


def _token(sub: str, hours: float) -> str:
    return jwt.encode({"sub": sub, "exp": now_utc() + timedelta(hours=hours)},
                      JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def revoked(monkeypatch):
    store = {}
    monkeypatch.setattr(security, "_token_blacklist", store)
    monkeypatch.setattr(security, "MAX_REVOKED_TOKENS", 2)
    return store


class TestTokenRevocation:
    def test_revoked_token_rejected(self, revoked):
        token = _token("u1", 1)
        assert security.decode_token(token) == "u1"
        security.revoke_token(token)
        with pytest.raises(HTTPException) as exc:
            security.decode_token(token)
        assert exc.value.detail == "Token has been revoked"

    def test_overflow_prunes_expired_entries_only(self, revoked):
        stale = _token("old", -1)
        live = [_token("a", 1), _token("b", 2)]
        security.revoke_token(stale)
        for token in live:
            security.revoke_token(token)
        assert set(revoked) == set(live)
        for token in live:
            with pytest.raises(HTTPException):
                security.decode_token(token)

    def test_overflow_evicts_closest_to_expiry(self, revoked):
        soon, later, latest = _token("a", 1), _token("b", 5), _token("c", 9)
        for token in (soon, later, latest):
            security.revoke_token(token)
        assert set(revoked) == {later, latest}
