"""
Tests for the server-side session store.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from starlette.requests import Request

from authserver.app.auth.session import (
    SESSION_ISSUER,
    SessionError,
    SessionStore,
    StaleSessionError,
)
from authserver.app.models import Principal, SessionRecord

SECRET = "session-secret-for-tests-0123456789"


@pytest.fixture
def sessions():
    return SessionStore(secret=SECRET, ttl_seconds=3600)


@pytest.fixture
def record():
    return SessionRecord(
        user=Principal(id="usr_123", email="test.user@example.com"),
        id_token="id-token-1",
        user_id="usr_123",
    )


def request_with_cookie(value):
    headers = [(b"cookie", f"sessionId={value}".encode())] if value else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class TestSessionTokens:
    """Test signing and verification of the session cookie"""

    def test_round_trip(self, sessions):
        token = sessions.issue_token("sid-abc")

        assert sessions.resolve_sid(token) == "sid-abc"

    def test_claims(self, sessions):
        token = sessions.issue_token("sid-abc")
        payload = jwt.decode(token, SECRET, algorithms=["HS256"], issuer=SESSION_ISSUER)

        assert payload["sid"] == "sid-abc"
        assert payload["exp"] - payload["iat"] == 3600

    def test_tampered_token(self, sessions):
        token = sessions.issue_token("sid-abc")
        header, payload, signature = token.split(".")
        tampered_signature = ("A" if signature[0] != "A" else "B") + signature[1:]

        assert sessions.resolve_sid(f"{header}.{payload}.{tampered_signature}") is None

    def test_wrong_secret(self, sessions):
        token = SessionStore(secret="another-secret-0123456789").issue_token("sid-abc")

        assert sessions.resolve_sid(token) is None

    def test_expired_token(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sid": "sid-abc",
                "iat": now - timedelta(hours=2),
                "exp": now - timedelta(hours=1),
                "iss": SESSION_ISSUER,
            },
            SECRET,
            algorithm="HS256",
        )

        assert sessions.resolve_sid(token) is None

    def test_foreign_issuer(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sid": "sid-abc", "iat": now, "exp": now + timedelta(hours=1), "iss": "someone-else"},
            SECRET,
            algorithm="HS256",
        )

        assert sessions.resolve_sid(token) is None

    def test_missing_sid_claim(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"iat": now, "exp": now + timedelta(hours=1), "iss": SESSION_ISSUER},
            SECRET,
            algorithm="HS256",
        )

        assert sessions.resolve_sid(token) is None

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_garbage(self, sessions, token):
        assert sessions.resolve_sid(token) is None

    def test_requires_secret(self):
        with pytest.raises(SessionError):
            SessionStore(secret="")


class TestSessionRecords:
    """Test create/get/replace/destroy"""

    def test_create_and_load(self, sessions, record):
        sid, token = sessions.create(record)

        handle = sessions.load(request_with_cookie(token))

        assert handle.sid == sid
        assert handle.record == record
        assert len(sessions) == 1

    def test_load_without_cookie(self, sessions, record):
        sessions.create(record)

        assert sessions.load(request_with_cookie(None)) is None

    def test_load_destroyed_session(self, sessions, record):
        sid, token = sessions.create(record)
        assert sessions.destroy(sid) is True

        assert sessions.load(request_with_cookie(token)) is None
        assert sessions.destroy(sid) is False

    def test_unique_ids(self, sessions, record):
        first, _ = sessions.create(record)
        second, _ = sessions.create(record)

        assert first != second

    def test_replace_next_version(self, sessions, record):
        sid, _ = sessions.create(record)
        new_user = Principal(id="usr_123", email="renamed@example.com")

        updated = sessions.replace(sid, record.evolve(user=new_user))

        assert updated.version == 2
        assert sessions.get(sid).user.email == "renamed@example.com"
        assert sessions.get(sid).id_token == "id-token-1"

    def test_replace_stale_version(self, sessions, record):
        sid, _ = sessions.create(record)
        sessions.replace(sid, record.evolve())

        with pytest.raises(StaleSessionError):
            sessions.replace(sid, record.evolve(id_token="late-writer"))

        assert sessions.get(sid).id_token == "id-token-1"

    def test_replace_same_version(self, sessions, record):
        sid, _ = sessions.create(record)

        with pytest.raises(StaleSessionError):
            sessions.replace(sid, record)

    def test_replace_missing_session(self, sessions, record):
        with pytest.raises(SessionError):
            sessions.replace("missing", record.evolve())

    def test_records_are_immutable(self, record):
        with pytest.raises(Exception):
            record.user_id = "someone-else"


class TestSessionExpiry:

    def test_get_expired_record(self, record):
        sessions = SessionStore(secret=SECRET, ttl_seconds=0)
        sid, _ = sessions.create(record)

        assert sessions.get(sid) is None
        assert len(sessions) == 0

    def test_purge_expired(self, sessions, record):
        sid, _ = sessions.create(record)
        sessions._records[sid] = (record, datetime.now(timezone.utc) - timedelta(seconds=1))
        live_sid, _ = sessions.create(record)

        assert sessions.get(sid) is None
        assert sessions.get(live_sid) == record
        assert sessions.purge_expired() == 0

    def test_create_purges_expired(self, sessions, record):
        sid, _ = sessions.create(record)
        sessions._records[sid] = (record, datetime.now(timezone.utc) - timedelta(seconds=1))

        sessions.create(record)

        assert len(sessions) == 1


class TestUserIdTokens:
    """Test the signed userId cookie value"""

    def test_round_trip(self, sessions):
        assert sessions.resolve_user_id(sessions.issue_user_token("usr_123")) == "usr_123"

    def test_email_identifier(self, sessions):
        token = sessions.issue_user_token("test.user@example.com")

        assert sessions.resolve_user_id(token) == "test.user@example.com"

    @pytest.mark.parametrize("value", [None, "", "usr_123", "victim@example.com"])
    def test_plaintext_rejected(self, sessions, value):
        assert sessions.resolve_user_id(value) is None

    def test_wrong_secret(self, sessions):
        token = SessionStore(secret="another-secret-0123456789").issue_user_token("usr_123")

        assert sessions.resolve_user_id(token) is None

    def test_expired(self, sessions):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": "usr_123",
                "typ": "uid",
                "iat": now - timedelta(days=2),
                "exp": now - timedelta(days=1),
                "iss": SESSION_ISSUER,
            },
            SECRET,
            algorithm="HS256",
        )

        assert sessions.resolve_user_id(token) is None

    def test_session_token_not_accepted_as_user_id(self, sessions):
        assert sessions.resolve_user_id(sessions.issue_token("sid-abc")) is None

    def test_user_id_token_not_accepted_as_session(self, sessions):
        assert sessions.resolve_sid(sessions.issue_user_token("usr_123")) is None
