"""
Tests for request authentication and the dashboard sign-in client.

Covers:
  - Authorization header parsing and token verification errors
  - Role / account status lookup in Firestore
  - require_admin 403 for non-admin users
  - AuthManager sign-in and refresh against a mocked HTTP session
"""

from unittest.mock import MagicMock

import pytest
import requests
from firebase_admin import auth as firebase_auth

from sircharge_admin.auth import AuthManager, require_admin, verify_request
from sircharge_admin.errors import AuthError


def verifier(uid="admin1"):
    return lambda token: {"uid": uid, "email": f"{uid}@example.com"}


def failing_verifier(exc):
    def verify(token):
        raise exc
    return verify


@pytest.fixture
def users_db(db):
    db.add("users/admin1", {"role": "admin"})
    db.add("users/member", {"role": "user"})
    db.add("users/banned", {"role": "admin", "accountStatus": "suspended"})
    return db


# ---------------------------------------------------------------------------
# verify_request
# ---------------------------------------------------------------------------

class TestVerifyRequest:
    @pytest.mark.parametrize("header, error", [
        (None, "Missing Authorization header"),
        ("Token abc", "Invalid Authorization header format. Expected: Bearer <token>"),
        ("Bearer   ", "Empty ID token"),
    ])
    def test_bad_headers(self, users_db, header, error):
        with pytest.raises(AuthError) as exc_info:
            verify_request(header, users_db, verifier())
        assert exc_info.value.status_code == 401
        assert exc_info.value.to_dict() == {
            "error": error,
            "message": "Authentication required to access this resource",
        }

    def test_expired_token(self, users_db):
        expired = firebase_auth.ExpiredIdTokenError("expired", cause=None)
        with pytest.raises(AuthError, match="ID token has expired"):
            verify_request("Bearer t", users_db, failing_verifier(expired))

    def test_unexpected_verification_failure(self, users_db):
        with pytest.raises(AuthError, match="Token verification failed"):
            verify_request("Bearer t", users_db, failing_verifier(RuntimeError("boom")))

    def test_unknown_user(self, users_db):
        with pytest.raises(AuthError, match="User not found in database"):
            verify_request("Bearer t", users_db, verifier("ghost"))

    def test_suspended_user(self, users_db):
        with pytest.raises(AuthError, match="Account suspended"):
            verify_request("Bearer t", users_db, verifier("banned"))

    def test_valid_admin(self, users_db):
        user = verify_request("Bearer t", users_db, verifier())
        assert user.uid == "admin1"
        assert user.email == "admin1@example.com"
        assert user.is_admin


class TestRequireAdmin:
    def test_non_admin_is_forbidden(self, users_db):
        with pytest.raises(AuthError) as exc_info:
            require_admin("Bearer t", users_db, verifier("member"))
        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict()["error"] == "Forbidden"

    def test_admin_passes(self, users_db):
        assert require_admin("Bearer t", users_db, verifier()).uid == "admin1"


# ---------------------------------------------------------------------------
# AuthManager
# ---------------------------------------------------------------------------

def mock_session(payload=None, exc=None):
    session = MagicMock()
    if exc is not None:
        session.post.side_effect = exc
    else:
        session.post.return_value.json.return_value = payload
    return session


class TestAuthManager:
    def test_requires_api_key(self):
        manager = AuthManager(api_key="key", session=mock_session({}))
        manager.api_key = None
        with pytest.raises(RuntimeError):
            manager.signin("a@example.com", "pw")

    def test_signin(self):
        session = mock_session({"idToken": "id", "refreshToken": "rt", "localId": "uid"})
        result = AuthManager(api_key="key", session=session).signin("a@example.com", "pw")
        assert result["idToken"] == "id"
        _, kwargs = session.post.call_args
        assert kwargs["params"] == {"key": "key"}
        assert kwargs["json"]["returnSecureToken"] is True

    def test_signin_network_error(self):
        session = mock_session(exc=requests.exceptions.ConnectionError("down"))
        result = AuthManager(api_key="key", session=session).signin("a@example.com", "pw")
        assert result["error"]["message"].startswith("Network error")

    def test_refresh_normalizes_keys(self):
        session = mock_session({"id_token": "new", "refresh_token": "rt2", "user_id": "uid", "expires_in": "3600"})
        result = AuthManager(api_key="key", session=session).refresh("rt")
        assert result == {"idToken": "new", "refreshToken": "rt2", "localId": "uid", "expiresIn": "3600"}

    def test_refresh_error_passthrough(self):
        session = mock_session({"error": {"message": "TOKEN_EXPIRED"}})
        result = AuthManager(api_key="key", session=session).refresh("rt")
        assert result["error"]["message"] == "TOKEN_EXPIRED"
