from datetime import datetime, timedelta, timezone

import jwt
import pytest

from somnus.auth.session import (
    SessionIssuer,
    SessionClaims,
    ADMIN_ROLE,
    ADMIN_USER_ID,
    authenticate_admin,
    check_password,
    has_role,
    hash_password,
    is_reserved_username,
)
from conftest import make_config, TEST_SECRET, ADMIN_USERNAME, ADMIN_PASSWORD


@pytest.fixture
def issuer():
    return SessionIssuer(TEST_SECRET)


def test_issue_and_verify(issuer):
    token = issuer.issue(SessionClaims(user_id="u1", username="alice"))

    claims = issuer.verify(token)
    assert claims == SessionClaims(user_id="u1", username="alice")

    payload = jwt.decode(token, TEST_SECRET, algorithms=["HS256"])
    assert payload["userId"] == "u1"
    assert payload["exp"] - payload["iat"] == 7 * 24 * 3600


def test_from_config():
    issuer = SessionIssuer.from_config(make_config())
    assert issuer.secret == TEST_SECRET
    assert issuer.max_age == timedelta(days=7)


def test_expired_token_rejected(issuer):
    past = datetime.now(timezone.utc) - timedelta(days=8)
    token = jwt.encode(
        {"userId": "u1", "username": "alice", "iat": past, "exp": past + timedelta(days=7)},
        TEST_SECRET, algorithm="HS256",
    )
    assert issuer.verify(token) is None


def test_forged_token_rejected(issuer):
    forged = SessionIssuer("another-secret-that-is-long-enough-for-hs256").issue(
        SessionClaims(user_id="u1", username="alice")
    )
    assert issuer.verify(forged) is None
    assert issuer.verify("not-a-token") is None
    assert issuer.verify(None) is None


def test_token_without_claims_rejected(issuer):
    token = jwt.encode({"sub": "u1"}, TEST_SECRET, algorithm="HS256")
    assert issuer.verify(token) is None


def test_password_hashing():
    hashed = hash_password("secret1")
    assert hashed != "secret1"
    assert check_password("secret1", hashed)
    assert not check_password("secret2", hashed)
    assert not check_password("secret1", "not-a-bcrypt-hash")


def test_authenticate_admin():
    config = make_config()
    claims = authenticate_admin(config, ADMIN_USERNAME, ADMIN_PASSWORD)
    assert claims == SessionClaims(user_id=ADMIN_USER_ID, username=ADMIN_USERNAME)
    assert authenticate_admin(config, ADMIN_USERNAME, "wrong") is None


def test_authenticate_admin_disabled_without_password():
    config = make_config()
    config.admin.password = None
    assert authenticate_admin(config, ADMIN_USERNAME, "") is None


def test_has_role():
    config = make_config()
    admin = SessionClaims(user_id="any-row", username=ADMIN_USERNAME)
    alice = SessionClaims(user_id="u1", username="alice")

    assert has_role(admin, ADMIN_ROLE, config)
    assert not has_role(alice, ADMIN_ROLE, config)
    assert not has_role(None, ADMIN_ROLE, config)
    assert not has_role(admin, "editor", config)


def test_has_role_fallback_username():
    config = make_config()
    config.admin.fallback_username = "alice"
    assert has_role(SessionClaims(user_id="u1", username="alice"), ADMIN_ROLE, config)


def test_reserved_usernames():
    config = make_config()
    config.admin.fallback_username = "Keeper"

    assert is_reserved_username(config, ADMIN_USERNAME)
    assert is_reserved_username(config, ADMIN_USERNAME.upper())
    assert is_reserved_username(config, " keeper ")
    assert not is_reserved_username(config, "alice")


def test_nothing_reserved_without_admin():
    config = make_config()
    config.admin.username = None
    assert not is_reserved_username(config, ADMIN_USERNAME)
