"""Tests for registration, login, logout and identity lookup."""

import base64
from types import SimpleNamespace

import pytest
from sqlmodel import select

from ekman.errors import (
    InvalidCredentials,
    MalformedCode,
    SessionExpired,
    SessionInvalid,
    Unauthenticated,
    UsernameTaken,
)
from ekman.models.enrollment import IssuedSecret
from ekman.models.session import AuthSession
from ekman.models.user import User
from ekman.services.otp import generate_code

from conftest import T0

STEP0 = T0 // 30


def _register(auth, username="alice", password="correct horse", at=T0):
    secret, _ = auth.totp_setup(username)
    user, auth_session = auth.register(username, password, secret, generate_code(secret, at))
    return secret, user, auth_session


def _users(session):
    return session.exec(select(User)).all()


# ---------------------------------------------------------------------------
# 1. Enrollment
# ---------------------------------------------------------------------------

def test_totp_setup_records_only_a_hash(auth, session):
    secret, uri = auth.totp_setup("alice")
    assert len(secret) == 32
    assert uri.startswith("otpauth://totp/ekman:alice?secret=" + secret)
    assert _users(session) == []

    issued = session.exec(select(IssuedSecret)).all()
    assert len(issued) == 1
    assert secret not in issued[0].secret_hash


def test_totp_setup_without_username_uses_placeholder_label(auth):
    _, uri = auth.totp_setup()
    assert uri.startswith("otpauth://totp/ekman:account?secret=")


def test_totp_setup_secrets_are_fresh(auth):
    assert auth.totp_setup()[0] != auth.totp_setup()[0]


# ---------------------------------------------------------------------------
# 2. Registration
# ---------------------------------------------------------------------------

def test_register_commits_user_and_session(auth, session):
    secret, user, auth_session = _register(auth)

    stored = session.exec(select(User).where(User.username == "alice")).one()
    assert stored.totp_secret == secret
    assert stored.totp_last_counter == STEP0
    assert stored.hashed_password != "correct horse"
    assert auth.sessions.validate(auth_session.token) == user.id


def test_register_with_wrong_code_persists_nothing(auth, session):
    secret, _ = auth.totp_setup("alice")
    wrong = f"{(int(generate_code(secret, T0)) + 1) % 1_000_000:06d}"

    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", secret, wrong)

    assert _users(session) == []
    assert session.exec(select(AuthSession)).all() == []


def test_register_retry_with_fresh_secret_succeeds(auth, session):
    abandoned, _ = auth.totp_setup("alice")
    wrong = f"{(int(generate_code(abandoned, T0)) + 1) % 1_000_000:06d}"
    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", abandoned, wrong)

    _, user, _ = _register(auth)
    assert user.username == "alice"
    assert len(_users(session)) == 1


def test_register_malformed_code(auth, session):
    with pytest.raises(MalformedCode):
        auth.register("alice", "pw", auth.totp_setup("alice")[0], "12ab56")
    assert _users(session) == []


def test_register_rejects_short_secret(auth, session):
    weak = "JBSWY3DPEHPK3PXP"  # 10 bytes
    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", weak, generate_code(weak, T0))
    assert _users(session) == []


def test_register_rejects_well_formed_secret_not_issued_here(auth, session):
    invented = base64.b32encode(b"A" * 20).decode()
    assert len(invented) == 32

    with pytest.raises(InvalidCredentials):
        auth.register("mallory", "pw", invented, generate_code(invented, T0))
    assert _users(session) == []


def test_secret_cannot_be_reused_after_failed_attempt(auth, session):
    secret, _ = auth.totp_setup("alice")
    right = generate_code(secret, T0)
    wrong = f"{(int(right) + 1) % 1_000_000:06d}"

    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", secret, wrong)
    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", secret, right)

    assert _users(session) == []
    assert session.exec(select(IssuedSecret)).all() == []


def test_secret_cannot_enroll_a_second_user(auth, session):
    secret, _, _ = _register(auth)
    with pytest.raises(InvalidCredentials):
        auth.register("bob", "pw", secret, generate_code(secret, T0))
    assert [u.username for u in _users(session)] == ["alice"]


def test_issued_secret_expires(auth, session, clock):
    secret, _ = auth.totp_setup("alice")
    clock.advance(10 * 60 + 1)
    with pytest.raises(InvalidCredentials):
        auth.register("alice", "pw", secret, generate_code(secret, clock()))
    assert _users(session) == []


def test_taken_username_does_not_burn_secret(auth):
    _register(auth)
    secret, _ = auth.totp_setup("bob")
    with pytest.raises(UsernameTaken):
        auth.register("alice", "pw", secret, generate_code(secret, T0))

    user, _ = auth.register("bob", "pw", secret, generate_code(secret, T0))
    assert user.username == "bob"


def test_register_taken_username(auth, session):
    _register(auth)
    with pytest.raises(UsernameTaken):
        _register(auth, password="other")
    assert len(_users(session)) == 1


def test_register_username_race_resolved_by_storage(auth, monkeypatch):
    _register(auth)
    # Availability check passes, as if the other insert landed just after it
    monkeypatch.setattr(auth.credentials, "find_user", lambda username: None)
    with pytest.raises(UsernameTaken):
        _register(auth)


# ---------------------------------------------------------------------------
# 3. Login
# ---------------------------------------------------------------------------

def test_login_replaying_registration_code_rejected(auth, clock):
    secret, _, _ = _register(auth)
    with pytest.raises(InvalidCredentials):
        auth.login("alice", "correct horse", generate_code(secret, T0))


def test_login_with_next_step_code(auth, clock, store):
    secret, user, _ = _register(auth)
    clock.advance(30)

    logged_in, auth_session = auth.login("alice", "correct horse", generate_code(secret, T0 + 30))

    assert logged_in.id == user.id
    assert auth.sessions.validate(auth_session.token) == user.id
    assert store.find_user("alice").totp_last_counter == STEP0 + 1


def test_login_code_cannot_be_used_twice(auth, clock):
    secret, _, _ = _register(auth)
    clock.advance(30)
    code = generate_code(secret, T0 + 30)
    auth.login("alice", "correct horse", code)
    with pytest.raises(InvalidCredentials):
        auth.login("alice", "correct horse", code)


def test_wrong_password_does_not_consume_code(auth, clock):
    secret, _, _ = _register(auth)
    clock.advance(30)
    code = generate_code(secret, T0 + 30)

    with pytest.raises(InvalidCredentials) as exc_info:
        auth.login("alice", "wrong", code)
    assert type(exc_info.value) is InvalidCredentials

    auth.login("alice", "correct horse", code)


def test_wrong_code_and_wrong_password_look_the_same(auth, clock):
    secret, _, _ = _register(auth)
    clock.advance(30)
    good = generate_code(secret, T0 + 30)
    bad = f"{(int(good) + 1) % 1_000_000:06d}"

    with pytest.raises(InvalidCredentials) as wrong_password:
        auth.login("alice", "wrong", good)
    with pytest.raises(InvalidCredentials) as wrong_code:
        auth.login("alice", "correct horse", bad)
    with pytest.raises(InvalidCredentials) as unknown_user:
        auth.login("bob", "correct horse", good)

    assert wrong_password.value.detail == wrong_code.value.detail == unknown_user.value.detail


def test_login_malformed_code_short_circuits(auth, monkeypatch):
    _register(auth)

    def _no_lookup(username):
        raise AssertionError("user looked up for malformed code")

    monkeypatch.setattr(auth.credentials, "find_user", _no_lookup)
    with pytest.raises(MalformedCode):
        auth.login("alice", "correct horse", "abc")


def test_concurrent_logins_with_same_code_only_one_wins(auth, clock, monkeypatch, session):
    secret, _, _ = _register(auth)
    clock.advance(30)
    code = generate_code(secret, T0 + 30)

    # Both requests read the user before either advanced the counter.
    stored = auth.credentials.find_user("alice")
    snapshot = SimpleNamespace(
        id=stored.id,
        username=stored.username,
        hashed_password=stored.hashed_password,
        totp_secret=stored.totp_secret,
        totp_last_counter=stored.totp_last_counter,
    )
    monkeypatch.setattr(auth.credentials, "find_user", lambda username: snapshot)

    results = []
    for _ in range(2):
        try:
            results.append(auth.login("alice", "correct horse", code))
        except InvalidCredentials:
            results.append(None)

    assert sum(r is not None for r in results) == 1
    assert results[1] is None
    assert len(session.exec(select(AuthSession)).all()) == 2  # registration + one login


# ---------------------------------------------------------------------------
# 4. Logout and identity
# ---------------------------------------------------------------------------

def test_me_returns_session_owner(auth):
    _, user, auth_session = _register(auth)
    assert auth.me(auth_session.token).username == "alice"


def test_me_without_session(auth):
    with pytest.raises(Unauthenticated):
        auth.me(None)


def test_logout_then_me_is_unauthenticated(auth):
    _, _, auth_session = _register(auth)
    auth.logout(auth_session.token)
    with pytest.raises(SessionInvalid):
        auth.me(auth_session.token)


def test_logout_is_idempotent(auth):
    _, _, auth_session = _register(auth)
    auth.logout(auth_session.token)
    auth.logout(auth_session.token)
    auth.logout(None)


def test_me_with_expired_session(auth, clock):
    _, _, auth_session = _register(auth)
    clock.advance(25 * 3600)
    with pytest.raises(SessionExpired):
        auth.me(auth_session.token)


def test_me_when_owner_deleted(auth, session):
    _, user, auth_session = _register(auth)
    session.delete(session.get(User, user.id))
    session.commit()
    with pytest.raises(Unauthenticated):
        auth.me(auth_session.token)
