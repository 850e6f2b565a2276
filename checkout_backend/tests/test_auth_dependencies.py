from datetime import datetime, timedelta

from jose import jwt

import checkout_backend.main as backend_main


def _session_token(subject: str, *, expires_in: timedelta = timedelta(minutes=5)) -> str:
    payload = {"sub": subject, "exp": datetime.utcnow() + expires_in}
    return jwt.encode(payload, backend_main.JWT_SECRET_KEY, algorithm=backend_main.JWT_ALGORITHM)


def test_get_optional_current_user_missing_cookie_returns_none():
    assert backend_main.get_optional_current_user(None) is None


def test_get_optional_current_user_invalid_token_returns_none():
    assert backend_main.get_optional_current_user("not-a-valid-token") is None


def test_get_optional_current_user_expired_token_returns_none(monkeypatch):
    expired_token = _session_token("42", expires_in=timedelta(minutes=-5))

    def _unexpected_get_user_by_id(_uid: int):
        raise AssertionError("get_user_by_id should not be called for expired tokens")

    monkeypatch.setattr(backend_main, "get_user_by_id", _unexpected_get_user_by_id)

    assert backend_main.get_optional_current_user(expired_token) is None


def test_get_optional_current_user_valid_token_returns_user(monkeypatch):
    user = backend_main.UserOut(
        id=123,
        email="reader@example.com",
        created_utc=datetime.utcnow(),
    )

    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: user if uid == 123 else None)

    result = backend_main.get_optional_current_user(_session_token(str(user.id)))

    assert result is user


def test_get_optional_current_user_non_numeric_subject_returns_none(monkeypatch):
    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: None)

    assert backend_main.get_optional_current_user(_session_token("alice")) is None


def test_get_optional_current_user_lookup_failure_returns_none(monkeypatch):
    def _broken_lookup(_uid: int):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(backend_main, "get_user_by_id", _broken_lookup)

    assert backend_main.get_optional_current_user(_session_token("7")) is None
