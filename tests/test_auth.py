import pytest
from jose import JWTError, jwt

from foodsafe.core.auth.security import decode_access_token
from foodsafe.settings import get_settings


def _token(claims: dict, secret: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode(claims, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def test_access_token_roundtrip():
    payload = decode_access_token(_token({"sub": "qa-lead-7", "email": "qa@example.com"}))
    assert payload["sub"] == "qa-lead-7"
    assert payload["email"] == "qa@example.com"


def test_token_without_subject_rejected():
    with pytest.raises(JWTError):
        decode_access_token(_token({"email": "qa@example.com"}))


def test_token_with_wrong_secret_rejected():
    with pytest.raises(JWTError):
        decode_access_token(_token({"sub": "qa-lead-7"}, secret="another-secret-of-32-characters!!"))
