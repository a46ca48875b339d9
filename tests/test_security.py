from datetime import timedelta

import pytest

from app.core.security import create_access_token, decode_token, get_password_hash, verify_password


def test_password_hashing_and_verify():
    password = "S0meP@ss!WithLength"
    hashed = get_password_hash(password)
    assert hashed != password
    assert verify_password(password, hashed)
    assert verify_password("S0meP@ss!", hashed) is False


def test_password_minimum_length():
    with pytest.raises(ValueError):
        get_password_hash("short")


def test_access_token_claims():
    token = create_access_token("user-xyz", org_id="default", token_version=3)
    decoded = decode_token(token, expected_type="access")
    assert decoded["sub"] == "user-xyz"
    assert decoded["org"] == "default"
    assert decoded["tv"] == 3


def test_expired_token_rejected():
    token = create_access_token("user-xyz", expires_delta=timedelta(seconds=-5))
    with pytest.raises(ValueError):
        decode_token(token)


def test_wrong_token_type_rejected():
    token = create_access_token("user-xyz")
    with pytest.raises(ValueError):
        decode_token(token, expected_type="refresh")


def test_token_for_another_audience_rejected():
    from jose import jwt

    from app.core.settings import settings

    foreign = jwt.encode({"sub": "user-xyz", "type": "access", "aud": "other-app"}, settings.secret_key, algorithm="HS256")
    with pytest.raises(ValueError):
        decode_token(foreign)


def test_unsigned_garbage_rejected():
    with pytest.raises(ValueError):
        decode_token("not-a-token")
