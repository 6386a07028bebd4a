from datetime import datetime, timedelta, timezone

import jwt
import pytest
from singbox.utils.auth import TOKEN_ISSUER, bearer_token, create_access_token, decode_access_token


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer ", None),
        ("", None),
        (None, None),
    ],
)
def test_bearer_token(header: str | None, expected: str | None) -> None:
    assert bearer_token(header) == expected


def test_decode_returns_customer_id() -> None:
    token = create_access_token(user_id=42, secret="s3cret", email="ada@example.com")
    assert decode_access_token(token, secret="s3cret", algorithms=["HS256"]) == 42
    claims = jwt.decode(token, "s3cret", algorithms=["HS256"], issuer=TOKEN_ISSUER)
    assert claims["email"] == "ada@example.com"


def test_decode_rejects_wrong_secret_and_expiry() -> None:
    token = create_access_token(user_id=42, secret="s3cret")
    with pytest.raises(ValueError):
        decode_access_token(token, secret="other", algorithms=["HS256"])

    expired = create_access_token(user_id=42, secret="s3cret", expires_delta=timedelta(seconds=-1))
    with pytest.raises(ValueError):
        decode_access_token(expired, secret="s3cret", algorithms=["HS256"])


def _signed(claims: dict[str, object]) -> str:
    base: dict[str, object] = {"exp": datetime.now(timezone.utc) + timedelta(minutes=5), "iss": TOKEN_ISSUER}
    base.update(claims)
    return jwt.encode(base, "s3cret", algorithm="HS256")


@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "alice"},
        {"sub": "0"},
        {"sub": "7", "iss": "someone-else"},
    ],
)
def test_decode_rejects_untrusted_claims(claims: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        decode_access_token(_signed(claims), secret="s3cret", algorithms=["HS256"])


def test_decode_requires_subject() -> None:
    with pytest.raises(ValueError):
        decode_access_token(_signed({}), secret="s3cret", algorithms=["HS256"])
