from datetime import timedelta
from typing import Any, Iterator

import pytest
from fastapi import HTTPException
from singbox.config import get_settings
from singbox.deps import get_current_user_id, get_optional_user_id
from singbox.utils.auth import create_access_token
from sqlalchemy.exc import ProgrammingError

SECRET = "testsecret"


class DummySession:
    """Answers the user-exists lookup; an exception instance is raised instead."""

    def __init__(self, user_exists: bool | Exception = True) -> None:
        self.user_exists = user_exists
        self.rolled_back = False

    async def scalar(self, *args: Any, **kwargs: Any) -> int | None:
        if isinstance(self.user_exists, Exception):
            raise self.user_exists
        return 1 if self.user_exists else None

    async def rollback(self) -> None:
        self.rolled_back = True


@pytest.fixture(autouse=True)
def _auth_secret(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("AUTH_SECRET", SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _header(user_id: int = 123, **kwargs: Any) -> str:
    return f"Bearer {create_access_token(user_id=user_id, secret=SECRET, **kwargs)}"


@pytest.mark.asyncio
async def test_valid_token_resolves_customer() -> None:
    result = await get_current_user_id(authorization=_header(123), session=DummySession())  # type: ignore[arg-type]
    assert result == 123


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "authorization",
    [
        None,
        "Bearer not-a-jwt",
        "Basic dXNlcjpwYXNz",
        "Bearer",
    ],
)
async def test_bad_credentials_are_401(authorization: str | None) -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=authorization, session=DummySession())  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401
    assert excinfo.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_expired_token_is_401() -> None:
    authorization = _header(1, expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=authorization, session=DummySession())  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_is_401() -> None:
    authorization = f"Bearer {create_access_token(user_id=1, secret='elsewhere')}"
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=authorization, session=DummySession())  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_unknown_customer_is_401() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=_header(99), session=DummySession(user_exists=False))  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_missing_users_table_is_500() -> None:
    session = DummySession(user_exists=ProgrammingError("missing", None, Exception("cause")))
    with pytest.raises(HTTPException) as excinfo:
        await get_current_user_id(authorization=_header(1), session=session)  # type: ignore[arg-type]
    assert excinfo.value.status_code == 500
    assert session.rolled_back is True


@pytest.mark.asyncio
async def test_optional_identity_allows_anonymous_carts() -> None:
    result = await get_optional_user_id(authorization=None, session=DummySession(user_exists=False))  # type: ignore[arg-type]
    assert result is None


@pytest.mark.asyncio
async def test_optional_identity_still_checks_sent_tokens() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await get_optional_user_id(authorization="Bearer nope", session=DummySession())  # type: ignore[arg-type]
    assert excinfo.value.status_code == 401

    assert await get_optional_user_id(authorization=_header(8), session=DummySession()) == 8  # type: ignore[arg-type]
