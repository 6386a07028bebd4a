from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

import jwt
from jwt import InvalidTokenError

TOKEN_ISSUER = "singbox"
DEFAULT_TOKEN_TTL = timedelta(hours=12)


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Sign a customer token. Issuance belongs to the account service; tests use this too."""
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + (expires_delta or DEFAULT_TOKEN_TTL),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm=algorithm)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_access_token(token: str, *, secret: str, algorithms: Sequence[str]) -> int:
    """Return the customer id carried by ``token``; raises ValueError when it cannot be trusted."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            issuer=TOKEN_ISSUER,
            options={"require": ["sub", "exp", "iss"]},
        )
    except InvalidTokenError as exc:
        raise ValueError(f"invalid token: {exc}") from exc

    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token subject is not a customer id") from exc
    if user_id < 1:
        raise ValueError("token subject is not a customer id")
    return user_id
