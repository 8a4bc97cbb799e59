from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from jwt import InvalidTokenError

ACCESS_TOKEN_TYPE = "access"
ACCESS_TOKEN_TTL = timedelta(minutes=30)


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "typ": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or ACCESS_TOKEN_TTL),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a `Bearer` header, None when the header is absent."""
    if authorization is None or not authorization.strip():
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ValueError("authorization header must use the Bearer scheme")
    return token.strip()


def decode_access_token(token: str, *, secret: str, algorithms: Sequence[str]) -> int:
    """Return the user id carried by a signed, unexpired access token."""
    try:
        claims = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except InvalidTokenError as exc:
        raise ValueError("invalid token") from exc

    if claims.get("typ", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        raise ValueError("not an access token")
    try:
        return int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
