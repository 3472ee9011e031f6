"""Signed tokens (HS256 JWT) for bearer auth and referral bindings."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from pauaffiliate.settings import settings

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 2


class TokenError(Exception):
    """Token is malformed, tampered with or expired."""


def encode_token(claims: dict[str, Any], expires_in: timedelta, token_type: str) -> str:
    """Sign claims with the application secret.

    Args:
        claims: Payload claims
        expires_in: Lifetime of the token
        token_type: Value of the ``typ`` claim, checked on decode

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "typ": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)


def decode_token(token: str, token_type: str) -> dict[str, Any]:
    """Verify and decode a token of the given type.

    Raises:
        TokenError: If the signature, expiry or type is invalid
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise TokenError(str(e)) from e

    if payload.get("typ") != token_type:
        raise TokenError(f"Expected {token_type} token")
    return payload


def create_access_token(user_id: str, expires_in: timedelta | None = None) -> str:
    """Create a bearer token for a user.

    Tokens are normally issued by the identity provider that shares the
    secret; this helper exists for tooling and tests.
    """
    return encode_token(
        {"sub": user_id},
        expires_in or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
        token_type="access",
    )
