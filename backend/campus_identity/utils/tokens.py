"""Local session tokens.

Access tokens are self-contained HS256 JWTs signed with SECRET_KEY. Verifying
one needs no database round trip; whether the subject still exists is the
authenticator's concern, not this module's.
"""

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from pydantic import ValidationError

from campus_identity.config import get_settings
from campus_identity.schemas.auth import LocalTokenClaims, TokenSubject

settings = get_settings()

ALGORITHM = "HS256"
# Any HMAC variant is accepted on the way in; tokens are only minted as HS256
ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]


class ConfigError(Exception):
    """Required signing configuration is missing."""


class TokenError(Exception):
    """Base class for token validation failures."""


class InvalidTokenError(TokenError):
    """Token is malformed, badly signed, or missing required claims."""


class ExpiredTokenError(TokenError):
    """Token is past its expiry."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _signing_secret(secret: str | None) -> str:
    key = secret if secret is not None else settings.secret_key
    if not key:
        raise ConfigError("No signing secret configured (SECRET_KEY)")
    return key


def issue_access_token(
    subject: TokenSubject,
    *,
    secret: str | None = None,
    lifetime: timedelta | None = None,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """Sign an access token for ``subject``.

    Returns the encoded token and its expiry time.

    Raises:
        ConfigError: If no signing secret is configured.
    """
    key = _signing_secret(secret)
    issued_at = now or _utcnow()
    if lifetime is None:
        lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    expires_at = issued_at + lifetime

    to_encode = subject.model_dump()
    to_encode.update(
        {
            "sub": str(subject.user_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": settings.token_issuer,
        }
    )
    token = jwt.encode(to_encode, key, algorithm=ALGORITHM)
    return token, expires_at


def verify_access_token(
    token: str,
    *,
    secret: str | None = None,
    now: datetime | None = None,
) -> LocalTokenClaims:
    """Verify signature and expiry and return the embedded claims.

    Raises:
        ConfigError: If no signing secret is configured.
        ExpiredTokenError: If the ``exp`` claim is in the past.
        InvalidTokenError: For any other defect.
    """
    key = _signing_secret(secret)
    try:
        # Expiry is checked below against the injectable clock
        payload = jwt.decode(
            token,
            key,
            algorithms=ACCEPTED_ALGORITHMS,
            options={"verify_exp": False, "verify_aud": False},
        )
    except JWTError as e:
        raise InvalidTokenError(f"Invalid token: {e}") from None

    try:
        claims = LocalTokenClaims(**payload)
    except ValidationError:
        raise InvalidTokenError("Token is missing required claims") from None

    current = now or _utcnow()
    if claims.exp <= int(current.timestamp()):
        raise ExpiredTokenError("Token has expired")

    return claims


def generate_opaque_token() -> str:
    """Random value for server-side tokens (refresh, verification, reset)."""
    return secrets.token_hex(32)
