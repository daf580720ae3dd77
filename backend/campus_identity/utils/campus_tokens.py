"""Helpers for tokens minted by the campus information system.

The campus system signs its tokens with a key this service never sees, so
claims are read without signature verification and trusted at face value.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from campus_identity.utils.tokens import ExpiredTokenError, InvalidTokenError

logger = logging.getLogger(__name__)

USER_ID_CLAIM = "uid"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def decode_unverified_claims(token: str) -> dict[str, Any]:
    """Return the claims of a JWT without checking its signature.

    Raises:
        InvalidTokenError: If the token is not a decodable JWT.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        raise InvalidTokenError(f"Undecodable token: {e}") from None
    if not isinstance(claims, dict):
        raise InvalidTokenError("Token claims are not a JSON object")
    return claims


def parse_numeric_id(value: Any) -> int:
    """Recover a positive integer id from an int, integral float, or numeric string.

    Raises:
        InvalidTokenError: If the value cannot be read as a positive integer.
    """
    # bool is an int subclass; a true/false uid is never meaningful
    if isinstance(value, bool):
        raise InvalidTokenError("User id claim is a boolean")

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidTokenError(f"User id claim is not integral: {value}")
        parsed = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise InvalidTokenError(f"User id claim is not numeric: {value!r}")
        parsed = int(text)
    else:
        raise InvalidTokenError(f"Unsupported user id claim type: {type(value).__name__}")

    if parsed <= 0:
        raise InvalidTokenError("User id claim must be positive")
    return parsed


def _expiry_from_claims(claims: dict[str, Any]) -> datetime | None:
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def validate_campus_token(token: str, now: datetime | None = None) -> int:
    """Validate a campus-issued token and return the campus user id.

    Only structure and expiry are checked. Tokens without an ``exp`` claim
    are accepted.

    Raises:
        InvalidTokenError: If the token is undecodable or has no usable uid.
        ExpiredTokenError: If the ``exp`` claim has passed.
    """
    claims = decode_unverified_claims(token)

    if USER_ID_CLAIM not in claims:
        raise InvalidTokenError("Token has no user id claim")
    user_id = parse_numeric_id(claims[USER_ID_CLAIM])

    expires_at = _expiry_from_claims(claims)
    if expires_at is not None and expires_at <= (now or _utcnow()):
        raise ExpiredTokenError(f"Campus token expired at {expires_at.isoformat()}")

    return user_id


def token_expiry(token: str, default_lifetime: timedelta, now: datetime | None = None) -> datetime:
    """Expiry of a campus token, or ``now + default_lifetime`` when undecodable."""
    current = now or _utcnow()
    try:
        claims = decode_unverified_claims(token)
    except InvalidTokenError:
        logger.warning("Campus token is not a decodable JWT, assuming default lifetime")
        return current + default_lifetime

    expires_at = _expiry_from_claims(claims)
    if expires_at is None:
        return current + default_lifetime
    return expires_at
