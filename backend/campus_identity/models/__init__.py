"""Database models."""

from campus_identity.models.token import Token, TokenKind
from campus_identity.models.user import User, UserType

__all__ = [
    "Token",
    "TokenKind",
    "User",
    "UserType",
]
