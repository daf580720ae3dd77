import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from campus_identity.models.token import Token, TokenKind
from campus_identity.utils.tokens import generate_opaque_token

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TokenService:
    """Server-side opaque tokens (refresh, verification, password reset)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: int,
        lifetime: timedelta,
        kind: TokenKind = TokenKind.refresh,
    ) -> Token:
        token = Token(
            user_id=user_id,
            token=generate_opaque_token(),
            kind=kind,
            expires_at=datetime.now(timezone.utc) + lifetime,
        )
        self.db.add(token)
        await self.db.flush()
        return token

    async def consume(self, value: str, kind: TokenKind = TokenKind.refresh) -> int:
        """
        Delete a token and return its owner's user id.

        Read and delete happen in one statement, so two concurrent callers
        cannot both consume the same value.

        Raises:
            TokenNotFoundError: If no token of this kind has this value
            TokenExpiredError: If the token existed but had expired (it is
                deleted either way)
        """
        result = await self.db.execute(
            delete(Token)
            .where(Token.token == value, Token.kind == kind)
            .returning(Token.user_id, Token.expires_at)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is None:
            raise TokenNotFoundError("Token not found")

        user_id, expires_at = row
        if _as_utc(expires_at) <= datetime.now(timezone.utc):
            raise TokenExpiredError("Token has expired")
        return user_id

    async def revoke(self, value: str, kind: TokenKind = TokenKind.refresh) -> None:
        """
        Delete a token without checking its expiry.

        Raises:
            TokenNotFoundError: If no token of this kind has this value
        """
        result = await self.db.execute(
            delete(Token)
            .where(Token.token == value, Token.kind == kind)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise TokenNotFoundError("Token not found")

    async def revoke_all_for_user(self, user_id: int, kind: TokenKind | None = None) -> int:
        """Delete the user's tokens, only those of ``kind`` if given. Returns the count."""
        stmt = delete(Token).where(Token.user_id == user_id)
        if kind is not None:
            stmt = stmt.where(Token.kind == kind)
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def delete_expired(self) -> int:
        result = await self.db.execute(
            delete(Token)
            .where(Token.expires_at < datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Deleted {result.rowcount} expired tokens")
        return result.rowcount


class TokenNotFoundError(Exception):
    pass


class TokenExpiredError(Exception):
    pass
