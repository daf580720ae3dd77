from datetime import timedelta

import pytest
from sqlalchemy import func, select

from campus_identity.models.token import Token, TokenKind
from campus_identity.services.token_service import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenService,
)


class TestTokenService:
    @pytest.mark.asyncio
    async def test_consume_once(self, db_session, test_user):
        service = TokenService(db_session)
        token = await service.create(test_user.id, timedelta(hours=1))

        assert await service.consume(token.token) == test_user.id
        with pytest.raises(TokenNotFoundError):
            await service.consume(token.token)

    @pytest.mark.asyncio
    async def test_consume_checks_kind(self, db_session, test_user):
        service = TokenService(db_session)
        token = await service.create(test_user.id, timedelta(hours=1), kind=TokenKind.verification)

        with pytest.raises(TokenNotFoundError):
            await service.consume(token.token, TokenKind.refresh)
        assert await service.consume(token.token, TokenKind.verification) == test_user.id

    @pytest.mark.asyncio
    async def test_consume_expired_deletes_row(self, db_session, test_user):
        service = TokenService(db_session)
        token = await service.create(test_user.id, timedelta(seconds=-1))

        with pytest.raises(TokenExpiredError):
            await service.consume(token.token)
        with pytest.raises(TokenNotFoundError):
            await service.consume(token.token)

    @pytest.mark.asyncio
    async def test_revoke(self, db_session, test_user):
        service = TokenService(db_session)
        token = await service.create(test_user.id, timedelta(hours=1))

        await service.revoke(token.token)
        with pytest.raises(TokenNotFoundError):
            await service.revoke(token.token)

    @pytest.mark.asyncio
    async def test_delete_expired(self, db_session, test_user):
        service = TokenService(db_session)
        await service.create(test_user.id, timedelta(hours=-2))
        await service.create(test_user.id, timedelta(hours=-1), kind=TokenKind.password_reset)
        live = await service.create(test_user.id, timedelta(hours=1))

        assert await service.delete_expired() == 2

        remaining = await db_session.execute(select(Token.token))
        assert remaining.scalars().all() == [live.token]

    @pytest.mark.asyncio
    async def test_revoke_all_for_user(self, db_session, test_user):
        service = TokenService(db_session)
        for _ in range(3):
            await service.create(test_user.id, timedelta(hours=1))

        assert await service.revoke_all_for_user(test_user.id) == 3
        count = await db_session.execute(select(func.count()).select_from(Token))
        assert count.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_revoke_all_for_user_by_kind(self, db_session, test_user):
        service = TokenService(db_session)
        await service.create(test_user.id, timedelta(hours=1))
        reset = await service.create(test_user.id, timedelta(hours=1), kind=TokenKind.password_reset)

        assert await service.revoke_all_for_user(test_user.id, TokenKind.refresh) == 1
        remaining = await db_session.execute(select(Token.token))
        assert remaining.scalars().all() == [reset.token]
