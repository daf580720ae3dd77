from datetime import datetime, timezone
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_identity.models.user import User, UserType
from campus_identity.utils.passwords import DUMMY_HASH, hash_password, verify_password


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_by_login_id(self, login_id: str) -> Optional[User]:
        """Look up a user by email address or NIM/NIP."""
        result = await self.db.execute(
            select(User).where(or_(User.email == login_id, User.login_id == login_id))
        )
        return result.scalars().first()

    async def get_by_campus_user_id(self, campus_user_id: int) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.campus_user_id == campus_user_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        middle_name: str | None = None,
        last_name: str | None = None,
        user_type: UserType = UserType.student,
        login_id: str | None = None,
        campus_user_id: int | None = None,
        verified: bool = False,
    ) -> User:
        if await self.get_by_email(email) is not None:
            raise UserAlreadyExistsError(f"A user with email {email} already exists.")

        user = User(
            email=email,
            password_hash=await run_in_threadpool(hash_password, password),
            first_name=first_name,
            middle_name=middle_name,
            last_name=last_name,
            user_type=user_type,
            login_id=login_id,
            campus_user_id=campus_user_id,
            verified=verified,
        )
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def authenticate(self, login_id: str, password: str) -> Optional[User]:
        """
        Check a login id and password.

        bcrypt runs whether or not the account exists, so timing does not
        reveal which login ids are registered. Hashing runs in the threadpool.
        Inactive accounts never authenticate.
        """
        user = await self.get_by_login_id(login_id)
        if user is None:
            await run_in_threadpool(verify_password, password, DUMMY_HASH)
            return None
        if not await run_in_threadpool(verify_password, password, user.password_hash):
            return None
        if not user.is_active:
            return None
        return user

    async def update_last_login(self, user: User) -> None:
        user.last_login_at = datetime.now(timezone.utc)
        await self.db.flush()


class UserAlreadyExistsError(Exception):
    pass
