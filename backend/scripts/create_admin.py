#!/usr/bin/env python3
"""
Create the bootstrap admin account.

Reads ADMIN_EMAIL and ADMIN_PASSWORD from the environment (or .env).

Usage:
    python scripts/create_admin.py
"""

import asyncio
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from campus_identity.config import get_settings
from campus_identity.models.user import UserType
from campus_identity.services.user_service import UserAlreadyExistsError, UserService


async def create_admin() -> int:
    settings = get_settings()
    if not settings.admin_password:
        print("ADMIN_PASSWORD is not set; refusing to create an admin without a password")
        return 1

    engine = create_async_engine(str(settings.database_url))
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session() as db:
            try:
                user = await UserService(db).create(
                    email=settings.admin_email,
                    password=settings.admin_password,
                    first_name="Administrator",
                    user_type=UserType.admin,
                    verified=True,
                )
            except UserAlreadyExistsError:
                print(f"Admin {settings.admin_email} already exists, nothing to do")
                return 0
            await db.commit()
            print(f"Created admin {user.email} (id {user.id})")
            return 0
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(create_admin()))
