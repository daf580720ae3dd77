"""Token maintenance background worker.

Run with ``arq campus_identity.workers.maintenance.WorkerSettings``.
"""

import logging

from arq import cron
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from campus_identity.config import get_settings
from campus_identity.services.token_service import TokenService
from campus_identity.workers.settings import get_redis_settings

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    settings = get_settings()
    engine = create_async_engine(str(settings.database_url), pool_pre_ping=True)
    ctx["engine"] = engine
    ctx["session_maker"] = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def shutdown(ctx: dict) -> None:
    await ctx["engine"].dispose()


async def cleanup_expired_tokens(ctx: dict) -> int:
    """
    Delete refresh, verification and password-reset tokens past their expiry.

    Runs every 15 minutes via cron.
    """
    async with ctx["session_maker"]() as db:
        try:
            deleted = await TokenService(db).delete_expired()
            await db.commit()
        except Exception:
            logger.exception("Expired token cleanup failed")
            await db.rollback()
            raise

    logger.info(f"Expired token cleanup removed {deleted} rows")
    return deleted


class WorkerSettings:
    """ARQ worker settings for maintenance jobs."""

    functions = [cleanup_expired_tokens]

    cron_jobs = [
        cron(cleanup_expired_tokens, minute={0, 15, 30, 45}),
    ]

    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
