from arq.connections import RedisSettings

from campus_identity.config import get_settings

settings = get_settings()


def get_redis_settings(redis_url: str | None = None) -> RedisSettings:
    """Connection settings for the maintenance worker, parsed from ``REDIS_URL``."""
    return RedisSettings.from_dsn(redis_url or str(settings.redis_url))
