"""
Runtime configuration for the campground booking engine.
Values come from the environment (optionally a .env file).
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    """Engine settings. Hold TTL and stay limits are operator-tunable, never hardcoded."""

    database_url: str = 'sqlite+aiosqlite:///./campsite_booking.db'
    redis_url: Optional[str] = None
    currency: str = 'USD'

    hold_ttl_minutes: int = Field(15, ge=1)
    max_stay_nights: int = Field(28, ge=1)

    # Settled holds kept in memory for status lookups
    settled_hold_cache_size: int = Field(10000, ge=1)

    # Distributed per-site lock (only used when Redis is configured)
    site_lock_timeout_seconds: int = Field(10, ge=1)
    site_lock_wait_seconds: float = Field(2.0, ge=0)

    idempotency_ttl_seconds: int = Field(86400, ge=1)

    cors_origins: str = '*'

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL") or os.getenv(
                'POSTGRES_URL',
                'sqlite+aiosqlite:///./campsite_booking.db'  # SQLite for local dev only
            ),
            redis_url=os.getenv('REDIS_URL') or None,
            currency=os.getenv('CURRENCY', 'USD'),
            hold_ttl_minutes=int(os.getenv('HOLD_TTL_MINUTES', 15)),
            max_stay_nights=int(os.getenv('MAX_STAY_NIGHTS', 28)),
            settled_hold_cache_size=int(os.getenv('SETTLED_HOLD_CACHE_SIZE', 10000)),
            site_lock_timeout_seconds=int(os.getenv('SITE_LOCK_TIMEOUT_SECONDS', 10)),
            site_lock_wait_seconds=float(os.getenv('SITE_LOCK_WAIT_SECONDS', 2.0)),
            idempotency_ttl_seconds=int(os.getenv('IDEMPOTENCY_TTL_SECONDS', 86400)),
            cors_origins=os.getenv('CORS_ORIGINS', '*'),
        )


settings = Settings.from_env()
