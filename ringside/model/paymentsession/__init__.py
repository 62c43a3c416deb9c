import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated

BACKEND = os.getenv("PAYSESSION_BACKEND", "redis").lower()  # 'redis' | 'sql'

# QR sessions stay payable for 10 minutes
SESSION_TTL_SECONDS = 600

if BACKEND == "sql":
    from ._sql import PaymentSessionStore as _PaymentSessionStore
else:
    from ._redis import PaymentSessionStore as _PaymentSessionStore


def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = SESSION_TTL_SECONDS,
              gated: Optional[Gated] = None):
    if BACKEND == "sql":
        if db is None:
            raise RuntimeError(
                "PaymentSessionStore(sql) requires db=AsyncSession"
            )
        if gated is None:
            raise RuntimeError(
                "PaymentSessionStore(sql) requires gated=Gated"
            )
        return _PaymentSessionStore(db=db, ttl_seconds=ttl_seconds,
                                    gated=gated)
    if r is None:
        raise RuntimeError(
            "PaymentSessionStore(redis) requires r=redis.Redis"
        )
    return _PaymentSessionStore(r=r, ttl_seconds=ttl_seconds)


PaymentSessionStore = _PaymentSessionStore
__all__ = ["PaymentSessionStore", "new_store", "BACKEND",
           "SESSION_TTL_SECONDS"]
