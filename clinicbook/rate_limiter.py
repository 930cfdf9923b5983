"""
Per-source request throttling for public endpoints.

Each check is a single conditional write (SQL upsert or one Redis script),
so two simultaneous requests from the same source can never both read the
old count. When the counter store is unreachable the limiter fails open.
"""

import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis
from fastapi import Request
from sqlalchemy import case, delete
from sqlalchemy.exc import SQLAlchemyError

from .config import (
    BOOKING_RATE_LIMIT,
    BOOKING_RATE_WINDOW_SECONDS,
    CONTACT_RATE_LIMIT,
    CONTACT_RATE_WINDOW_SECONDS,
    RATE_LIMIT_BACKEND,
)
from .database import dialect_insert
from .errors import RateLimitedError, StoreUnavailableError
from .models import RateLimitRecord
from .security_utils import generate_rate_limit_key, log_security_event

logger = logging.getLogger(__name__)

BOOKING_ENDPOINT = "booking"
CONTACT_ENDPOINT = "contact"

# Redis keys outlive their window so an external retention policy stays in charge
REDIS_RETENTION_SECONDS = 24 * 60 * 60

# Redis connection
redis_client: Optional[redis.Redis] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a REDIS_URL and individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection for rate limiting...")

        redis_url = os.getenv("REDIS_URL")

        if redis_url:
            # Mask password in URL for logging
            if "@" in redis_url:
                url_parts = redis_url.split("@")
                protocol = url_parts[0].split(":")[0]
                masked_url = f"{protocol}:****@{url_parts[1]}"
            else:
                masked_url = "****"
            logger.info(f"📡 Using Redis URL connection: {masked_url}")

            redis_client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
                max_connections=20,
            )
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_password = os.getenv("REDIS_PASSWORD", None)
            redis_db = int(os.getenv("REDIS_DB", "0"))
            redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"

            logger.info(
                f"📡 Using Redis at {redis_host}:{redis_port} db={redis_db} "
                f"({'with SSL' if redis_ssl else 'without SSL'})"
            )

            redis_client = redis.Redis(
                host=redis_host,
                port=redis_port,
                password=redis_password,
                db=redis_db,
                ssl=redis_ssl,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
                max_connections=20,
            )

    return redis_client


class DatabaseRateLimitStore:
    """Counters in the rate_limits table, one upsert per hit"""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def hit(
        self, source_id: str, endpoint: str, limit: int, window_seconds: int, now: datetime
    ) -> tuple[int, datetime]:
        """
        Register one request and return (count, window_start) after the write.

        The count stops growing at limit + 1 so a blocked source does not
        push its counter up forever.
        """
        cutoff = now - timedelta(seconds=window_seconds)
        expired = RateLimitRecord.window_start <= cutoff

        db = self.session_factory()
        try:
            stmt = dialect_insert(db, RateLimitRecord).values(
                source_id=source_id, endpoint=endpoint, count=1, window_start=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_id", "endpoint"],
                set_={
                    "count": case(
                        (expired, 1),
                        (RateLimitRecord.count > limit, RateLimitRecord.count),
                        else_=RateLimitRecord.count + 1,
                    ),
                    "window_start": case((expired, now), else_=RateLimitRecord.window_start),
                },
            ).returning(RateLimitRecord.count, RateLimitRecord.window_start)

            row = db.execute(stmt).one()
            db.commit()
            return row.count, row.window_start
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailableError(f"Rate limit store unavailable: {e}") from e
        finally:
            db.close()

    def purge_stale(self, older_than: datetime) -> int:
        """Delete records whose window started before ``older_than``. Returns the row count."""
        db = self.session_factory()
        try:
            result = db.execute(
                delete(RateLimitRecord).where(RateLimitRecord.window_start < older_than)
            )
            db.commit()
            deleted = result.rowcount or 0
            if deleted:
                logger.info(f"🧹 Purged {deleted} stale rate limit records")
            return deleted
        finally:
            db.close()


# KEYS[1] = counter hash; ARGV = now_ms, window_ms, limit, retention_seconds
_REDIS_HIT_SCRIPT = """
local data = redis.call('HMGET', KEYS[1], 'count', 'window_start')
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local count = tonumber(data[1])
local start = tonumber(data[2])
if (not count) or (not start) or (now - start >= window) then
  count = 1
  start = now
elseif count <= limit then
  count = count + 1
end
redis.call('HSET', KEYS[1], 'count', count, 'window_start', start)
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[4]))
return {count, start}
"""


class RedisRateLimitStore:
    """Counters in Redis hashes, updated by one server-side script per hit"""

    def __init__(self, client: redis.Redis):
        self.client = client
        self._script = client.register_script(_REDIS_HIT_SCRIPT)

    def hit(
        self, source_id: str, endpoint: str, limit: int, window_seconds: int, now: datetime
    ) -> tuple[int, datetime]:
        key = generate_rate_limit_key(source_id, endpoint)
        now_ms = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
        try:
            count, start_ms = self._script(
                keys=[key],
                args=[
                    now_ms,
                    window_seconds * 1000,
                    limit,
                    max(window_seconds, REDIS_RETENTION_SECONDS),
                ],
            )
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Rate limit store unavailable: {e}") from e

        window_start = datetime.fromtimestamp(int(start_ms) / 1000, tz=timezone.utc).replace(
            tzinfo=None
        )
        return int(count), window_start


class RateLimiter:
    """Fixed-window limiter: ``limit`` requests per ``window_seconds`` per source and endpoint"""

    def __init__(
        self,
        store,
        endpoint: str,
        limit: int,
        window_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.endpoint = endpoint
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, source_id: str) -> None:
        """
        Count one request from ``source_id``.

        Raises:
            RateLimitedError: the source used up its window; carries retry_after.
        """
        now = self.clock()
        try:
            count, window_start = self.store.hit(
                source_id, self.endpoint, self.limit, self.window_seconds, now
            )
        except StoreUnavailableError as e:
            logger.warning(
                f"⚠️ Rate limit store unreachable for {self.endpoint} - allowing request (fail-open mode): {e}"
            )
            log_security_event(
                "rate_limit_degraded",
                ip_address=source_id,
                details={"endpoint": self.endpoint, "reason": str(e)},
            )
            return

        if count > self.limit:
            elapsed = (now - window_start).total_seconds()
            retry_after = max(1, math.ceil(self.window_seconds - elapsed))
            logger.warning(
                f"🚫 Rate limit EXCEEDED for {self.endpoint} - {count - 1}/{self.limit} requests used"
            )
            raise RateLimitedError(
                f"Rate limit exceeded. Maximum {self.limit} requests per {self.window_seconds} seconds.",
                retry_after=retry_after,
            )

        logger.debug(f"Rate limit status for {self.endpoint} - {count}/{self.limit} requests used")


def build_rate_limit_store(session_factory: Callable):
    """Pick the counter store configured by RATE_LIMIT_BACKEND"""
    if RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimitStore(get_redis_client())
    return DatabaseRateLimitStore(session_factory)


def booking_rate_limiter(store) -> RateLimiter:
    return RateLimiter(store, BOOKING_ENDPOINT, BOOKING_RATE_LIMIT, BOOKING_RATE_WINDOW_SECONDS)


def contact_rate_limiter(store) -> RateLimiter:
    return RateLimiter(store, CONTACT_ENDPOINT, CONTACT_RATE_LIMIT, CONTACT_RATE_WINDOW_SECONDS)


def get_client_ip(request: Request) -> str:
    """Resolve the caller's address, preferring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
