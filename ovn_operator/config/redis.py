"""
Redis connection backing leader election.

Only opened when LEADER_ELECTION_ENABLED is set; a single operator replica
runs without Redis.
"""
from typing import Optional

import redis.asyncio as redis
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ovn_operator.config.logging import get_logger
from ovn_operator.config.settings import settings

logger = get_logger(__name__)


def _redacted(url: str) -> str:
    return url.split("@")[-1]


def _log_connect_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "redis_connection_failed_retrying",
        attempt=retry_state.attempt_number,
        delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(error),
    )


class RedisConnection:
    """Process-wide Redis client for the leader lease."""

    client: Optional[redis.Redis] = None

    @classmethod
    async def connect(cls, max_attempts: int = 10) -> None:
        """
        Connect and ping, backing off 2s, 4s, 8s... up to 30s between attempts.

        Raises:
            RuntimeError: If no Redis URL is configured
            redis.ConnectionError: If every attempt failed
        """
        if settings.redis_url is None:
            raise RuntimeError("Leader election requires REDIS_URL to be set")
        url = str(settings.redis_url)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
            before_sleep=_log_connect_retry,
            reraise=True,
        ):
            with attempt:
                logger.info(
                    "connecting_to_redis",
                    attempt=attempt.retry_state.attempt_number,
                    url=_redacted(url),
                )
                client = redis.Redis.from_url(
                    url,
                    max_connections=settings.redis_max_connections,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                await client.ping()
                cls.client = client

        logger.info("redis_connected", url=_redacted(url))

    @classmethod
    async def close(cls) -> None:
        if cls.client:
            await cls.client.close()
            cls.client = None
            logger.info("redis_connection_closed")

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """
        Raises:
            RuntimeError: If Redis is not connected
        """
        if cls.client is None:
            raise RuntimeError("Redis is not connected. Call connect() first.")
        return cls.client

    @classmethod
    async def ping(cls) -> bool:
        """Readiness check; never raises."""
        if cls.client is None:
            return False
        try:
            await cls.client.ping()
            return True
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.error("redis_ping_failed", error=str(e))
            return False
